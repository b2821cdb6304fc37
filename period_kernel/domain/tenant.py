"""
Tenant registry seam.

Tenants are issued by an external collaborator (the authentication layer).
This core only needs to resolve "who is calling" to an opaque tenant id;
it never creates, renames or deletes tenants.
"""

from typing import Protocol, runtime_checkable

from period_kernel.exceptions import TenantNotFoundError


@runtime_checkable
class TenantRegistry(Protocol):
    """Resolves a caller to its tenant id."""

    def resolve(self, caller: str) -> str:
        """Return the tenant id for ``caller`` or raise TenantNotFoundError."""
        ...


class StaticTenantRegistry:
    """
    In-memory caller -> tenant mapping.

    Used by tests and by deployments where the mapping is known up front.
    """

    def __init__(self, mapping: dict[str, str] | None = None):
        self._mapping = dict(mapping or {})

    def register(self, caller: str, tenant_id: str) -> None:
        self._mapping[caller] = tenant_id

    def resolve(self, caller: str) -> str:
        try:
            return self._mapping[caller]
        except KeyError:
            raise TenantNotFoundError(caller) from None

    def tenants(self) -> frozenset[str]:
        return frozenset(self._mapping.values())

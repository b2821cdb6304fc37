"""
Period Kernel

Tenant-scoped accounting periods with:
- Exactly one active period per tenant
- Atomic close-and-open transitions
- Period-tagged domain records (append-only carry-forward)
- Year-boundary archival with verifiable export
- Deterministic historical summaries
"""

__version__ = "0.1.0"

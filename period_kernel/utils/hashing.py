"""
Deterministic hashing utilities.

Archive artifacts are checksummed over their canonical JSON text, so the
same periods and records always produce the same bytes and the same hash.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Kept verbatim (no normalize) so a restore returns the stored value
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Decimal, datetime, UUID)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_text(text: str) -> str:
    """Hex-encoded SHA-256 of UTF-8 text (64 characters)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()

"""Utility modules for the period kernel."""

from period_kernel.utils.hashing import canonicalize_json, hash_text
from period_kernel.utils.serialization import row_from_dict, row_to_dict

__all__ = [
    "canonicalize_json",
    "hash_text",
    "row_from_dict",
    "row_to_dict",
]

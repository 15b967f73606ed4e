"""General utility functions."""

from __future__ import annotations

import hashlib
import json
from typing import Any

__all__ = [
    "generate_hash",
    "is_different",
]


def generate_hash(data: Any) -> str:
    """Compute a stable content hash of JSON-compatible data.

    Parameters
    ----------
    data
        Data to hash. Must be serializable by `json.dumps` once `str` is
        applied to unknown types such as datetimes.

    Returns
    -------
    str
        Hex digest that only changes when the data changes.
    """
    encoded = json.dumps(data, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()


def is_different(old: Any, new: Any) -> bool:
    """Whether two JSON-compatible structures differ by content hash."""
    return generate_hash(old) != generate_hash(new)

"""Canonical serialization and checksums for snapshots."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_dumps(obj: Any) -> bytes:
    """Serialize an object to canonical JSON bytes.

    Keys are sorted and separators carry no whitespace, so equal snapshots
    always produce identical bytes.

    Args:
        obj: JSON-serializable object.

    Returns:
        UTF-8 encoded JSON.
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def compute_checksum(data: bytes) -> str:
    """Compute SHA-256 hash of data.

    Args:
        data: Bytes to hash.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    return hashlib.sha256(data).hexdigest()

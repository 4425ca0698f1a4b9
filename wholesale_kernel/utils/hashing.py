"""
Deterministic hashing utilities.

Audit chain links and outbound payload fingerprints must be reproducible
from the stored data alone, so every hash in the kernel goes through the
canonical JSON form defined here.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Serialize the non-JSON types that appear in order and audit payloads.

    Raises:
        TypeError: If the object type is not supported.
    """
    if isinstance(obj, Decimal):
        # 12.50 and 12.5 must hash identically
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to a canonical JSON string.

    Keys are sorted, separators carry no whitespace, and Decimal, date,
    datetime and UUID values are rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Return the hex SHA-256 of the canonical form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chain hash for an audit event.

    The previous event's hash is part of the input, so altering any
    historical row changes every hash after it.
    """
    components = [
        entity_type,
        str(entity_id),
        action,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()

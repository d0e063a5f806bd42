"""
Hashing helpers: token fingerprints and content checksums.

Both are plain SHA-256 hex digests.  A fingerprint hashes the token text
exactly as presented; a checksum hashes the canonical JSON form of a
document (sorted keys, no whitespace), so key order never matters.
"""

import hashlib
import json
from datetime import date
from typing import Any


def _canonical_default(obj: Any) -> Any:
    # YAML may yield dates; tuples come from frozen config records
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, (tuple, frozenset)):
        return list(obj)
    raise TypeError(f"Cannot canonicalize {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_canonical_default)


def hash_payload(payload: dict) -> str:
    """SHA-256 of ``canonicalize_json(payload)``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def token_fingerprint(encoded_token: str) -> str:
    """
    Donation and access-request key for a payment token.

    No trimming or normalization: the same token text always maps to the
    same fingerprint.
    """
    return hashlib.sha256(encoded_token.encode("utf-8")).hexdigest()

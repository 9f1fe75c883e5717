"""
Content and metadata fingerprints.

- SHA-256 of raw document bytes (content fingerprint)
- SHA-256 of the canonical JSON form of a metadata record (metadata fingerprint)
- HMAC-SHA256 integrity tags binding a record to this service's secret

Same input always yields the same fingerprint. An empty buffer is valid
input and hashes to the well-known empty SHA-256 digest.
"""

import hashlib
import hmac
import json
import re
from typing import Any, Optional

from docledger.core.config import get_settings

HASH_ALGORITHM = "SHA-256"

_FINGERPRINT_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def canonical_json(data: Any) -> str:
    """Stable serialization: sorted keys, no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def digest_bytes(content: bytes) -> str:
    """Content fingerprint of a byte buffer."""
    return hashlib.sha256(content).hexdigest()


def digest_record(metadata: dict) -> str:
    """Fingerprint of a metadata map, independent of key order."""
    return hashlib.sha256(canonical_json(metadata).encode()).hexdigest()


def digest_string(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()


def is_fingerprint(value: Any) -> bool:
    """True for a 64-character hex SHA-256 digest."""
    return isinstance(value, str) and bool(_FINGERPRINT_RE.match(value))


def normalize_fingerprint(value: str) -> str:
    return value.strip().lower()


def _secret(secret_key: Optional[str]) -> bytes:
    return (secret_key if secret_key is not None else get_settings().SECRET_KEY).encode()


def compute_integrity_tag(payload: dict, secret_key: Optional[str] = None) -> str:
    """
    HMAC-SHA256 over the canonical payload.

    Proves the record was produced by a process holding the secret. It is
    not a public-key signature.
    """
    return hmac.new(_secret(secret_key), canonical_json(payload).encode(), hashlib.sha256).hexdigest()


def verify_integrity_tag(payload: dict, tag: str, secret_key: Optional[str] = None) -> bool:
    """Constant-time check of an integrity tag."""
    return hmac.compare_digest(compute_integrity_tag(payload, secret_key), tag or "")

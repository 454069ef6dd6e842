"""
Keyed-hash primitives for opaque tokens.

Used by the CSRF guard and the billing webhook check. Raw tokens come from
the OS random source; digests are HMAC-SHA256, hex encoded.
"""

import hashlib
import hmac
import secrets
from typing import Optional

TOKEN_BYTES = 32  # 256 bits


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    """Return a hex-encoded random token of ``nbytes`` bytes"""
    return secrets.token_hex(nbytes)


def keyed_digest(secret: str, value: str) -> str:
    """HMAC-SHA256 of ``value`` keyed with ``secret``"""
    return hmac.new(
        secret.encode("utf-8"),
        value.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def digests_match(expected: Optional[str], provided: Optional[str]) -> bool:
    """Constant-time comparison; empty values never match"""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))

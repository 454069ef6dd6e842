"""
Security module.

Centralizes the security-related functionality:
- Keyed-hash token primitives
- CSRF protection (double-submit cookie)
- Billing webhook signatures

Kept as a layer on top of the business logic, not intertwined with it.
"""

from .csrf import (
    CSRF_COOKIE_NAME,
    CSRF_HEADER_NAME,
    CSRFGuard,
    get_csrf_guard,
    require_csrf,
)
from .token_crypto import digests_match, generate_token, keyed_digest
from .webhook import SIGNATURE_HEADER, sign_payload, verify_webhook_signature

__all__ = [
    'CSRF_COOKIE_NAME',
    'CSRF_HEADER_NAME',
    'CSRFGuard',
    'get_csrf_guard',
    'require_csrf',
    'digests_match',
    'generate_token',
    'keyed_digest',
    'SIGNATURE_HEADER',
    'sign_payload',
    'verify_webhook_signature',
]

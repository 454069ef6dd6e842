"""Signature check for billing provider webhooks"""

from typing import Optional

from spendwise.core.exceptions import ConfigurationError, InvalidSignatureError
from spendwise.core.security.token_crypto import digests_match, keyed_digest

SIGNATURE_HEADER = "X-Signature"


def sign_payload(secret: str, body: bytes) -> str:
    return keyed_digest(secret, body.decode("utf-8"))


def verify_webhook_signature(secret: Optional[str], body: bytes, signature: Optional[str]) -> None:
    """
    Verify that ``signature`` is the hex HMAC-SHA256 of ``body``.

    Raises:
        ConfigurationError: If no webhook secret is configured
        InvalidSignatureError: If the signature is missing or wrong
    """
    if not secret:
        raise ConfigurationError("Webhook secret not configured", component="billing_webhook")

    try:
        expected = sign_payload(secret, body)
    except UnicodeDecodeError:
        raise InvalidSignatureError("Webhook body is not valid UTF-8")

    if not digests_match(expected, signature):
        raise InvalidSignatureError()

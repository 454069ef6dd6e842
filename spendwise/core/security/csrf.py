"""
CSRF protection using a double-submit cookie.

The raw token goes to the client in the response body/header; only its
keyed digest is stored, in an HTTP-only, same-site strict cookie. A state
changing request must present the raw token again (header or form field),
and it is accepted only if its digest matches the cookie.
"""

import logging
from typing import Optional, Tuple

from fastapi import Request, Response

from spendwise.core.exceptions import InvalidTokenError
from spendwise.core.security.token_crypto import (
    digests_match,
    generate_token,
    keyed_digest,
)

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = "csrf-token"
CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_FORM_FIELD = "csrf_token"
CSRF_MAX_AGE_SECONDS = 60 * 60 * 24  # 24 hours


class CSRFGuard:
    """
    Issues and verifies anti-forgery tokens.

    Stateless across replicas: everything needed to verify a request lives in
    the request itself plus the shared secret.
    """

    def __init__(self, secret: str, secure_cookies: bool = True):
        if not secret:
            raise ValueError("CSRF secret must not be empty")
        self._secret = secret
        self.secure_cookies = secure_cookies

        self._issued_count = 0
        self._rejected_count = 0

    def digest(self, raw_token: str) -> str:
        return keyed_digest(self._secret, raw_token)

    def issue(self) -> Tuple[str, str]:
        """
        Create a new token.

        Returns:
            Tuple of (raw_token, digest). The raw token goes to the client,
            the digest goes into the cookie.
        """
        raw_token = generate_token()
        self._issued_count += 1
        return raw_token, self.digest(raw_token)

    def verify(self, supplied_token: Optional[str], stored_digest: Optional[str]) -> bool:
        """True only if both values are present and the digests match"""
        if not stored_digest or not supplied_token:
            return False
        return digests_match(stored_digest, self.digest(supplied_token))

    def issue_to_response(self, response: Response) -> str:
        """Issue a token, set the digest cookie on ``response`` and return the raw token"""
        raw_token, digest = self.issue()
        response.set_cookie(
            key=CSRF_COOKIE_NAME,
            value=digest,
            max_age=CSRF_MAX_AGE_SECONDS,
            path="/",
            httponly=True,
            secure=self.secure_cookies,
            samesite="strict",
        )
        response.headers[CSRF_HEADER_NAME] = raw_token
        return raw_token

    def verify_request(self, request: Request, supplied_token: Optional[str]) -> bool:
        """Verify ``supplied_token`` against the digest cookie of ``request``"""
        stored_digest = request.cookies.get(CSRF_COOKIE_NAME)

        if not stored_digest:
            logger.warning(f"🚫 CSRF rejected on {request.url.path}: no digest cookie")
            self._rejected_count += 1
            return False
        if not supplied_token:
            logger.warning(f"🚫 CSRF rejected on {request.url.path}: no token submitted")
            self._rejected_count += 1
            return False
        if not self.verify(supplied_token, stored_digest):
            logger.warning(f"🔒 CSRF rejected on {request.url.path}: token mismatch")
            self._rejected_count += 1
            return False
        return True

    def get_metrics(self):
        return {
            "issued": self._issued_count,
            "rejected": self._rejected_count,
        }


async def extract_submitted_token(request: Request) -> Optional[str]:
    """Read the submitted token from the header, falling back to a form field"""
    token = request.headers.get(CSRF_HEADER_NAME)
    if token:
        return token

    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        value = form.get(CSRF_FORM_FIELD)
        if isinstance(value, str) and value:
            return value

    return None


def get_csrf_guard(request: Request) -> CSRFGuard:
    """FastAPI dependency returning the guard created at startup"""
    return request.app.state.csrf_guard


async def require_csrf(request: Request) -> None:
    """
    FastAPI dependency for state-changing endpoints.

    Raises:
        InvalidTokenError: On any verification failure. No replacement token
            is issued; the client must fetch one on its next safe request.
    """
    guard = get_csrf_guard(request)
    supplied = await extract_submitted_token(request)

    if not guard.verify_request(request, supplied):
        if not request.cookies.get(CSRF_COOKIE_NAME):
            reason = "missing_cookie"
        elif not supplied:
            reason = "missing_token"
        else:
            reason = "mismatch"
        raise InvalidTokenError(reason=reason)

"""
Security middleware for the Spendwise API
Handles security headers, request logging and slow request detection
"""

from fastapi import Request, Response
import time
import logging
from typing import Callable

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0


class SecurityMiddleware:
    """Adds security headers and logs every request"""

    def __init__(self, production: bool = False):
        self.production = production

    async def __call__(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path not in ("/", "/health"):
            logger.info(f"📥 Request: {request.method} {path}")

        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        response.headers["X-Process-Time"] = str(process_time)
        if self.production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning(f"⏱️ Slow request: {path} took {process_time:.2f}s")

        return response

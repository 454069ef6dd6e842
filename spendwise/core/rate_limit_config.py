"""
Rate limiting configuration for the Spendwise API
"""

from fastapi import Request
from slowapi.util import get_remote_address


def get_real_ip(request: Request) -> str:
    """
    Get the real IP address, considering proxy headers.
    Important for deployments behind load balancers.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


RATE_LIMITS = {
    "csrf_issue": "30/minute",       # Token issuance on page loads
    "mutation": "60/minute",         # Transaction/category writes
    "invalidation": "120/minute",    # Cache invalidation calls
    "read": "240/minute",            # Subscription, limits, usage reads
    "webhook": "300/minute",         # Billing provider callbacks
}

RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."
RETRY_AFTER_SECONDS = 60

# spendwise/core/exceptions.py
"""
Spendwise exceptions - standardized error taxonomy for the API.

Every error carries a stable machine-readable ``kind`` and the HTTP status
it maps to, so callers can branch on the kind instead of matching strings.
"""

from typing import Optional, Dict, Any


class SpendwiseError(Exception):
    """Base exception for all Spendwise errors"""

    kind: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_payload(self) -> Dict[str, Any]:
        """Structured response body for this error"""
        return {
            "error": {
                "kind": self.kind,
                "message": self.message,
                "details": self.details,
            }
        }


class UnauthorizedError(SpendwiseError):
    """Caller identity missing or not the owner of the resource"""

    kind = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class InvalidTokenError(SpendwiseError):
    """CSRF verification failure - always a hard rejection"""

    kind = "invalid_token"
    status_code = 403

    def __init__(
        self,
        message: str = "Invalid or missing CSRF token",
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize token error.

        Args:
            message: Error description
            reason: Which check failed (missing_cookie, missing_token, mismatch)
            details: Additional context
        """
        super().__init__(message, details)
        self.reason = reason

        if reason:
            self.details['reason'] = reason


class InvalidSignatureError(SpendwiseError):
    """Webhook payload signature did not verify"""

    kind = "invalid_signature"
    status_code = 401

    def __init__(self, message: str = "Invalid signature", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class LimitExceededError(SpendwiseError):
    """Mutation refused because the subscription tier does not allow it"""

    kind = "limit_exceeded"
    status_code = 403

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize limit error.

        Args:
            message: Error description
            resource: Resource kind that was gated
            reason: Decision reason (limit_reached, upstream_unavailable)
            details: Additional context
        """
        super().__init__(message, details)
        self.resource = resource
        self.reason = reason

        if resource:
            self.details['resource'] = resource
        if reason:
            self.details['reason'] = reason


class UpstreamUnavailableError(SpendwiseError):
    """The backing data source failed while computing a value"""

    kind = "upstream_unavailable"
    status_code = 503

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize upstream error.

        Args:
            message: Error description
            operation: Backend operation that failed
            details: Additional context
        """
        super().__init__(message, details)
        self.operation = operation

        if operation:
            self.details['operation'] = operation


class ValidationError(SpendwiseError):
    """Errors in input validation"""

    kind = "validation_error"
    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.field = field
        self.value = value

        if field:
            self.details['field'] = field
        if value is not None:
            self.details['value'] = str(value)


class ConfigurationError(SpendwiseError):
    """Errors in system configuration and initialization"""

    kind = "configuration_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.component = component

        if component:
            self.details['component'] = component


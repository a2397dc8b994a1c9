"""
Custom exceptions for the LuminaMinutes API.

Every pipeline maps its failures onto one of these types before a response
is produced, so the global exception handler can render a consistent JSON
body and status code.
"""

import math
from typing import Optional, Dict, Any, List


class LuminaException(Exception):
    """Base exception for all LuminaMinutes errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "LUMINA_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(LuminaException):
    """Exception raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={**(details or {}), "field": field}
        )


class RateLimitException(LuminaException):
    """Exception raised when a rate-limit policy denies a request."""

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after_ms: int = 60000,
        limit: int = 0,
        remaining: int = 0,
        details: Optional[Dict[str, Any]] = None
    ):
        self.retry_after_ms = retry_after_ms
        self.limit = limit
        self.remaining = remaining
        super().__init__(
            message=message,
            error_code="RATE_LIMIT_EXCEEDED",
            details={**(details or {}), "retry_after": self.retry_after_seconds}
        )

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.retry_after_ms / 1000))

    def headers(self) -> Dict[str, str]:
        return {
            "Retry-After": str(self.retry_after_seconds),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.retry_after_ms),
        }


class ConfigurationException(LuminaException):
    """Exception raised when an upstream's credentials are not configured."""

    def __init__(
        self,
        message: str,
        setting: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details={**(details or {}), "setting": setting}
        )


class LLMServiceException(LuminaException):
    """Exception raised when the completion provider fails."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="LLM_SERVICE_ERROR",
            details={**(details or {}), "provider": provider}
        )


class UpstreamTimeoutException(LuminaException):
    """Exception raised when an upstream call exceeds its deadline."""

    def __init__(
        self,
        message: str = "Request timed out. Please try again.",
        provider: str = "unknown",
        timeout_seconds: float = 0,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="UPSTREAM_TIMEOUT",
            details={
                **(details or {}),
                "provider": provider,
                "timeout_seconds": timeout_seconds
            }
        )


class UpstreamAuthException(LuminaException):
    """Exception raised when an upstream rejects the configured credentials."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="UPSTREAM_AUTH_ERROR",
            details={**(details or {}), "provider": provider}
        )


class UpstreamQuotaException(LuminaException):
    """Exception raised when an upstream reports exhausted quota."""

    def __init__(
        self,
        message: str = "API quota exceeded. Please try again later.",
        provider: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="UPSTREAM_QUOTA_EXCEEDED",
            details={**(details or {}), "provider": provider}
        )


class NotificationServiceException(LuminaException):
    """Exception raised when an email transport fails to deliver one message."""

    def __init__(
        self,
        message: str,
        channel: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="NOTIFICATION_SERVICE_ERROR",
            details={**(details or {}), "channel": channel}
        )


class AllRecipientsFailedException(LuminaException):
    """Exception raised when no recipient could be sent the summary."""

    def __init__(
        self,
        failed: List[Dict[str, Any]],
        message: str = "Failed to send emails to all recipients",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="ALL_RECIPIENTS_FAILED",
            details={**(details or {}), "failed": failed}
        )


def status_code_for(exception: LuminaException) -> int:
    for exc_type in type(exception).__mro__:
        if exc_type in EXCEPTION_STATUS_MAPPING:
            return EXCEPTION_STATUS_MAPPING[exc_type]
    return 500


# Exception to HTTP status code mapping
EXCEPTION_STATUS_MAPPING = {
    ValidationException: 400,  # Bad Request
    UpstreamAuthException: 401,  # Unauthorized
    UpstreamTimeoutException: 408,  # Request Timeout
    RateLimitException: 429,  # Too Many Requests
    UpstreamQuotaException: 429,  # Too Many Requests
    LLMServiceException: 500,  # Internal Server Error
    ConfigurationException: 500,  # Internal Server Error
    AllRecipientsFailedException: 500,  # Internal Server Error
    NotificationServiceException: 502,  # Bad Gateway
}

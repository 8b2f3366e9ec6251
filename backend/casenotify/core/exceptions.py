"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No token or secret leaks in error messages
5. A reason code the configuration console can turn into a next step

IMPORTANT: NEVER raise the base Exception class. Always use these.
"""

import enum
from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: OAuth codes and tokens must never reach a response body
        sensitive_fields = {
            "password", "token", "secret", "key", "api_key",
            "access_token", "refresh_token", "code", "code_verifier",
            "original_exception",
        }
        filtered_context = {
            k: (v.value if isinstance(v, enum.Enum) else v)
            for k, v in self.context.items()
            if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Configuration
# ============================================================================


class ConfigurationError(AppException):
    """
    Raised when a mail provider is missing its client configuration.

    WHY: A missing client id is fatal for that provider. It is never
    retried and must be shown to the administrator before any
    authorization attempt is offered.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "Mail provider is not configured"


# ============================================================================
# Authentication & Authorization
# ============================================================================


class AuthFailureReason(str, enum.Enum):
    """Why an interactive mailbox authorization failed."""

    NOT_CONFIGURED = "not_configured"
    CANCELLED = "cancelled"
    POPUP_BLOCKED = "popup_blocked"
    EXCHANGE_FAILED = "exchange_failed"
    USERINFO_FAILED = "userinfo_failed"
    REFRESH_FAILED = "refresh_failed"
    STATE_MISMATCH = "state_mismatch"


AUTH_FAILURE_MESSAGES: Dict[AuthFailureReason, str] = {
    AuthFailureReason.NOT_CONFIGURED: (
        "Email provider is not configured. Ask an administrator to set up the client id."
    ),
    AuthFailureReason.CANCELLED: "Authentication cancelled",
    AuthFailureReason.POPUP_BLOCKED: (
        "Popup blocked. Please allow popups for this site and try again."
    ),
    AuthFailureReason.EXCHANGE_FAILED: "Token exchange failed",
    AuthFailureReason.USERINFO_FAILED: "Failed to get user info",
    AuthFailureReason.REFRESH_FAILED: "Session expired. Please reconnect the mailbox.",
    AuthFailureReason.STATE_MISMATCH: (
        "Authorization response did not match a pending request. Please try again."
    ),
}


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    Carries a ``reason`` so callers can tell a user cancellation apart
    from a configuration or network failure.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"

    def __init__(
        self,
        message: Optional[str] = None,
        reason: Optional[AuthFailureReason] = None,
        **context: Any,
    ):
        self.reason = reason
        if reason is not None:
            context["reason"] = reason
        super().__init__(
            message=message or AUTH_FAILURE_MESSAGES.get(reason),
            **context,
        )


class AuthorizationError(AppException):
    """
    Raised when the caller lacks permissions for an action.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class TokenExpiredError(AuthenticationError):
    """Raised when the console bearer token has expired."""

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """Raised when the console bearer token is malformed or has an invalid signature."""

    default_message = "Token is invalid"


class RevocationError(AppException):
    """
    Raised when the provider explicitly rejects a locally valid token.

    WHY: Only a definitive rejection clears stored credential state.
    Network trouble is a TransientNetworkError and leaves it alone.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Mailbox access has been revoked"


# ============================================================================
# Validation & Resource Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when rule or template input is malformed.

    WHY: Raised before anything is written so a matrix is never partially saved.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


# ============================================================================
# External Service Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Raised when an external service call fails.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class TransientNetworkError(ExternalServiceError):
    """
    Raised on network failure talking to a mail provider.

    Logged and safe to retry. Never clears stored credentials.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "Mail provider could not be reached"


class DirectoryUnavailableError(ExternalServiceError):
    """
    Raised when the booking application's user directory cannot be queried.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "User directory could not be reached"


class ProviderFailure(str, enum.Enum):
    """Normalized failure kinds reported by the mail-provider boundary."""

    EXPIRED = "expired"
    PERMISSION_DENIED = "permission_denied"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


class MailProviderError(ExternalServiceError):
    """
    Raised when a mail provider rejects a request.

    WHY: Provider error shapes differ. Every one is normalized to a
    ProviderFailure so callers branch on one small enum.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Mail provider error"

    def __init__(
        self,
        message: Optional[str] = None,
        failure: ProviderFailure = ProviderFailure.UNKNOWN,
        **context: Any,
    ):
        self.failure = failure
        super().__init__(message=message, failure=failure, **context)


# ============================================================================
# Infrastructure Exceptions
# ============================================================================


class DatabaseError(AppException):
    """
    Raised when a database operation fails.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Database error"


class EncryptionError(AppException):
    """
    Raised when encryption or decryption of stored tokens fails.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Encryption operation failed"


class EmailTemplateError(AppException):
    """
    Raised when an HTML email layout is missing or fails to render.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Failed to render email layout"

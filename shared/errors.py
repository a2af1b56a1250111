"""
Shared error handling for the ESI SSO client.

Every failure the client can surface is a subclass of
``AccessLayerException``; the authentication subsystem raises the
``AuthError`` family so callers can tell which stage failed.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

try:
    from opentelemetry import trace
    HAS_OPENTELEMETRY = True
except ImportError:
    HAS_OPENTELEMETRY = False


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for the ESI client."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        if HAS_OPENTELEMETRY:
            current_span = trace.get_current_span()
            if current_span and current_span.is_recording():
                span_context = current_span.get_span_context()
                if span_context.trace_id != 0:
                    trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Caller-supplied input was rejected before any I/O."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthError(AccessLayerException):
    """Base class for authentication and session failures."""


class CsrfMismatch(AuthError):
    """Returned state does not match the one issued, or was already used."""

    def __init__(self, message: str = "Authorization state mismatch", details: Optional[Dict[str, Any]] = None):
        super().__init__("CSRF_MISMATCH", message, details)


class NetworkError(AuthError):
    """Transport failure or transient (5xx) server error."""

    def __init__(self, message: str = "Network error", details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_ERROR", message, details)


class ExchangeRejected(AuthError):
    """Token endpoint declined the exchange."""

    def __init__(
        self,
        error_code: str,
        description: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        code: str = "EXCHANGE_REJECTED",
    ):
        self.error_code = error_code
        self.description = description
        self.status_code = status_code
        merged = {"error": error_code, "error_description": description, "status_code": status_code}
        merged.update(details or {})
        message = f"Token exchange rejected: {error_code}"
        if description:
            message = f"{message} ({description})"
        super().__init__(code, message, merged)


class RefreshRejected(ExchangeRejected):
    """Refresh grant declined; the authorization flow must be restarted."""

    def __init__(
        self,
        error_code: str,
        description: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(error_code, description, status_code, details, code="REFRESH_REJECTED")


class ReauthRequired(AuthError):
    """Session can no longer produce a valid token."""

    def __init__(self, message: str = "Re-authentication required", details: Optional[Dict[str, Any]] = None):
        super().__init__("REAUTH_REQUIRED", message, details)


class InvalidToken(AuthError):
    """Token returned by the exchange failed verification."""

    def __init__(self, message: str = "Invalid token", details: Optional[Dict[str, Any]] = None, code: str = "INVALID_TOKEN"):
        super().__init__(code, message, details)


class VerifyError(InvalidToken):
    """Base class for claims verifier failures."""


class Malformed(VerifyError):
    """Token is not a structurally valid JWS compact serialization."""

    def __init__(self, message: str = "Malformed token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MALFORMED_TOKEN")


class UnknownKey(VerifyError):
    """No signing key matches the token's key id."""

    def __init__(self, kid: Optional[str], details: Optional[Dict[str, Any]] = None):
        self.kid = kid
        merged = {"kid": kid}
        merged.update(details or {})
        super().__init__(f"Signing key not found: {kid}", merged, code="UNKNOWN_KEY")


class BadSignature(VerifyError):
    """Signature does not verify against the located key."""

    def __init__(self, message: str = "Token signature verification failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="BAD_SIGNATURE")


class ClaimInvalid(VerifyError):
    """A standard claim failed validation."""

    def __init__(self, which: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.which = which
        merged = {"claim": which}
        merged.update(details or {})
        super().__init__(message or f"Claim '{which}' is invalid", merged, code="CLAIM_INVALID")


class ErrorLimited(AccessLayerException):
    """The API error budget is exhausted; requests are refused until reset."""

    def __init__(self, retry_after_ms: int, details: Optional[Dict[str, Any]] = None):
        self.retry_after_ms = retry_after_ms
        merged = {"retry_after_ms": retry_after_ms}
        merged.update(details or {})
        super().__init__("ERROR_LIMITED", f"Refusing to send request, error limited for {retry_after_ms}ms", merged)


class ApiError(AccessLayerException):
    """API responded with a non-success status."""

    def __init__(self, status_code: int, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        merged = {"status_code": status_code}
        merged.update(details or {})
        super().__init__("API_ERROR", message or f"Invalid HTTP status code received: {status_code}", merged)

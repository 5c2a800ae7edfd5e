"""Errors raised by the PropertyData service.

Each error carries a stable ``code``, an HTTP ``status_code`` and optional
``details``. ``main.py`` renders any ``LetzPocketError`` that escapes a route
as ``{"error": {...}}`` with that status, so routes never build error
responses by hand.

Usage:
    from letzpocket.core.exceptions import InsufficientCreditsError

    raise InsufficientCreditsError(required=3, available=2)
"""

from typing import Any


class LetzPocketError(Exception):
    """Root of the service's error hierarchy.

    Subclasses set ``code``, ``message`` and ``status_code`` as class
    attributes; instances may override the message and code.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Error body in the shape of ``schemas.common.ErrorResponse``."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if request_id:
            error["request_id"] = request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


# ---- 500 ----


class ConfigurationError(LetzPocketError):
    """Raised for a missing credential or an unknown data type/strategy.

    Fatal to the call that hit it; never retried or downgraded to stale data.
    """

    code: str = "CONFIGURATION_ERROR"
    message: str = "Service is misconfigured"


# ---- 404 ----


class NotFoundError(LetzPocketError):
    """A record the caller referred to does not exist."""

    status_code: int = 404


class QuotaNotFoundError(NotFoundError):
    """Raised when a quota record vanished between read and write."""

    code: str = "QUOTA_NOT_FOUND"
    message: str = "Quota record not found"

    def __init__(self, user_id: str | None = None, message: str | None = None) -> None:
        details: dict[str, Any] = {}
        if user_id:
            details["user_id"] = user_id
            if not message:
                message = f"No quota record for user {user_id}"
        super().__init__(message=message, details=details if details else None)


# ---- 400 ----


class ValidationError(LetzPocketError):
    """A request value was rejected; `details.field` names it when known."""

    code: str = "VALIDATION_ERROR"
    message: str = "Validation error"
    status_code: int = 400

    def __init__(
        self,
        message: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message=message, details=details if details else None)


class InvalidPlanError(ValidationError):
    """Raised when a plan id is not in the catalog."""

    code: str = "INVALID_PLAN"
    message: str = "Invalid plan ID"

    def __init__(self, plan_id: str | None = None, message: str | None = None) -> None:
        details: dict[str, Any] = {}
        if plan_id:
            details["plan_id"] = plan_id
            if not message:
                message = f"Invalid plan ID: {plan_id}"
        super().__init__(message=message, field="plan_id", details=details)


class InvalidDataTypeError(ValidationError):
    """Raised when a caller asks for a data type the service does not know."""

    code: str = "INVALID_DATA_TYPE"
    message: str = "Unknown data type"

    def __init__(self, data_type: str | None = None) -> None:
        details: dict[str, Any] = {}
        message = None
        if data_type:
            details["data_type"] = data_type
            message = f"Unknown data type: {data_type}"
        super().__init__(message=message, field="data_type", details=details)


# ---- 402 ----


class InsufficientCreditsError(LetzPocketError):
    """Raised when a user's remaining credits cannot cover a charge.

    Always surfaced to the caller; the UI shows an upgrade prompt.
    """

    code: str = "INSUFFICIENT_CREDITS"
    message: str = "Insufficient credits"
    status_code: int = 402

    def __init__(
        self,
        required: int,
        available: int,
        user_id: str | None = None,
    ) -> None:
        self.required = required
        self.available = available
        details: dict[str, Any] = {"required": required, "available": available}
        if user_id:
            details["user_id"] = user_id
        super().__init__(
            message=(
                f"Insufficient credits. Required: {required}, "
                f"Available: {available}"
            ),
            details=details,
        )


# ---- 502 and 504 ----


class ExternalServiceError(LetzPocketError):
    """A call to an upstream service failed."""

    code: str = "EXTERNAL_SERVICE_ERROR"
    message: str = "External service error"
    status_code: int = 502


class ProviderError(ExternalServiceError):
    """Non-2xx, transport failure or malformed body from PropertyData."""

    code: str = "PROVIDER_ERROR"
    message: str = "PropertyData API request failed"


class ProviderRateLimitError(ProviderError):
    """PropertyData rejected the request with HTTP 429."""

    code: str = "PROVIDER_RATE_LIMITED"
    message: str = "PropertyData API rate limit exceeded"


class ProviderTimeoutError(ProviderError):
    """PropertyData did not answer within the configured timeout."""

    code: str = "PROVIDER_TIMEOUT"
    message: str = "PropertyData API request timeout"
    status_code: int = 504


# ---- batch ----


class BatchGroupError(LetzPocketError):
    """Unexpected failure while analysing one postcode group of a batch.

    Recorded on that group's results; never raised out of the batch.
    """

    code: str = "BATCH_GROUP_FAILED"
    message: str = "Batch group failed"

    def __init__(self, postcode: str, error: BaseException) -> None:
        self.postcode = postcode
        super().__init__(
            message=str(error) or type(error).__name__,
            details={"postcode": postcode, "error_type": type(error).__name__},
        )

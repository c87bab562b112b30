"""Exception classes for billing and fine operations.

Arithmetic anomalies (an adjustment larger than its bill, a fine past the
maximum) are clamped where they occur and never raised. Database errors are
not wrapped; they propagate as SQLAlchemy raised them.
"""


class BillingError(Exception):
    """Base billing error."""

    def __init__(self, message: str, code: str = "billing_error"):
        """Initialize error."""
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(BillingError):
    """Requested billing, transaction or circulation does not exist."""

    def __init__(self, message: str = "Record not found"):
        super().__init__(message, "not_found")


class InvalidIntervalError(BillingError):
    """Interval string cannot be interpreted."""

    def __init__(self, message: str = "Invalid interval"):
        super().__init__(message, "invalid_interval")


class MissingRequiredFieldError(BillingError):
    """A record lacks a field its domain contract requires (e.g. a due date)."""

    def __init__(self, message: str = "Missing required field"):
        super().__init__(message, "missing_required_field")


class InvalidSettingError(BillingError):
    """An org setting holds a value that cannot be used (e.g. an unknown timezone)."""

    def __init__(self, message: str = "Invalid setting value"):
        super().__init__(message, "invalid_setting")


class RequestorRequiredError(BillingError):
    """Operation needs an acting user but none was supplied."""

    def __init__(self, message: str = "A requestor is required for this operation"):
        super().__init__(message, "requestor_required")


__all__ = [
    "BillingError",
    "NotFoundError",
    "InvalidIntervalError",
    "MissingRequiredFieldError",
    "InvalidSettingError",
    "RequestorRequiredError",
]

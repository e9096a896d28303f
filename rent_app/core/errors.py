class EngineFailure(Exception):
    """Base class for failures raised inside the payments and reminders engine."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class AuthorizationFailure(EngineFailure):
    """Bad token or source address on an inbound gateway callback."""


class ValidationFailure(EngineFailure):
    """Malformed callback payload. Carries the gateway rejection code."""

    def __init__(self, message: str, result_code: str = "C2B00016", **context):
        super().__init__(message, **context)
        self.result_code = result_code


class NotFoundFailure(EngineFailure):
    """No transaction, payment or reminder matches the given key."""


class ExternalServiceFailure(EngineFailure):
    """The payment gateway or a notification provider could not be reached."""


class DataQualityFailure(EngineFailure):
    """Stored data is missing a link needed to finish the operation."""

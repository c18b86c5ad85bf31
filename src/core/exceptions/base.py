from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppException):
    """Validation error."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=422, details=details)


class InvalidPrefixError(ValidationError):
    """Document type prefix is empty or not one of the recognized types."""

    def __init__(self, prefix: Any, allowed: list[str] | None = None):
        if prefix is None or (isinstance(prefix, str) and not prefix.strip()):
            message = "Document type prefix is required"
        else:
            message = f"Unknown document type prefix: {prefix!r}"
        if allowed:
            message = f"{message} (expected one of: {', '.join(allowed)})"
        super().__init__(message=message, field="document_type")
        self.prefix = prefix


class StorageUnavailableError(AppException):
    """The counter store could not be reached or the transaction did not complete."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message=message or "Document number storage is unavailable, try again later",
            status_code=503,
        )

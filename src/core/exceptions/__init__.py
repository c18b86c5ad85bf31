from src.core.exceptions.base import (
    AppException,
    ValidationError,
    InvalidPrefixError,
    StorageUnavailableError,
)

__all__ = [
    "AppException",
    "ValidationError",
    "InvalidPrefixError",
    "StorageUnavailableError",
]

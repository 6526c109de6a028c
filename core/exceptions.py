"""
Custom exceptions for the categorization pipeline.
"""
from typing import Any, Dict, Optional


class CategorizerException(Exception):
    """Base exception for all categorization errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(CategorizerException):
    """Raised when input data fails validation (unknown category, missing merchant)."""
    pass


class ConfigurationError(CategorizerException):
    """Raised when configuration is invalid."""
    pass


class DataNotFoundError(CategorizerException):
    """Raised when required data is not found."""
    pass


class PersistenceError(CategorizerException):
    """Raised when the confidence store cannot be read or written."""
    pass


class UsageLimitExceededError(CategorizerException):
    """Raised before an outbound call when the provider budget is exhausted."""

    def __init__(self, provider: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{provider} usage limit exceeded", details={"provider": provider, **(details or {})})
        self.provider = provider


class ExternalServiceError(CategorizerException):
    """Raised when an external provider call fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.status_code = status_code
        self.provider_message = provider_message


class ClassifierError(ExternalServiceError):
    """Raised when the classification call fails or returns malformed output."""
    pass


class LedgerError(ExternalServiceError):
    """Raised when a ledger read or write fails."""
    pass


class LedgerRateLimitedError(LedgerError):
    """Raised when the ledger (or the local hourly window) rejects a request."""
    pass


class LedgerUnauthorizedError(LedgerError):
    """Raised when the ledger rejects the API credentials."""
    pass


class NotificationError(ExternalServiceError):
    """Raised when the notification channel fails. Callers always swallow it."""
    pass

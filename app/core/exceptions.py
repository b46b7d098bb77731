"""
Custom application exceptions.
"""
from typing import Optional


class WidgetSyncException(Exception):
    """Base exception for the widget sync engine."""
    pass


class IntegrationNotFoundError(WidgetSyncException):
    """Raised when an integration definition is not found."""
    pass


class WidgetInstanceNotFoundError(WidgetSyncException):
    """Raised when a widget instance is not found."""
    pass


class CredentialError(WidgetSyncException):
    """Raised when credentials are missing, invalid, or cannot be decrypted."""
    pass


class DecryptionError(CredentialError):
    """Raised when ciphertext fails authentication or was encrypted with another key."""
    pass


class StaleCredential(CredentialError):
    """Raised when an OAuth token refresh itself fails."""
    pass


class SchemaValidationError(WidgetSyncException):
    """Raised when a schema or values do not match the declared field types."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class UpstreamError(WidgetSyncException):
    """Raised on non-2xx, timeout, or malformed response from a third party."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimited(UpstreamError):
    """Raised when a third party rate limits us."""

    def __init__(self, retry_after: float, message: str = "Rate limit exceeded"):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class SignatureError(WidgetSyncException):
    """Raised when webhook authentication fails."""
    pass


class ConcurrentUpdateError(WidgetSyncException):
    """Raised when a cache entry keeps changing under an optimistic update."""
    pass


class IntegrationAlreadyExistsError(WidgetSyncException):
    """Raised when an integration with the same widget type and name exists."""
    pass


class IntegrationModeError(WidgetSyncException):
    """Raised when an operation does not apply to the integration's mode."""
    pass

"""Custom exception hierarchy."""

from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when a completion backend call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when a completion backend call times out."""
    pass


class RateLimitError(APIClientError):
    """Raised when the completion backend signals rate limiting.

    ``retry_after`` carries the server-suggested delay in seconds, if any.
    """
    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        original_error: Exception = None,
    ):
        super().__init__(message, original_error)
        self.retry_after = retry_after


class QuotaExceededError(RateLimitError):
    """Raised when the backend quota is exhausted; waiting will not help."""
    pass


class LLMAuthenticationError(APIClientError):
    """Raised when the completion backend rejects our credentials."""
    pass


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class StorageError(AppError):
    """Raised when the blob store rejects a read or write."""
    pass


class MailboxError(AppError):
    """Raised when the IMAP mailbox cannot be read."""
    pass


class ReplyDispatchError(AppError):
    """Raised when an outbound reply could not be sent."""
    pass


class MessageNotFoundError(AppError):
    """Raised when an email message is not found."""
    pass


class FieldPathError(AppError):
    """Raised for malformed field paths or writes through a scalar."""
    pass

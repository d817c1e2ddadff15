"""Custom exception classes for the application.

Every exception carries a human-readable ``message``, a ``details`` dict and
a machine-distinguishable ``kind`` so callers can branch without parsing text.
"""


class BaseAppException(Exception):
    """Base exception class for all application exceptions."""

    kind = "error"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ProductNotFoundError(BaseAppException):
    """Raised when no product matches a barcode or document id."""
    kind = "not_found"


class InvalidInputError(BaseAppException):
    """Raised when a name, barcode, quantity or price fails validation."""
    kind = "invalid_input"


class InsufficientQuantityError(BaseAppException):
    """Raised when a decrease exceeds the stock on hand."""
    kind = "insufficient_quantity"


class ConflictError(BaseAppException):
    """Raised when a barcode is already taken or a write keeps colliding."""
    kind = "conflict"


class ConcurrentUpdateError(ConflictError):
    """Raised when the store rejects a write because the document changed."""
    pass


class StoreUnavailableError(BaseAppException):
    """Raised when the document store cannot be reached or refuses access."""

    kind = "store_unavailable"

    def __init__(self, message: str, reason: str = "unavailable", details: dict = None):
        self.reason = reason
        super().__init__(message, details)


class ConfigurationError(BaseAppException):
    """Raised when there's a configuration error."""
    kind = "configuration"

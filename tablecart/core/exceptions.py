"""Custom exceptions for the cart synchronization service."""
from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable error codes sent to clients in ``cart:error`` events."""

    INVALID_ITEM = "INVALID_ITEM"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    LINE_NOT_FOUND = "LINE_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    ACCESS_DENIED = "ACCESS_DENIED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class TableCartException(Exception):
    """Base exception for all tablecart errors."""

    def __init__(self, message: str, *args: object) -> None:
        super().__init__(message, *args)
        self.message = message


class ConfigurationException(TableCartException):
    """Configuration errors."""

    pass


class CatalogException(TableCartException):
    """Catalog file could not be loaded."""

    pass


class CartError(TableCartException):
    """A rejected cart operation, reported to the originating channel only."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def to_payload(self, operation: str) -> dict[str, str]:
        return {"operation": operation, "code": self.code.value, "message": self.message}


class InvalidItemError(CartError):
    """Menu item or customization option does not resolve."""

    code = ErrorCode.INVALID_ITEM

    def __init__(self, item_id: str, reason: str = "not found") -> None:
        super().__init__(f"Menu item {item_id} {reason}")
        self.item_id = item_id
        self.reason = reason


class InvalidQuantityError(CartError):
    """Requested quantity is out of range."""

    code = ErrorCode.INVALID_QUANTITY

    def __init__(self, quantity: int, reason: str = "must be a positive integer") -> None:
        super().__init__(f"Quantity {quantity} {reason}")
        self.quantity = quantity


class LineNotFoundError(CartError):
    """No cart line matches the given identity."""

    code = ErrorCode.LINE_NOT_FOUND

    def __init__(self, line_id: str) -> None:
        super().__init__(f"Cart line {line_id} not found")
        self.line_id = line_id


class SessionNotFoundError(CartError):
    """Session was closed or evicted; the channel has to join again."""

    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class InvalidPayloadError(CartError):
    """Malformed event frame or payload."""

    code = ErrorCode.INVALID_PAYLOAD


class AccessDeniedError(CartError):
    """Channel is not allowed to act on the session."""

    code = ErrorCode.ACCESS_DENIED


class InternalCartError(CartError):
    """Unexpected failure while applying a mutation."""

    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, operation: str) -> None:
        super().__init__(f"Failed to {operation} cart")
        self.operation = operation

"""Cart services: session ownership, mutation logic and fan-out."""

from .broadcast import BroadcastDispatcher, Channel, ErrorReporter
from .cart_service import CartService
from .cart_sync import CartSyncService
from .session_registry import SessionRegistry

__all__ = [
    "BroadcastDispatcher",
    "CartService",
    "CartSyncService",
    "Channel",
    "ErrorReporter",
    "SessionRegistry",
]

"""Channel event names and service-wide defaults."""
from enum import Enum


class CartEvent(str, Enum):
    """Event names exchanged over a cart channel."""

    # client -> server
    JOIN = "cart:join"
    LEAVE = "cart:leave"
    ADD = "cart:add"
    UPDATE = "cart:update"
    REMOVE = "cart:remove"
    CLEAR = "cart:clear"
    CLOSE = "cart:close"
    PING = "ping"

    # server -> client
    UPDATED = "cart:updated"
    ERROR = "cart:error"
    CLOSED = "cart:closed"
    PONG = "pong"


# ============== SESSIONS ==============
SESSION_IDLE_TIMEOUT_SECONDS = 30 * 60
SESSION_CLEANUP_INTERVAL_SECONDS = 60
CLOSED_SESSION_HISTORY = 1000

# ============== CART ==============
MAX_LINE_QUANTITY = 99
MAX_NOTES_LENGTH = 500

# ============== CHANNELS ==============
CHANNEL_QUEUE_SIZE = 100
WS_HEARTBEAT_SECONDS = 30

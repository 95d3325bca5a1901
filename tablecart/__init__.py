"""Real-time shared cart synchronization for restaurant table sessions."""

__version__ = "1.0.0"

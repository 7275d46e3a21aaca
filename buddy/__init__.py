"""Daily proactive session delivery for conversation subscribers."""

__version__ = "0.1.0"

"""
Exception types shared across the bot.

None of these are retried: callers log them and move on.
"""


class BotError(Exception):
    """Base exception for the intake bot."""
    pass


class ConfigError(BotError):
    """Raised when required configuration is missing or invalid."""
    pass


class TransportError(BotError):
    """Raised when the WhatsApp transport rejects or fails a call."""
    pass


class StorageError(BotError):
    """Raised when a database insert or query fails."""
    pass

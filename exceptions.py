class RealtimeError(Exception):
    """Base class for errors raised by the real-time layer."""


class AuthenticationError(RealtimeError):
    """Bad, missing or expired credential. Always ends the connection attempt.

    ``reason`` is the only part that is ever shown to the client.
    """

    TOKEN_REQUIRED = "Authentication token required"
    TOKEN_INVALID = "Invalid authentication token"
    TOKEN_EXPIRED = "Authentication token expired"

    def __init__(self, reason: str, detail: str = None):
        super().__init__(detail or reason)
        self.reason = reason
        self.detail = detail


class ConfigurationError(RealtimeError):
    """The server is missing something it needs (e.g. the JWT secret)."""

    REASON = "Server configuration error"


class UnknownChannelError(RealtimeError):
    def __init__(self, channel: str):
        super().__init__(f"Unknown channel: {channel}")
        self.channel = channel


class InvalidTransitionError(RealtimeError):
    def __init__(self, current, target):
        super().__init__(f"Invalid connection state transition {current} -> {target}")
        self.current = current
        self.target = target

"""Error taxonomy for the fan-out layer.

Learn: None of these ever reach a user as an error dialog.
- InvalidChannel / AuthorizationDenied → the subscription silently fails
- TransportUnavailable → caught at the dispatch call site and logged
- UnknownEventKind → programming error, surfaces in tests

Duplicate deliveries are not errors at all: the client drops them.
"""


class RealtimeError(Exception):
    """Base class for fan-out layer errors."""


class InvalidChannel(RealtimeError, ValueError):
    """Raised when a channel name or channel id is malformed."""


class AuthorizationDenied(RealtimeError):
    """Raised when a user may not subscribe to a channel."""

    def __init__(self, user_id: int, channel: str):
        super().__init__(f"User {user_id} may not subscribe to {channel}")
        self.user_id = user_id
        self.channel = channel


class TransportUnavailable(RealtimeError):
    """Raised when the pub/sub transport cannot accept a publish."""


class UnknownEventKind(RealtimeError, KeyError):
    """Raised when no payload builder is registered for an event kind."""

"""Error taxonomy for chat operations.

Every failure the engine reports to a caller is a ``ChatError`` carrying a
stable ``code`` that the transport layer forwards to the client.
"""


class ChatError(Exception):
    """Base class for errors reported to the calling connection."""

    code = "error"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self, event: str = "") -> dict:
        return {
            "type": "error",
            "event": event,
            "code": self.code,
            "error": self.message,
        }


class InvalidArgument(ChatError):
    """Rejected before any side effect (empty body, malformed ids)."""
    code = "invalid_argument"
    status_code = 400


class NotFound(ChatError):
    code = "not_found"
    status_code = 404


class Unauthorized(ChatError):
    code = "unauthorized"
    status_code = 403


class StoreUnavailable(ChatError):
    """The durable store failed; the operation was not applied."""
    code = "store_unavailable"
    status_code = 503

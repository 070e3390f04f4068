"""Exceptions raised by the chat room coordinator and its collaborators.

Each error carries the HTTP status code the application layer should use
when the failure surfaces as a request failure. Errors that never reach a
client (malformed frames, per-recipient delivery failures) still carry a
code so they can be logged uniformly.
"""


class ChatRoomError(Exception):
    """Base exception for chat room errors."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class InvalidRequest(ChatRoomError):
    """Raised when a join request lacks a user id or username."""
    def __init__(self, message: str = "Missing userId or username"):
        super().__init__(message, status_code=400)


class UnsupportedProtocol(ChatRoomError):
    """Raised when admission is attempted without an upgraded duplex channel."""
    def __init__(self, message: str = "Expected WebSocket upgrade"):
        super().__init__(message, status_code=426)


class MalformedPayload(ChatRoomError):
    """Raised when an inbound frame cannot be parsed or fails validation."""
    def __init__(self, message: str):
        super().__init__(f"Malformed payload: {message}", status_code=400)


class DeliveryFailure(ChatRoomError):
    """Raised when a frame cannot be handed to a client channel."""
    def __init__(self, message: str, session_id: int = -1):
        self.session_id = session_id
        super().__init__(message, status_code=500)


class PersistenceFailure(ChatRoomError):
    """Raised when the durable store cannot be read or written."""
    def __init__(self, message: str, key: str = ""):
        self.key = key
        super().__init__(f"Store error for key {key!r}: {message}", status_code=503)

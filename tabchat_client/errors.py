class ChatClientError(Exception):
    """Base class for errors raised by the chat client."""
    pass


class ConnectError(ChatClientError):
    """Raised when the TCP connection cannot be opened, or connect() is called in the wrong state."""
    pass


class HandshakeError(ConnectError):
    """Raised when the JOIN handshake fails: no reply, a closed stream or an unexpected frame."""
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class HandshakeRejectedError(HandshakeError):
    """Raised when the server answers the JOIN with an ERROR frame, e.g. a nickname already in use."""
    pass


class SendError(ChatClientError):
    """Raised when a single message cannot be queued. The connection stays up."""
    pass


class QueueFullError(SendError):
    """Raised when the send queue stays full for the whole enqueue timeout."""
    pass


class ReadFailure(ChatClientError):
    """I/O failure while reading in steady state. Reported as an ERROR frame, never raised to callers."""
    pass


class ShutdownError(ChatClientError):
    """Internal signal that wakes send queue waiters during teardown."""
    pass

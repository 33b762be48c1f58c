"""
Error taxonomy shared by the HTTP and WebSocket sides of the server.
"""


class LiveServerError(Exception):
    """Base class for all liveserver errors."""


class ParseError(LiveServerError):
    """HTML input could not be turned into a document."""


class MissingHeadError(LiveServerError):
    """The document has no head element to inject into."""


class NotFoundError(LiveServerError):
    """The requested resource does not exist or is not a file."""

    def __init__(self, path: str):
        super().__init__(f"Not found: {path}")
        self.path = path


class ProtocolError(LiveServerError):
    """Malformed envelope or a command not valid in the connection's state.

    Connection scoped: the connection that caused it is closed with a
    protocol-error close code. Nothing else is affected.
    """

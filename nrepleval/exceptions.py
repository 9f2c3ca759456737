"""
Shared exceptions for nrepl-eval.

Exception Hierarchy:
    NreplError (base)
    ├── NreplConnectionError (refused, reset, timed out, closed by peer)
    ├── ProtocolError (malformed or undecodable bytes on the wire)
    │   └── TruncatedMessageError (stream ended inside a value)
    ├── SessionInvalidError (stored session no longer known to the server)
    ├── ConfigError (invalid configuration values)
    └── StorageError (session directory cannot be written)

Evaluation timeouts are not exceptions: a timed-out evaluation is a normal
terminal state of the evaluator and carries whatever output was collected.
"""

from typing import Optional


class NreplError(Exception):
    """Base exception for all nrepl-eval errors."""


class NreplConnectionError(NreplError):
    """Raised when a socket cannot be opened or is lost mid-conversation."""

    def __init__(self, message: str, host: Optional[str] = None, port: Optional[int] = None):
        self.host = host
        self.port = port
        if host is not None and port is not None:
            message = f"{host}:{port}: {message}"
        super().__init__(message)


class ProtocolError(NreplError):
    """
    Raised when bytes received from the server are not valid bencode.

    The offending bytes are kept on ``data`` so they can be reported verbatim.
    """

    def __init__(self, message: str, data: bytes = b""):
        self.data = bytes(data)
        if data:
            preview = self.data[:120]
            suffix = b"..." if len(self.data) > 120 else b""
            message = f"{message} (bytes: {preview + suffix!r})"
        super().__init__(message)


class TruncatedMessageError(ProtocolError):
    """Raised when input ends before a complete value was read."""


class SessionInvalidError(NreplError):
    """Raised when a persisted session id is not active on the server."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is no longer active on the server")


class ConfigError(NreplError):
    """Raised when a configuration value cannot be parsed."""


class StorageError(NreplError):
    """Raised when a session record cannot be written or removed."""

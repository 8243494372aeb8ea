"""
LSP Tool Error Types

Errors raised by the transport, the connection manager and the action router.
The router converts all of them into a failure result at its boundary.
"""

from typing import Any

from lsp_constants import LSPErrorCode


class LSPError(Exception):
    """Base class for all LSP tool errors."""


class ValidationError(LSPError):
    """Action parameters are missing or malformed."""


class NotRunningError(LSPError):
    """An operation needing a live session was called without one."""


class TransportError(LSPError):
    """The server process could not be spawned or its stream failed."""


class ConnectionLostError(LSPError):
    """The transport closed while a request was outstanding."""


class RequestTimeoutError(LSPError):
    """No response arrived within the request timeout."""


class ProtocolError(LSPError):
    """The server answered a request with an explicit error response."""

    def __init__(self, code: int, message: str, data: Any | None = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"LSP error {code}: {message}")

    @classmethod
    def from_response(cls, error: dict[str, Any]) -> "ProtocolError":
        """Build the matching error type from a JSON-RPC error object."""
        code = error.get("code", LSPErrorCode.UNKNOWN_ERROR_CODE.value)
        message = error.get("message", "Unknown error")
        data = error.get("data")
        if code == LSPErrorCode.METHOD_NOT_FOUND.value:
            return UnsupportedOperationError(code, message, data)
        return cls(code, message, data)


class UnsupportedOperationError(ProtocolError):
    """The server does not implement the requested method."""


class RequestCancelledError(LSPError):
    """The caller cancelled the action before it completed."""

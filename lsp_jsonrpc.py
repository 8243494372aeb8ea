"""
JSON-RPC 2.0 Protocol Implementation for LSP

This module leverages python-lsp-jsonrpc package for message framing and
provides thin wrappers for building requests, notifications and responses.
"""

import io
import logging
import uuid
from typing import Any

from pylsp_jsonrpc.streams import JsonRpcStreamReader, JsonRpcStreamWriter

from lsp_constants import (
    JsonRPCMessage,
    LSPErrorCode,
)


class JSONRPCError(Exception):
    """Exception for JSON-RPC framing and parsing errors."""

    def __init__(self, code: LSPErrorCode, message: str, data: Any | None = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"JSON-RPC Error {code.value}: {message}")


# Simple compatibility classes that just wrap dictionaries
class JSONRPCMessage:
    """Base class for JSON-RPC messages - minimal wrapper around dict."""

    def __init__(self, data: dict[str, Any]):
        self._data = data

    def to_dict(self) -> dict[str, Any]:
        """Convert message to dictionary."""
        return self._data.copy()


class JSONRPCRequest(JSONRPCMessage):
    """JSON-RPC request message."""

    def __init__(
        self,
        method: str,
        params: Any | None = None,
        message_id: str | int | None = None,
    ):
        data = {
            "jsonrpc": "2.0",
            "method": method,
            "id": message_id if message_id is not None else str(uuid.uuid4()),
        }
        if params is not None:
            data["params"] = params
        super().__init__(data)

    @property
    def id(self) -> str | int:
        return self._data["id"]


class JSONRPCNotification(JSONRPCMessage):
    """JSON-RPC notification message."""

    def __init__(self, method: str, params: Any | None = None):
        data = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            data["params"] = params
        super().__init__(data)


class JSONRPCResponse(JSONRPCMessage):
    """JSON-RPC response message."""

    def __init__(
        self,
        message_id: str | int,
        result: Any | None = None,
        error: dict[str, Any] | None = None,
    ):
        data = {"jsonrpc": "2.0", "id": message_id}
        if error is not None:
            data["error"] = error
        else:
            data["result"] = result
        super().__init__(data)

    @property
    def id(self) -> str | int:
        return self._data["id"]

    @classmethod
    def create_error(
        cls,
        message_id: str | int,
        code: LSPErrorCode,
        message: str,
        data: Any | None = None,
    ) -> "JSONRPCResponse":
        """Create an error response."""
        error = {"code": code.value, "message": message}
        if data is not None:
            error["data"] = data
        return cls(message_id=message_id, error=error)


class JSONRPCProtocol:
    """JSON-RPC 2.0 protocol handler leveraging python-lsp-jsonrpc."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)

        # Create stream writer for serialization
        self._stream_buffer = io.BytesIO()
        self._stream_writer = JsonRpcStreamWriter(self._stream_buffer)

    def create_request(self, method: str, params: Any | None = None) -> JSONRPCRequest:
        """Create a new JSON-RPC request with a fresh correlation id."""
        return JSONRPCRequest(method=method, params=params)

    def create_notification(
        self, method: str, params: Any | None = None
    ) -> JSONRPCNotification:
        """Create a new JSON-RPC notification."""
        return JSONRPCNotification(method=method, params=params)

    def create_response(self, message_id: str | int, result: Any) -> JSONRPCResponse:
        """Create a successful JSON-RPC response."""
        return JSONRPCResponse(message_id=message_id, result=result)

    def create_error_response(
        self,
        message_id: str | int,
        code: LSPErrorCode,
        message: str,
        data: Any | None = None,
    ) -> JSONRPCResponse:
        """Create an error JSON-RPC response."""
        return JSONRPCResponse.create_error(
            message_id=message_id, code=code, message=message, data=data
        )

    def serialize_message(self, message: JSONRPCMessage | JsonRPCMessage) -> bytes:
        """Serialize a JSON-RPC message into a Content-Length framed payload."""
        payload = message.to_dict() if isinstance(message, JSONRPCMessage) else message
        self._stream_buffer.seek(0)
        self._stream_buffer.truncate()
        self._stream_writer.write(payload)
        self._stream_buffer.seek(0)
        data = self._stream_buffer.read()
        if not data:
            # JsonRpcStreamWriter logs and swallows encoding failures
            raise JSONRPCError(
                LSPErrorCode.INTERNAL_ERROR,
                f"Failed to serialize message: {payload.get('method', 'response')}",
            )
        return data

    def decode_frame(self, raw_frame: bytes) -> JsonRPCMessage:
        """Decode one framed message (headers + body) into a dictionary."""
        messages: list[Any] = []
        reader = JsonRpcStreamReader(io.BytesIO(raw_frame))
        reader.listen(messages.append)

        if not messages:
            raise JSONRPCError(
                LSPErrorCode.PARSE_ERROR, "No valid JSON-RPC message found"
            )

        message = messages[0]
        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
            raise JSONRPCError(LSPErrorCode.INVALID_REQUEST, "Invalid JSON-RPC message")
        return message

    @staticmethod
    def parse_content_length(header_lines: list[bytes]) -> int:
        """Extract the Content-Length value from raw header lines."""
        for line in header_lines:
            try:
                text = line.decode("ascii").strip()
            except UnicodeDecodeError as e:
                raise JSONRPCError(
                    LSPErrorCode.PARSE_ERROR, f"Invalid header encoding: {e}"
                ) from e
            if ":" not in text:
                continue
            key, value = text.split(":", 1)
            if key.strip().lower() == "content-length":
                try:
                    length = int(value.strip())
                except ValueError as e:
                    raise JSONRPCError(
                        LSPErrorCode.PARSE_ERROR, f"Invalid Content-Length header: {text}"
                    ) from e
                if length < 0:
                    raise JSONRPCError(
                        LSPErrorCode.PARSE_ERROR, f"Invalid Content-Length header: {text}"
                    )
                return length

        raise JSONRPCError(LSPErrorCode.PARSE_ERROR, "Missing Content-Length header")

    def is_request(self, message: JsonRPCMessage) -> bool:
        """Check if message is a request."""
        return "id" in message and "method" in message

    def is_response(self, message: JsonRPCMessage) -> bool:
        """Check if message is a response."""
        return (
            "id" in message
            and "method" not in message
            and ("result" in message or "error" in message)
        )

    def is_notification(self, message: JsonRPCMessage) -> bool:
        """Check if message is a notification."""
        return "method" in message and "id" not in message

"""
Test fixtures and fake objects for the LSP tool test suite.

These are in-memory stand-ins injected through the connection manager's
transport factory instead of patching asyncio subprocesses.

Currently provides:
- FakeLanguageServer: scripted answers per LSP method
- FakeTransport: message transport wired to a FakeLanguageServer
- FakeTransportFactory: counts spawns and records every transport

Usage:
    from tests.test_fixtures import FakeLanguageServer, FakeTransportFactory

    async def test_something():
        factory = FakeTransportFactory(FakeLanguageServer())
        manager = LSPConnectionManager(root, transport_factory=factory)
"""

import asyncio
from typing import Any

from lsp_constants import LSPMethod
from lsp_errors import TransportError
from lsp_transport import AbstractMessageTransport

DEFAULT_INITIALIZE_RESULT = {
    "capabilities": {"hoverProvider": True, "definitionProvider": True},
    "serverInfo": {"name": "fake-server", "version": "1.0"},
}


class FakeLanguageServer:
    """Scripted server side of a FakeTransport.

    Answers every request with the configured result or error for its method.
    Methods listed in ``silent`` are never answered.
    """

    def __init__(self):
        self.results: dict[str, Any] = {
            LSPMethod.INITIALIZE: DEFAULT_INITIALIZE_RESULT,
            LSPMethod.SHUTDOWN: None,
        }
        self.errors: dict[str, dict[str, Any]] = {}
        self.silent: set[str] = set()
        self.received: list[dict[str, Any]] = []

    def requests_for(self, method: str) -> list[dict[str, Any]]:
        return [m for m in self.received if m.get("method") == method]

    def handle(self, message: dict[str, Any]) -> dict[str, Any] | None:
        self.received.append(message)
        method = message.get("method")
        if method is None or "id" not in message:
            return None  # notification or client response
        if method in self.silent:
            return None
        if method in self.errors:
            return {"jsonrpc": "2.0", "id": message["id"], "error": self.errors[method]}
        return {"jsonrpc": "2.0", "id": message["id"], "result": self.results.get(method)}


class FakeTransport(AbstractMessageTransport):
    """In-memory transport wired to a FakeLanguageServer."""

    def __init__(self, server: FakeLanguageServer, pid: int = 4242):
        self.server = server
        self._pid = pid
        self._closed = False
        self.disposed = False
        self.sent: list[dict[str, Any]] = []
        self._on_message = None
        self._on_close = None

    @property
    def pid(self) -> int | None:
        return self._pid

    @property
    def is_closed(self) -> bool:
        return self._closed

    def listen(self, on_message, on_close) -> None:
        self._on_message = on_message
        self._on_close = on_close

    async def send(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise TransportError("Cannot send message: transport is closed")
        self.sent.append(message)
        reply = self.server.handle(message)
        if reply is not None:
            asyncio.get_running_loop().call_soon(self.deliver, reply)

    def deliver(self, message: dict[str, Any]) -> None:
        """Push a message from the server to the client."""
        if not self._closed and self._on_message is not None:
            self._on_message(message)

    def close_from_server(self, error: Exception | None = None) -> None:
        """Simulate the server process going away."""
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            self._on_close(error)

    async def dispose(self) -> None:
        self._closed = True
        self.disposed = True


class FakeTransportFactory:
    """Transport factory that counts spawns and keeps every transport it made."""

    def __init__(self, server: FakeLanguageServer):
        self.server = server
        self.calls: list[tuple[str, list[str], str]] = []
        self.transports: list[FakeTransport] = []
        self.error: Exception | None = None

    @property
    def spawn_count(self) -> int:
        return len(self.calls)

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]

    async def __call__(self, command: str, args: list[str], cwd: str) -> FakeTransport:
        self.calls.append((command, list(args), cwd))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        transport = FakeTransport(self.server, pid=4242 + len(self.transports))
        self.transports.append(transport)
        return transport


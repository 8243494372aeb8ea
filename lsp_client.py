"""
LSP Connection Manager

This module owns one language server session: it spawns the server through a
message transport, performs the initialize handshake, correlates requests with
their responses and tears the session down. It exposes one typed coroutine per
supported LSP request.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path
from typing import Any

from constants import (
    CLIENT_NAME,
    CLIENT_VERSION,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_STARTUP_GRACE,
)
from lsp_constants import (
    CallHierarchyItem,
    CodeActionContext,
    FormattingOptions,
    InitializeResult,
    JsonRPCMessage,
    LSPCapabilities,
    LSPDiagnosticSeverity,
    LSPErrorCode,
    LSPMessageType,
    LSPMethod,
    Position,
    Range,
)
from lsp_errors import (
    ConnectionLostError,
    LSPError,
    NotRunningError,
    ProtocolError,
    RequestTimeoutError,
    TransportError,
)
from lsp_jsonrpc import JSONRPCProtocol, JSONRPCResponse
from lsp_transport import AbstractMessageTransport, StdioMessageTransport

TransportFactory = Callable[[str, list[str], str], Awaitable[AbstractMessageTransport]]

# Sentinel meaning "use the manager's request timeout"
_DEFAULT_TIMEOUT = object()


class LSPConnectionState(Enum):
    """States of a language server session."""

    UNSTARTED = "unstarted"
    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"


def path_to_uri(file_path: str, project_root: Path) -> str:
    """Convert a file path to a file:// URI, resolving relative paths against the root."""
    path = Path(file_path)
    if not path.is_absolute():
        path = project_root / path
    return path.as_uri()


class LSPConnectionManager:
    """Manage exactly one language server process and the protocol session over it.

    State moves UNSTARTED -> STARTING -> READY -> STOPPED. STOPPED is terminal:
    a new manager must be constructed to talk to a new server process.
    """

    def __init__(
        self,
        project_root: str,
        logger: logging.Logger | None = None,
        transport_factory: TransportFactory | None = None,
        initialization_options: dict[str, Any] | None = None,
        request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        startup_grace: float = DEFAULT_STARTUP_GRACE,
    ):
        """
        Initialize the connection manager.

        Args:
            project_root: Workspace root; the server runs with this as its cwd
            logger: Logger instance (defaults to a per-workspace child logger)
            transport_factory: Coroutine ``(command, args, cwd)`` returning a
                transport; defaults to spawning a stdio subprocess
            initialization_options: Server-specific ``initializationOptions``
            request_timeout: Seconds to wait for each response, None to wait forever
            shutdown_timeout: Seconds to wait for the ``shutdown`` response on stop
            startup_grace: Seconds a freshly spawned server must stay alive
        """
        self.project_root = Path(project_root).resolve()
        self.logger = logger or logging.getLogger(f"{__name__}.{self.project_root.name}")
        self.initialization_options = initialization_options
        self.request_timeout = request_timeout
        self.shutdown_timeout = shutdown_timeout
        self.startup_grace = startup_grace

        self.protocol = JSONRPCProtocol(logger=self.logger)
        self._transport_factory = transport_factory or self._spawn_stdio_transport

        # Connection state
        self._state = LSPConnectionState.UNSTARTED
        self._transport: AbstractMessageTransport | None = None
        self._initialize_result: InitializeResult | None = None
        self._start_task: asyncio.Task | None = None
        self.server_capabilities: dict[str, Any] = {}

        # Request/response tracking
        self._pending_requests: dict[str | int, asyncio.Future] = {}
        self._background_tasks: set[asyncio.Task] = set()

        # Server-to-client requests and notifications
        self._request_handlers: dict[str, Callable[[Any], Any]] = {
            LSPMethod.WORKSPACE_CONFIGURATION: self._handle_workspace_configuration,
            LSPMethod.SHOW_MESSAGE_REQUEST: lambda params: None,
            LSPMethod.REGISTER_CAPABILITY: lambda params: None,
            LSPMethod.WORK_DONE_PROGRESS_CREATE: lambda params: None,
        }
        self._notification_handlers: dict[str, Callable[[Any], None]] = {
            LSPMethod.PUBLISH_DIAGNOSTICS: self._handle_publish_diagnostics,
            LSPMethod.SHOW_MESSAGE: self._handle_show_message,
            LSPMethod.LOG_MESSAGE: self._handle_log_message,
        }

    # Lifecycle

    @property
    def state(self) -> LSPConnectionState:
        """Get the current connection state."""
        return self._state

    def _set_state(self, new_state: LSPConnectionState) -> None:
        """Set connection state with logging."""
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self.logger.info(f"LSP connection state: {old_state.value} -> {new_state.value}")

    def is_running(self) -> bool:
        """True while a transport is bound (STARTING or READY)."""
        return self._state in (LSPConnectionState.STARTING, LSPConnectionState.READY)

    async def start(
        self, server_command: str, server_args: list[str] | None = None
    ) -> InitializeResult:
        """Start the language server and perform the initialize handshake.

        Idempotent: once READY the cached InitializeResult is returned without
        spawning again, and concurrent callers share one in-flight attempt.

        Raises:
            TransportError: If the server process cannot be started
            NotRunningError: If this manager has already been stopped
        """
        if self._state == LSPConnectionState.READY and self._initialize_result is not None:
            return self._initialize_result

        if self._state == LSPConnectionState.STOPPED:
            raise NotRunningError(
                "LSP connection has been stopped; create a new connection manager"
            )

        if self._start_task is None:
            # STARTING is set before the task runs so concurrent callers see it
            self._set_state(LSPConnectionState.STARTING)
            self._start_task = asyncio.create_task(
                self._start(server_command, list(server_args or []))
            )
            self._start_task.add_done_callback(self._on_start_done)

        return await asyncio.shield(self._start_task)

    async def _start(self, server_command: str, server_args: list[str]) -> InitializeResult:
        if self._state != LSPConnectionState.STARTING:
            raise ConnectionLostError("LSP connection was stopped during startup")

        try:
            transport = await self._transport_factory(
                server_command, server_args, str(self.project_root)
            )
        except TransportError:
            self._set_state(LSPConnectionState.STOPPED)
            raise
        except OSError as e:
            self._set_state(LSPConnectionState.STOPPED)
            raise TransportError(f"Failed to start language server '{server_command}': {e}") from e

        if self._state != LSPConnectionState.STARTING:
            # stop() ran while the process was spawning
            await transport.dispose()
            raise ConnectionLostError("LSP connection was stopped during startup")

        self._transport = transport
        transport.listen(self._handle_message, self._handle_transport_closed)

        try:
            result = await self._send_request(
                LSPMethod.INITIALIZE, self._build_initialize_params()
            )
            if self._state != LSPConnectionState.STARTING:
                raise ConnectionLostError("LSP connection was stopped during initialization")
            await self._send_notification(LSPMethod.INITIALIZED, {})
        except (Exception, asyncio.CancelledError) as e:
            self.logger.error(f"LSP initialization failed: {e}")
            await self._teardown(ConnectionLostError(f"LSP initialization failed: {e}"))
            raise

        self._initialize_result = result if isinstance(result, dict) else {}
        self.server_capabilities = self._initialize_result.get("capabilities", {}) or {}
        self._set_state(LSPConnectionState.READY)
        server_info = self._initialize_result.get("serverInfo", {}) or {}
        self.logger.info(
            f"LSP connection initialized "
            f"(server: {server_info.get('name', server_command)} {server_info.get('version', '')})".rstrip()
        )
        return self._initialize_result

    def _on_start_done(self, task: asyncio.Task) -> None:
        # Retrieve the exception so an abandoned attempt does not warn at exit
        if not task.cancelled() and task.exception() is not None:
            self.logger.debug(f"LSP start attempt failed: {task.exception()}")

    def _build_initialize_params(self) -> dict[str, Any]:
        root_uri = self.project_root.as_uri()
        params: dict[str, Any] = {
            "processId": os.getpid(),
            "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
            "rootUri": root_uri,
            "rootPath": str(self.project_root),
            "workspaceFolders": [{"uri": root_uri, "name": self.project_root.name}],
            "capabilities": LSPCapabilities.client_capabilities(),
        }
        if self.initialization_options:
            params["initializationOptions"] = self.initialization_options
        return params

    async def _spawn_stdio_transport(
        self, command: str, args: list[str], cwd: str
    ) -> AbstractMessageTransport:
        return await StdioMessageTransport.spawn(
            command, args, cwd, logger=self.logger, startup_grace=self.startup_grace
        )

    async def stop(self) -> None:
        """Shut the server down and release the session. Safe to call in any state."""
        if self._state == LSPConnectionState.STOPPED and self._transport is None:
            return

        was_ready = self._state == LSPConnectionState.READY
        self._set_state(LSPConnectionState.STOPPED)

        if was_ready:
            await self._send_shutdown()

        await self._teardown(ConnectionLostError("LSP connection was stopped"))
        self.logger.info("LSP connection stopped")

    async def _send_shutdown(self) -> None:
        """Send the shutdown request and exit notification, best effort."""
        try:
            await self._send_request(LSPMethod.SHUTDOWN, timeout=self.shutdown_timeout)
            await self._send_notification(LSPMethod.EXIT)
        except LSPError as e:
            self.logger.warning(f"Error during server shutdown: {e}")

    def _mark_stopped(self, reason: LSPError) -> AbstractMessageTransport | None:
        """Synchronously detach the transport and fail every pending request."""
        transport = self._transport
        self._transport = None
        self._initialize_result = None
        self.server_capabilities = {}
        self._set_state(LSPConnectionState.STOPPED)

        pending = self._pending_requests
        self._pending_requests = {}
        for request_id, future in pending.items():
            if not future.done():
                self.logger.debug(f"Failing pending request {request_id}: {reason}")
                future.set_exception(ConnectionLostError(str(reason)))
        return transport

    async def _teardown(self, reason: LSPError) -> None:
        transport = self._mark_stopped(reason)
        if transport is None:
            return
        try:
            await transport.dispose()
        except Exception as e:
            self.logger.error(f"Error disposing LSP transport: {e}")

    # Message handling

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _handle_message(self, message: JsonRPCMessage) -> None:
        """Dispatch one message received from the transport."""
        if self.protocol.is_response(message):
            self._handle_response(message)
        elif self.protocol.is_request(message):
            self._handle_server_request(message)
        elif self.protocol.is_notification(message):
            self._handle_notification(message)
        else:
            self.logger.warning(f"Unknown message type: {message}")

    def _handle_response(self, message: JsonRPCMessage) -> None:
        request_id = message.get("id")
        future = self._pending_requests.pop(request_id, None)
        if future is None:
            self.logger.warning(f"Discarding response for unknown request ID: {request_id}")
            return
        if future.done():
            self.logger.warning(f"Response for already completed request {request_id}")
            return
        future.set_result(message)

    def _handle_server_request(self, message: JsonRPCMessage) -> None:
        method = message.get("method")
        message_id = message.get("id")
        handler = self._request_handlers.get(method)

        response: JSONRPCResponse
        if handler is None:
            self.logger.debug(f"No handler for request method: {method}")
            response = self.protocol.create_error_response(
                message_id, LSPErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}"
            )
        else:
            try:
                response = self.protocol.create_response(
                    message_id, handler(message.get("params"))
                )
            except Exception as e:
                self.logger.error(f"Error in request handler for {method}: {e}")
                response = self.protocol.create_error_response(
                    message_id, LSPErrorCode.INTERNAL_ERROR, f"Handler error: {e}"
                )

        self._spawn(self._send_reply(response))

    async def _send_reply(self, response: JSONRPCResponse) -> None:
        transport = self._transport
        if transport is None:
            return
        try:
            await transport.send(response.to_dict())
        except LSPError as e:
            self.logger.warning(f"Failed to answer server request {response.id}: {e}")

    def _handle_notification(self, message: JsonRPCMessage) -> None:
        method = message.get("method")
        handler = self._notification_handlers.get(method)
        if handler is None:
            self.logger.debug(f"No handler for notification method: {method}")
            return
        try:
            handler(message.get("params") or {})
        except Exception as e:
            self.logger.error(f"Error in notification handler for {method}: {e}")

    def _handle_transport_closed(self, error: Exception | None) -> None:
        if self._transport is None:
            return
        if error is not None:
            self.logger.error(f"LSP transport failed: {error}")
            reason = ConnectionLostError(f"Language server connection lost: {error}")
        else:
            self.logger.warning("LSP transport closed by server")
            reason = ConnectionLostError("Language server connection closed")

        transport = self._mark_stopped(reason)
        if transport is not None:
            self._spawn(self._dispose_transport(transport))

    async def _dispose_transport(self, transport: AbstractMessageTransport) -> None:
        try:
            await transport.dispose()
        except Exception as e:
            self.logger.error(f"Error disposing LSP transport: {e}")

    def _handle_workspace_configuration(self, params: Any) -> list[dict[str, Any]]:
        items = (params or {}).get("items", [])
        return [{} for _ in items]

    def _handle_publish_diagnostics(self, params: dict[str, Any]) -> None:
        diagnostics = params.get("diagnostics", [])
        errors = sum(
            1
            for d in diagnostics
            if d.get("severity") == LSPDiagnosticSeverity.ERROR.value
        )
        self.logger.debug(
            f"Received diagnostics for {params.get('uri')}: "
            f"{len(diagnostics)} items ({errors} errors)"
        )

    def _server_log_level(self, params: dict[str, Any]) -> int:
        levels = {
            LSPMessageType.ERROR.value: logging.ERROR,
            LSPMessageType.WARNING.value: logging.WARNING,
            LSPMessageType.INFO.value: logging.INFO,
        }
        return levels.get(params.get("type"), logging.DEBUG)

    def _handle_show_message(self, params: dict[str, Any]) -> None:
        self.logger.log(
            max(self._server_log_level(params), logging.INFO),
            f"Server message: {params.get('message', '')}",
        )

    def _handle_log_message(self, params: dict[str, Any]) -> None:
        # Only errors from window/logMessage are logged above debug
        level = self._server_log_level(params)
        self.logger.log(
            level if level >= logging.ERROR else logging.DEBUG,
            f"Server log: {params.get('message', '')}",
        )

    # Request plumbing

    async def _send_notification(self, method: str, params: Any | None = None) -> None:
        transport = self._transport
        if transport is None:
            raise NotRunningError("LSP connection is not running")
        notification = self.protocol.create_notification(method, params)
        await transport.send(notification.to_dict())

    async def _send_request(
        self, method: str, params: Any | None = None, timeout: Any = _DEFAULT_TIMEOUT
    ) -> Any:
        """Send a request and wait for its correlated response.

        Returns:
            The ``result`` member of the response (may be None)

        Raises:
            ProtocolError: If the server answered with an error
            ConnectionLostError: If the session ended before the response arrived
            RequestTimeoutError: If no response arrived in time
            TransportError: If the request could not be written
        """
        transport = self._transport
        if transport is None:
            raise NotRunningError("LSP connection is not running")
        if timeout is _DEFAULT_TIMEOUT:
            timeout = self.request_timeout

        request = self.protocol.create_request(method, params)
        request_id = request.id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            self.logger.debug(f"Sending request: {method} (ID: {request_id})")
            await transport.send(request.to_dict())
            if timeout is None:
                response = await future
            else:
                response = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            self._pending_requests.pop(request_id, None)
            await self._send_cancel(request_id)
            raise RequestTimeoutError(
                f"Request timeout: {method} (ID: {request_id}) after {timeout}s"
            ) from None
        except asyncio.CancelledError:
            if self._pending_requests.pop(request_id, None) is not None:
                await self._send_cancel(request_id)
            raise
        except TransportError as e:
            self._pending_requests.pop(request_id, None)
            await self._teardown(ConnectionLostError(f"Language server connection lost: {e}"))
            raise
        except LSPError:
            self._pending_requests.pop(request_id, None)
            raise

        self.logger.debug(f"Received response for: {method} (ID: {request_id})")
        error = response.get("error")
        if error is not None:
            protocol_error = ProtocolError.from_response(error)
            self.logger.warning(f"{method} failed: {protocol_error}")
            raise protocol_error
        return response.get("result")

    async def _send_cancel(self, request_id: str | int) -> None:
        try:
            await self._send_notification(LSPMethod.CANCEL_REQUEST, {"id": request_id})
        except LSPError as e:
            self.logger.debug(f"Could not cancel request {request_id}: {e}")

    def _require_running(self) -> None:
        if not self.is_running():
            raise NotRunningError("LSP connection is not running")

    def _text_document(self, file_path: str) -> dict[str, str]:
        return {"uri": path_to_uri(file_path, self.project_root)}

    async def _position_request(self, method: str, file_path: str, position: Position) -> Any:
        self._require_running()
        params = {
            "textDocument": self._text_document(file_path),
            "position": position.to_dict(),
        }
        return await self._send_request(method, params)

    # Public API methods

    def get_server_capabilities(self) -> dict[str, Any]:
        """Get the capabilities reported by the server during the handshake."""
        return self.server_capabilities.copy()

    def get_pending_request_count(self) -> int:
        """Get the number of requests still waiting for a response."""
        return len(self._pending_requests)

    async def find_references(self, file_path: str, position: Position) -> list[dict] | None:
        """Find all references to the symbol at a position, declaration included."""
        self._require_running()
        params = {
            "textDocument": self._text_document(file_path),
            "position": position.to_dict(),
            "context": {"includeDeclaration": True},
        }
        return await self._send_request(LSPMethod.REFERENCES, params)

    async def go_to_definition(self, file_path: str, position: Position) -> dict | list | None:
        """Get the definition location(s) of the symbol at a position."""
        return await self._position_request(LSPMethod.DEFINITION, file_path, position)

    async def get_diagnostics(self, file_path: str) -> list[dict]:
        """Pull diagnostics for a file.

        Best effort: servers that reject or do not implement pull diagnostics
        yield an empty list instead of an error.
        """
        self._require_running()
        params = {"textDocument": self._text_document(file_path)}
        try:
            report = await self._send_request(LSPMethod.DIAGNOSTIC, params)
        except ProtocolError as e:
            self.logger.warning(f"Failed to pull diagnostics for {file_path}: {e}")
            return []

        if not isinstance(report, dict):
            return []
        return report.get("items") or []

    async def get_hover(self, file_path: str, position: Position) -> dict | None:
        """Get hover information for the symbol at a position."""
        return await self._position_request(LSPMethod.HOVER, file_path, position)

    async def get_document_symbols(self, file_path: str) -> list[dict] | None:
        """Get the symbols defined in a document."""
        self._require_running()
        params = {"textDocument": self._text_document(file_path)}
        return await self._send_request(LSPMethod.DOCUMENT_SYMBOLS, params)

    async def get_workspace_symbols(self, query: str) -> list[dict] | None:
        """Get workspace symbols matching a query. The result is not filtered here."""
        self._require_running()
        return await self._send_request(LSPMethod.WORKSPACE_SYMBOLS, {"query": query})

    async def get_code_actions(
        self, file_path: str, range_: Range, context: CodeActionContext
    ) -> list[dict] | None:
        """Get code actions for a range of a document."""
        self._require_running()
        params = {
            "textDocument": self._text_document(file_path),
            "range": range_.to_dict(),
            "context": context,
        }
        return await self._send_request(LSPMethod.CODE_ACTION, params)

    async def prepare_rename(self, file_path: str, position: Position) -> dict | None:
        """Check that the symbol at a position can be renamed."""
        return await self._position_request(LSPMethod.PREPARE_RENAME, file_path, position)

    async def rename_symbol(
        self, file_path: str, position: Position, new_name: str
    ) -> dict | None:
        """Compute the workspace edit renaming the symbol at a position."""
        self._require_running()
        params = {
            "textDocument": self._text_document(file_path),
            "position": position.to_dict(),
            "newName": new_name,
        }
        return await self._send_request(LSPMethod.RENAME, params)

    async def prepare_call_hierarchy(
        self, file_path: str, position: Position
    ) -> list[CallHierarchyItem] | None:
        """Resolve the call hierarchy item(s) at a position."""
        return await self._position_request(
            LSPMethod.PREPARE_CALL_HIERARCHY, file_path, position
        )

    async def get_incoming_calls(self, item: CallHierarchyItem) -> list[dict] | None:
        """Get the callers of a call hierarchy item. The item is sent unchanged."""
        self._require_running()
        return await self._send_request(LSPMethod.INCOMING_CALLS, {"item": item})

    async def get_outgoing_calls(self, item: CallHierarchyItem) -> list[dict] | None:
        """Get the callees of a call hierarchy item. The item is sent unchanged."""
        self._require_running()
        return await self._send_request(LSPMethod.OUTGOING_CALLS, {"item": item})

    async def go_to_implementation(self, file_path: str, position: Position) -> dict | list | None:
        """Get the implementation location(s) of the symbol at a position."""
        return await self._position_request(LSPMethod.IMPLEMENTATION, file_path, position)

    async def format_document(
        self, file_path: str, options: FormattingOptions
    ) -> list[dict] | None:
        """Get the text edits that format a whole document."""
        self._require_running()
        params = {"textDocument": self._text_document(file_path), "options": options}
        return await self._send_request(LSPMethod.FORMATTING, params)

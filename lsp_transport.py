"""
LSP Message Transport

This module binds a language server subprocess's standard streams to a framed
message channel. Framing is done by python-lsp-jsonrpc through JSONRPCProtocol;
the transport only moves whole frames over asyncio streams and reports when
the channel closes.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable

from constants import (
    DEFAULT_STARTUP_GRACE,
    PROCESS_TERMINATE_TIMEOUT,
    STDERR_CHUNK_SIZE,
    STDERR_LINE_LIMIT,
)
from lsp_constants import JsonRPCMessage
from lsp_errors import TransportError
from lsp_jsonrpc import JSONRPCError, JSONRPCProtocol
from system_utils import (
    collect_descendants,
    get_process_tree_state,
    terminate_processes_async,
)

MessageCallback = Callable[[JsonRPCMessage], None]
CloseCallback = Callable[[Exception | None], None]


class AbstractMessageTransport(ABC):
    """Duplex message channel to a language server."""

    @property
    @abstractmethod
    def pid(self) -> int | None:
        """Process id of the server on the other end, if any."""
        pass

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """True once the channel can no longer carry messages."""
        pass

    @abstractmethod
    def listen(self, on_message: MessageCallback, on_close: CloseCallback) -> None:
        """Start delivering incoming messages.

        ``on_close`` is called at most once, with the stream error or ``None``
        for a clean end of stream. It is not called for an explicit dispose().
        """
        pass

    @abstractmethod
    async def send(self, message: JsonRPCMessage) -> None:
        """Send one message. Raises TransportError when the channel is closed."""
        pass

    @abstractmethod
    async def dispose(self) -> None:
        """Stop listening, release the streams and terminate the server."""
        pass


class StdioMessageTransport(AbstractMessageTransport):
    """Transport over the stdin/stdout pipes of an asyncio subprocess."""

    @classmethod
    async def spawn(
        cls,
        command: str,
        args: list[str],
        cwd: str,
        logger: logging.Logger | None = None,
        startup_grace: float = DEFAULT_STARTUP_GRACE,
    ) -> "StdioMessageTransport":
        """Launch a language server and return a transport bound to it.

        Raises:
            TransportError: If the command cannot be executed or the process
                exits within ``startup_grace`` seconds
        """
        logger = logger or logging.getLogger(__name__)
        full_command = [command, *args]
        logger.info(f"Starting LSP server: {' '.join(full_command)}")
        logger.debug(f"Workspace root: {cwd}")

        try:
            process = await asyncio.create_subprocess_exec(
                *full_command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=os.environ.copy(),
            )
        except FileNotFoundError as e:
            raise TransportError(f"Language server command not found: {command}") from e
        except OSError as e:
            raise TransportError(f"Failed to start language server '{command}': {e}") from e

        if startup_grace > 0:
            try:
                await asyncio.wait_for(process.wait(), timeout=startup_grace)
            except asyncio.TimeoutError:
                pass  # still running
            else:
                stderr = b""
                if process.stderr:
                    stderr = await process.stderr.read()
                detail = stderr.decode("utf-8", errors="replace").strip()
                message = (
                    f"Language server '{command}' exited immediately "
                    f"with code {process.returncode}"
                )
                if detail:
                    message = f"{message}: {detail}"
                logger.error(message)
                raise TransportError(message)

        logger.info(f"LSP server process started (PID: {process.pid})")
        return cls(process, logger=logger)

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        logger: logging.Logger | None = None,
        protocol: JSONRPCProtocol | None = None,
        terminate_timeout: float = PROCESS_TERMINATE_TIMEOUT,
    ):
        self.process = process
        self.logger = logger or logging.getLogger(__name__)
        self.protocol = protocol or JSONRPCProtocol(logger=self.logger)
        self.terminate_timeout = terminate_timeout

        self._on_message: MessageCallback | None = None
        self._on_close: CloseCallback | None = None
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._disposed = False

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def is_closed(self) -> bool:
        return self._closed

    def listen(self, on_message: MessageCallback, on_close: CloseCallback) -> None:
        if self._reader_task is not None:
            raise TransportError("Transport is already listening")
        self._on_message = on_message
        self._on_close = on_close
        self._reader_task = asyncio.create_task(self._read_loop())
        if self.process.stderr:
            self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def send(self, message: JsonRPCMessage) -> None:
        stdin = self.process.stdin
        if self._closed or stdin is None:
            raise TransportError("Cannot send message: transport is closed")

        data = self.protocol.serialize_message(message)
        async with self._write_lock:
            try:
                stdin.write(data)
                await stdin.drain()
            except (ConnectionError, OSError) as e:
                raise TransportError(f"Failed to write to language server: {e}") from e

        self.logger.debug(
            f"Sent message: {message.get('method', 'response')} "
            f"(ID: {message.get('id', 'N/A')}) - {len(data)} bytes"
        )

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._closed = True
        self.logger.debug(f"Disposing transport for PID {self.pid}")

        for task in (self._reader_task, self._stderr_task):
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        stdin = self.process.stdin
        if stdin and not stdin.is_closing():
            try:
                stdin.close()
                await stdin.wait_closed()
            except (ConnectionError, OSError) as e:
                self.logger.debug(f"Error closing server stdin: {e}")

        # Helpers must be collected while the server is still their parent
        helpers = collect_descendants(self.process.pid)
        if helpers:
            self.logger.debug(f"Server process tree: {get_process_tree_state(self.process.pid)}")

        if self.process.returncode is None:
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.process.wait(), timeout=self.terminate_timeout)
            except asyncio.TimeoutError:
                self.logger.warning("Server process didn't terminate, killing")
                try:
                    self.process.kill()
                except ProcessLookupError:
                    pass
                await self.process.wait()

        await terminate_processes_async(helpers, self.terminate_timeout, self.logger)
        self.logger.info(
            f"LSP server process {self.pid} stopped (exit code: {self.process.returncode})"
        )

    async def _read_frame(self) -> bytes | None:
        """Read one framed message, or return None at end of stream."""
        reader = self.process.stdout
        if reader is None:
            return None

        header_lines: list[bytes] = []
        while True:
            line = await reader.readline()
            if not line:
                return None
            if line in (b"\r\n", b"\n"):
                if header_lines:
                    break
                continue  # stray blank line between frames
            header_lines.append(line)

        try:
            content_length = self.protocol.parse_content_length(header_lines)
        except JSONRPCError as e:
            # The stream cannot be resynchronised without a length
            raise TransportError(f"Invalid message header from server: {e}") from e

        body = await reader.readexactly(content_length)
        return f"Content-Length: {content_length}\r\n\r\n".encode("ascii") + body

    async def _read_loop(self) -> None:
        self.logger.debug("Message reader loop started")
        error: Exception | None = None
        try:
            while True:
                frame = await self._read_frame()
                if frame is None:
                    self.logger.warning(
                        f"Server closed connection (PID: {self.pid}, "
                        f"exit code: {self.process.returncode})"
                    )
                    break

                try:
                    message = self.protocol.decode_frame(frame)
                except JSONRPCError as e:
                    self.logger.error(f"Discarding malformed message from server: {e}")
                    continue

                self.logger.debug(
                    f"Received message: {message.get('method', 'response')} "
                    f"(ID: {message.get('id', 'N/A')})"
                )
                if self._on_message is not None:
                    try:
                        self._on_message(message)
                    except Exception as e:
                        self.logger.error(f"Error processing message: {e}")
        except asyncio.IncompleteReadError as e:
            error = TransportError(
                f"Server stream ended mid-message ({len(e.partial)} of {e.expected} bytes)"
            )
        except TransportError as e:
            error = e
        except (ValueError, ConnectionError, OSError) as e:
            error = TransportError(f"Error reading from language server: {e}")
        finally:
            self.logger.debug("Message reader loop ended")

        if error is not None:
            self.logger.error(str(error))
        self._notify_closed(error)

    async def _drain_stderr(self) -> None:
        """Log server stderr until it closes.

        Reads fixed-size chunks so an overlong line cannot end the drain.
        """
        stderr = self.process.stderr
        if stderr is None:
            return
        pending = b""
        try:
            while True:
                chunk = await stderr.read(STDERR_CHUNK_SIZE)
                if not chunk:
                    break
                *lines, pending = (pending + chunk).split(b"\n")
                for line in lines:
                    self._log_stderr(line)
                if len(pending) > STDERR_LINE_LIMIT:
                    self._log_stderr(pending[:STDERR_LINE_LIMIT] + b" [truncated]")
                    pending = b""
        except (ConnectionError, OSError) as e:
            self.logger.debug(f"Stopped reading server stderr: {e}")
        if pending:
            self._log_stderr(pending)

    def _log_stderr(self, line: bytes) -> None:
        self.logger.debug(f"Server stderr: {line.decode('utf-8', errors='replace').rstrip()}")

    def _notify_closed(self, error: Exception | None) -> None:
        if self._disposed or self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            self._on_close(error)

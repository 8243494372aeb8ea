"""
Integration tests for the stdio transport against a real subprocess.

The subprocess is tests/fixtures/fake_lsp_server.py run with the current
interpreter, so no external language server is required.
"""

import asyncio
import logging
import sys
from pathlib import Path

import pytest

from lsp_client import LSPConnectionManager, LSPConnectionState
from lsp_constants import Position
from lsp_errors import ConnectionLostError, NotRunningError, TransportError
from lsp_transport import StdioMessageTransport

STUB_SERVER = str(Path(__file__).parent / "fixtures" / "fake_lsp_server.py")


@pytest.fixture
def stub_connection(project_root):
    return LSPConnectionManager(str(project_root), request_timeout=10.0, shutdown_timeout=2.0)


class TestStdioSpawn:
    """Test launching the server process."""

    @pytest.mark.asyncio
    async def test_missing_command(self, project_root):
        with pytest.raises(TransportError, match="command not found"):
            await StdioMessageTransport.spawn(
                "definitely-not-a-language-server", ["--stdio"], str(project_root)
            )

    @pytest.mark.asyncio
    async def test_server_exiting_immediately(self, project_root, monkeypatch):
        monkeypatch.setenv("STUB_LSP_MODE", "crash")

        with pytest.raises(TransportError) as exc_info:
            await StdioMessageTransport.spawn(
                sys.executable, [STUB_SERVER], str(project_root), startup_grace=5.0
            )

        assert "exited immediately" in str(exc_info.value)
        assert "stub server refused to start" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_send_after_dispose(self, project_root):
        transport = await StdioMessageTransport.spawn(
            sys.executable, [STUB_SERVER], str(project_root)
        )
        transport.listen(lambda message: None, lambda error: None)

        await transport.dispose()
        await transport.dispose()

        assert transport.is_closed
        assert transport.process.returncode is not None
        with pytest.raises(TransportError):
            await transport.send({"jsonrpc": "2.0", "method": "exit"})


class TestStdioSession:
    """End-to-end tests of a connection manager over stdio."""

    @pytest.mark.asyncio
    async def test_go_to_definition_end_to_end(self, stub_connection, project_root):
        result = await stub_connection.start(sys.executable, [STUB_SERVER])
        assert result["serverInfo"]["name"] == "stub-server"

        file_path = str(project_root / "src" / "app.ts")
        location = await stub_connection.go_to_definition(file_path, Position(2, 5))

        assert location["uri"] == (project_root / "src" / "app.ts").as_uri()
        assert location["range"]["start"] == {"line": 3, "character": 0}

        await stub_connection.stop()
        assert stub_connection.state == LSPConnectionState.STOPPED

    @pytest.mark.asyncio
    async def test_session_operations(self, stub_connection):
        await stub_connection.start(sys.executable, [STUB_SERVER])

        symbols = await stub_connection.get_workspace_symbols("")
        assert symbols == [{"name": "main", "kind": 12, "query": ""}]

        # The stub does not implement pull diagnostics
        assert await stub_connection.get_diagnostics("src/app.ts") == []

        await stub_connection.stop()
        with pytest.raises(NotRunningError):
            await stub_connection.get_workspace_symbols("main")

    @pytest.mark.asyncio
    async def test_server_crash_fails_pending_request(self, stub_connection, monkeypatch):
        monkeypatch.setenv("STUB_LSP_MODE", "die_on_hover")
        await stub_connection.start(sys.executable, [STUB_SERVER])

        with pytest.raises(ConnectionLostError):
            await stub_connection.get_hover("src/app.ts", Position(0, 0))

        for _ in range(100):
            if not stub_connection._background_tasks:
                break
            await asyncio.sleep(0.01)
        assert stub_connection.state == LSPConnectionState.STOPPED
        await stub_connection.stop()

    @pytest.mark.asyncio
    async def test_malformed_frame_is_skipped(self, stub_connection, monkeypatch):
        monkeypatch.setenv("STUB_LSP_MODE", "garbage")
        await stub_connection.start(sys.executable, [STUB_SERVER])

        symbols = await stub_connection.get_workspace_symbols("User")

        assert symbols == [{"name": "main", "kind": 12, "query": "User"}]
        assert stub_connection.state == LSPConnectionState.READY
        await stub_connection.stop()

    @pytest.mark.asyncio
    async def test_oversized_stderr_line_does_not_stall_server(
        self, project_root, test_logger, monkeypatch, caplog
    ):
        monkeypatch.setenv("STUB_LSP_MODE", "noisy_stderr")
        connection = LSPConnectionManager(
            str(project_root), logger=test_logger, request_timeout=10.0, shutdown_timeout=2.0
        )
        caplog.set_level(logging.DEBUG, logger="tests.lsp")

        result = await connection.start(sys.executable, [STUB_SERVER])
        assert result["serverInfo"]["name"] == "stub-server"
        symbols = await connection.get_workspace_symbols("main")
        assert symbols == [{"name": "main", "kind": 12, "query": "main"}]
        await connection.stop()

        stderr_lines = [r.getMessage() for r in caplog.records if "Server stderr" in r.getMessage()]
        assert any(line.endswith("[truncated]") for line in stderr_lines)
        assert any("diagnostic line 3999" in line for line in stderr_lines)

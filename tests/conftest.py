"""
Pytest configuration and shared fixtures for LSP tool tests.
"""

import logging
import tempfile
from pathlib import Path

import pytest

from lsp_client import LSPConnectionManager
from tests.test_fixtures import FakeLanguageServer, FakeTransportFactory


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def project_root(temp_dir):
    """A small project with one source file."""
    (temp_dir / "src").mkdir()
    (temp_dir / "src" / "app.ts").write_text("export function main() {}\n")
    return temp_dir


@pytest.fixture
def fake_server():
    return FakeLanguageServer()


@pytest.fixture
def transport_factory(fake_server):
    return FakeTransportFactory(fake_server)


@pytest.fixture
def test_logger():
    """Logger for tests, propagating to caplog."""
    logger = logging.getLogger("tests.lsp")
    logger.setLevel(logging.DEBUG)
    return logger


@pytest.fixture
def connection(project_root, transport_factory, test_logger):
    """An unstarted connection manager bound to the fake transport factory."""
    return LSPConnectionManager(
        str(project_root),
        logger=test_logger,
        transport_factory=transport_factory,
        request_timeout=5.0,
        shutdown_timeout=1.0,
    )

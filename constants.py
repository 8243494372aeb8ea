#!/usr/bin/env python3

"""
Shared constants for the LSP code-intelligence tool.

This file contains constants that are used across the connection manager,
the action router and the command-line harness.
"""

from enum import Enum


class Language(Enum):
    """Project languages with a known default language server."""

    PYTHON = "python"
    TYPESCRIPT = "typescript"


# Client identity sent during the initialize handshake
CLIENT_NAME = "lsp-tool"
CLIENT_VERSION = "0.1.0"

# Default language server commands
TYPESCRIPT_SERVER_COMMAND = "typescript-language-server"
TYPESCRIPT_SERVER_ARGS = ["--stdio"]
PYRIGHT_SERVER_COMMAND = "pyright-langserver"
PYRIGHT_SERVER_ARGS = ["--stdio"]

# Files whose presence marks a project root as a Python project
PYTHON_PROJECT_MARKERS = ("pyproject.toml", "setup.py", "setup.cfg", "requirements.txt")

# Timeouts (seconds)
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_SHUTDOWN_TIMEOUT = 5.0
DEFAULT_STARTUP_GRACE = 0.1
PROCESS_TERMINATE_TIMEOUT = 5.0

# Server stderr is drained in chunks; longer lines are logged truncated
STDERR_CHUNK_SIZE = 4096
STDERR_LINE_LIMIT = 16384

# Environment variables
ENV_SERVER_COMMAND = "LSP_SERVER_COMMAND"
ENV_SERVER_ARGS = "LSP_SERVER_ARGS"
ENV_LANGUAGE = "LSP_LANGUAGE"
ENV_REQUEST_TIMEOUT = "LSP_REQUEST_TIMEOUT"
ENV_SHUTDOWN_TIMEOUT = "LSP_SHUTDOWN_TIMEOUT"
ENV_STARTUP_GRACE = "LSP_STARTUP_GRACE"
ENV_LOG_LEVEL = "LOG_LEVEL"

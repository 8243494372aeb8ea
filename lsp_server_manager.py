"""
LSP Server Manager Interface

This module provides the abstract interface for choosing and configuring the
language server a project is analysed with, plus implementations for the
servers the tool knows about.
"""

import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from constants import (
    PYRIGHT_SERVER_ARGS,
    PYRIGHT_SERVER_COMMAND,
    PYTHON_PROJECT_MARKERS,
    TYPESCRIPT_SERVER_ARGS,
    TYPESCRIPT_SERVER_COMMAND,
    Language,
)
from lsp_config import LSPToolConfig

logger = logging.getLogger(__name__)


class LSPServerManager(ABC):
    """Abstract interface for LSP server management."""

    @abstractmethod
    def get_server_command(self) -> str:
        """Get the executable that starts the LSP server."""
        pass

    @abstractmethod
    def get_server_args(self) -> list[str]:
        """Get the arguments for the LSP server command."""
        pass

    @abstractmethod
    def get_initialization_options(self) -> dict[str, Any] | None:
        """Get initialization options for the server."""
        pass

    def is_available(self) -> bool:
        """Check whether the server executable can be found on PATH."""
        return shutil.which(self.get_server_command()) is not None

    def describe(self) -> str:
        return " ".join([self.get_server_command(), *self.get_server_args()])


class CommandLSPManager(LSPServerManager):
    """LSP Server Manager for an explicitly configured command."""

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        initialization_options: dict[str, Any] | None = None,
    ):
        if not command:
            raise ValueError("Server command cannot be empty")
        self.command = command
        self.args = list(args or [])
        self.initialization_options = initialization_options

    def get_server_command(self) -> str:
        return self.command

    def get_server_args(self) -> list[str]:
        return list(self.args)

    def get_initialization_options(self) -> dict[str, Any] | None:
        return self.initialization_options


class TypeScriptLSPManager(LSPServerManager):
    """LSP Server Manager for typescript-language-server."""

    def get_server_command(self) -> str:
        return TYPESCRIPT_SERVER_COMMAND

    def get_server_args(self) -> list[str]:
        return list(TYPESCRIPT_SERVER_ARGS)

    def get_initialization_options(self) -> dict[str, Any] | None:
        return None


class PyrightLSPManager(LSPServerManager):
    """LSP Server Manager for Pyright Python Language Server."""

    def __init__(self, python_path: str | None = None):
        """
        Initialize the Pyright LSP Manager.

        Args:
            python_path: Path to the Python interpreter (optional)
        """
        self.python_path = python_path

    def get_server_command(self) -> str:
        return PYRIGHT_SERVER_COMMAND

    def get_server_args(self) -> list[str]:
        return list(PYRIGHT_SERVER_ARGS)

    def get_initialization_options(self) -> dict[str, Any]:
        """Get initialization options for pyright."""
        options: dict[str, Any] = {
            "settings": {
                "python": {
                    "analysis": {
                        "autoSearchPaths": True,
                        "useLibraryCodeForTypes": True,
                        "diagnosticMode": "openFilesOnly",
                    }
                }
            }
        }

        # Add Python path if specified
        if self.python_path:
            options["settings"]["python"]["pythonPath"] = self.python_path

        return options


def detect_project_language(project_root: str) -> Language:
    """Guess the project language from marker files in the project root."""
    root = Path(project_root)
    for marker in PYTHON_PROJECT_MARKERS:
        if (root / marker).exists():
            logger.debug(f"Found {marker} in {root}, using Python language server")
            return Language.PYTHON
    return Language.TYPESCRIPT


def create_server_manager(
    project_root: str, config: LSPToolConfig | None = None
) -> LSPServerManager:
    """Choose the language server for a project.

    An explicit command in the configuration wins, then the configured
    language, then detection from the project's marker files.
    """
    config = config or LSPToolConfig()

    manager: LSPServerManager
    if config.server_command:
        manager = CommandLSPManager(config.server_command, config.server_args)
    elif (config.language or detect_project_language(project_root)) == Language.PYTHON:
        manager = PyrightLSPManager()
    else:
        manager = TypeScriptLSPManager()

    logger.info(f"Using language server '{manager.describe()}' for {project_root}")
    if not manager.is_available():
        logger.warning(
            f"Language server command '{manager.get_server_command()}' was not found on PATH"
        )
    return manager

"""
Tests for LSP server managers

Tests server command selection, initialization options and project language
detection.
"""

import logging
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from constants import Language
from lsp_config import LSPToolConfig
from lsp_server_manager import (
    CommandLSPManager,
    PyrightLSPManager,
    TypeScriptLSPManager,
    create_server_manager,
    detect_project_language,
)


class TestPyrightLSPManager(unittest.TestCase):
    """Test cases for PyrightLSPManager."""

    def test_get_server_command(self):
        manager = PyrightLSPManager()

        self.assertEqual(manager.get_server_command(), "pyright-langserver")
        self.assertEqual(manager.get_server_args(), ["--stdio"])
        self.assertEqual(manager.describe(), "pyright-langserver --stdio")

    def test_initialization_options(self):
        manager = PyrightLSPManager()
        options = manager.get_initialization_options()

        analysis = options["settings"]["python"]["analysis"]
        self.assertTrue(analysis["autoSearchPaths"])
        self.assertEqual(analysis["diagnosticMode"], "openFilesOnly")
        self.assertNotIn("pythonPath", options["settings"]["python"])

    def test_initialization_options_with_python_path(self):
        manager = PyrightLSPManager("/usr/bin/python3")
        options = manager.get_initialization_options()

        self.assertEqual(options["settings"]["python"]["pythonPath"], "/usr/bin/python3")

    @patch("lsp_server_manager.shutil.which")
    def test_is_available(self, mock_which):
        mock_which.return_value = None
        manager = PyrightLSPManager()

        self.assertFalse(manager.is_available())
        mock_which.assert_called_once_with("pyright-langserver")


class TestCommandLSPManager(unittest.TestCase):
    def test_explicit_command(self):
        manager = CommandLSPManager("my-ls", ["--stdio", "--log=debug"])

        self.assertEqual(manager.get_server_command(), "my-ls")
        self.assertEqual(manager.get_server_args(), ["--stdio", "--log=debug"])
        self.assertIsNone(manager.get_initialization_options())

    def test_args_are_copied(self):
        manager = CommandLSPManager("my-ls", ["--stdio"])
        manager.get_server_args().append("--extra")

        self.assertEqual(manager.get_server_args(), ["--stdio"])

    def test_empty_command_rejected(self):
        with self.assertRaises(ValueError):
            CommandLSPManager("")


class TestServerSelection(unittest.TestCase):
    """Test choosing a server manager for a project."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = Path(self.temp_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_detects_python_project(self):
        (self.root / "pyproject.toml").write_text("[project]\nname = 'x'\n")
        self.assertEqual(detect_project_language(str(self.root)), Language.PYTHON)

    def test_defaults_to_typescript(self):
        (self.root / "package.json").write_text("{}")
        self.assertEqual(detect_project_language(str(self.root)), Language.TYPESCRIPT)

    def test_explicit_command_wins(self):
        (self.root / "setup.py").write_text("")
        config = LSPToolConfig(server_command="my-ls", server_args=["--stdio"])

        manager = create_server_manager(str(self.root), config)

        self.assertIsInstance(manager, CommandLSPManager)
        self.assertEqual(manager.describe(), "my-ls --stdio")

    def test_configured_language_wins_over_detection(self):
        (self.root / "requirements.txt").write_text("requests\n")
        config = LSPToolConfig(language=Language.TYPESCRIPT)

        manager = create_server_manager(str(self.root), config)

        self.assertIsInstance(manager, TypeScriptLSPManager)
        self.assertEqual(manager.get_server_command(), "typescript-language-server")

    def test_detected_language(self):
        (self.root / "setup.cfg").write_text("")

        manager = create_server_manager(str(self.root))

        self.assertIsInstance(manager, PyrightLSPManager)

    @patch("lsp_server_manager.shutil.which", return_value=None)
    def test_missing_server_is_reported(self, mock_which):
        with self.assertLogs("lsp_server_manager", level="WARNING") as logs:
            manager = create_server_manager(str(self.root))

        self.assertIsInstance(manager, TypeScriptLSPManager)
        self.assertIn("typescript-language-server", logs.output[0])
        mock_which.assert_called_once_with("typescript-language-server")

    @patch("lsp_server_manager.shutil.which", return_value="/usr/bin/my-ls")
    def test_available_server_is_not_reported(self, mock_which):
        config = LSPToolConfig(server_command="my-ls")

        with patch.object(logging.getLogger("lsp_server_manager"), "warning") as mock_warning:
            create_server_manager(str(self.root), config)

        mock_warning.assert_not_called()


if __name__ == "__main__":
    unittest.main()

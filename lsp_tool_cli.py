#!/usr/bin/env python3

"""
Simple CLI for LSP Tool Testing
A command-line interface for running a single LSP action against a project
without embedding the tool in an agent harness.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from lsp_config import LSPToolConfig
from lsp_tool import LSPAction, LSPTool, ToolResult
from system_utils import setup_logging


class OutputFormatter:
    """Handles different output formats for CLI tool results."""

    @staticmethod
    def format_raw(result: ToolResult) -> str:
        """Print the result content as the tool returns it."""
        return result.content

    @staticmethod
    def format_json(result: ToolResult) -> str:
        """Print the full result envelope as JSON."""
        data: dict[str, Any] = result.to_dict()
        data["isError"] = result.is_error
        return json.dumps(data, indent=2)


def _parse_json_arg(value: str | None, name: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ValueError(f"--{name} is not valid JSON: {e}") from e


def build_params(args: argparse.Namespace) -> dict[str, Any]:
    """Translate parsed arguments into an action request dictionary.

    Options left unset are omitted so the router reports them as missing.
    """
    params: dict[str, Any] = {"action": args.action}
    if args.file is not None:
        params["file_path"] = str(Path(args.file).resolve())

    scalar_options = {
        "line": args.line,
        "character": args.character,
        "query": args.query,
        "newName": args.new_name,
        "start_line": args.start_line,
        "start_char": args.start_char,
        "end_line": args.end_line,
        "end_char": args.end_char,
    }
    for name, value in scalar_options.items():
        if value is not None:
            params[name] = value

    json_options = {
        "context": ("context", args.context),
        "item": ("item", args.item),
        "formattingOptions": ("formatting-options", args.formatting_options),
    }
    for name, (flag, raw) in json_options.items():
        value = _parse_json_arg(raw, flag)
        if value is not None:
            params[name] = value

    return params


async def execute_cli(
    args: argparse.Namespace,
    tool: LSPTool,
    formatter: OutputFormatter,
) -> int:
    """Execute CLI functionality with dependency injection.

    Args:
        args: Parsed command-line arguments
        tool: LSP tool instance bound to the project
        formatter: Output formatter instance

    Returns:
        Process exit code
    """
    try:
        params = build_params(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        result = await tool.execute(params)
    finally:
        await tool.close()

    if args.format == "json":
        print(formatter.format_json(result))
    else:
        print(formatter.format_raw(result))

    return 1 if result.is_error else 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run a single LSP action against a project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s goToDefinition --project-root . --file src/app.ts --line 10 --character 4
  %(prog)s getWorkspaceSymbols --project-root . --query User
  %(prog)s getIncomingCalls --project-root . --item '{"name": "main", ...}'
  %(prog)s getHover --project-root . --file app.py --line 3 --character 1 \\
      --server-command pyright-langserver --server-arg=--stdio
        """,
    )

    parser.add_argument(
        "action",
        choices=[action.value for action in LSPAction],
        help="LSP action to execute",
    )
    parser.add_argument(
        "--project-root", default=".", help="Root of the project (default: cwd)"
    )
    parser.add_argument(
        "--format",
        choices=["raw", "json"],
        default="raw",
        help="Output format",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument("--env-file", help="Path to a .env file with LSP_* settings")

    # Server selection
    parser.add_argument(
        "--server-command", help="Language server executable (overrides LSP_SERVER_COMMAND)"
    )
    parser.add_argument(
        "--server-arg",
        action="append",
        dest="server_args",
        help="Argument for the configured server command (repeatable)",
    )

    # Action-specific arguments
    parser.add_argument("--file", help="File the action applies to")
    parser.add_argument("--line", type=int, help="0-indexed line")
    parser.add_argument("--character", type=int, help="0-indexed character")
    parser.add_argument("--query", help="Query for getWorkspaceSymbols")
    parser.add_argument("--new-name", help="New name for renameSymbol")
    parser.add_argument("--start-line", type=int, help="Range start line for getCodeActions")
    parser.add_argument("--start-char", type=int, help="Range start character for getCodeActions")
    parser.add_argument("--end-line", type=int, help="Range end line for getCodeActions")
    parser.add_argument("--end-char", type=int, help="Range end character for getCodeActions")
    parser.add_argument("--context", help="CodeActionContext as JSON")
    parser.add_argument("--item", help="CallHierarchyItem as JSON")
    parser.add_argument("--formatting-options", help="FormattingOptions as JSON")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point - handles argument parsing and object creation."""
    args = create_parser().parse_args(argv)

    try:
        config = LSPToolConfig.from_env(args.env_file)
    except ValueError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    if args.server_command:
        config.server_command = args.server_command
        config.server_args = list(args.server_args or [])
    elif args.server_args:
        if not config.server_command:
            print(
                "Error: --server-arg requires --server-command or LSP_SERVER_COMMAND",
                file=sys.stderr,
            )
            return 1
        config.server_args = list(args.server_args)

    setup_logging("DEBUG" if args.verbose else config.log_level)

    project_root = Path(args.project_root)
    if not project_root.is_dir():
        print(f"Error: Project root does not exist: {project_root}", file=sys.stderr)
        return 1

    try:
        tool = LSPTool(str(project_root), config=config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return asyncio.run(execute_cli(args, tool, OutputFormatter()))


if __name__ == "__main__":
    sys.exit(main())

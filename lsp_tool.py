#!/usr/bin/env python3

"""
LSP Tool - Action Catalog and Router

Validates a single "action + parameters" request against the catalog of
supported actions, runs the matching connection manager operation and wraps
the outcome in a uniform result. Failures never escape as exceptions; they come
back as a result whose content reads "<action> failed: <message>".
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from lsp_client import LSPConnectionManager
from lsp_config import LSPToolConfig
from lsp_constants import Position, Range
from lsp_errors import LSPError, RequestCancelledError, ValidationError
from lsp_server_manager import LSPServerManager, create_server_manager


class LSPAction(Enum):
    """Supported LSP actions. Values are the names callers send."""

    FIND_REFERENCES = "findReferences"
    GO_TO_DEFINITION = "goToDefinition"
    GET_DIAGNOSTICS = "getDiagnostics"
    GET_HOVER = "getHover"
    GET_DOCUMENT_SYMBOLS = "getDocumentSymbols"
    GET_WORKSPACE_SYMBOLS = "getWorkspaceSymbols"
    GET_CODE_ACTIONS = "getCodeActions"
    PREPARE_RENAME = "prepareRename"
    RENAME_SYMBOL = "renameSymbol"
    PREPARE_CALL_HIERARCHY = "prepareCallHierarchy"
    GET_INCOMING_CALLS = "getIncomingCalls"
    GET_OUTGOING_CALLS = "getOutgoingCalls"
    GO_TO_IMPLEMENTATION = "goToImplementation"
    FORMAT_DOCUMENT = "formatDocument"


class DisplayHint(Enum):
    """How the caller should present a result's content."""

    RAW = "raw"


@dataclass(frozen=True)
class ParameterField:
    """An optional request field and the JSON type it must have when present."""

    name: str
    type: str  # "string", "integer" or "object"
    description: str
    non_negative: bool = False


PARAMETER_FIELDS: tuple[ParameterField, ...] = (
    ParameterField(
        "file_path",
        "string",
        "The absolute path to the file. Required for most actions.",
    ),
    ParameterField("line", "integer", "The line number in the file (0-indexed).", True),
    ParameterField(
        "character", "integer", "The character number in the line (0-indexed).", True
    ),
    ParameterField("query", "string", "The search query for 'getWorkspaceSymbols'."),
    ParameterField(
        "start_line", "integer", "The start line of a range for 'getCodeActions'.", True
    ),
    ParameterField(
        "start_char",
        "integer",
        "The start character of a range for 'getCodeActions'.",
        True,
    ),
    ParameterField(
        "end_line", "integer", "The end line of a range for 'getCodeActions'.", True
    ),
    ParameterField(
        "end_char", "integer", "The end character of a range for 'getCodeActions'.", True
    ),
    ParameterField("context", "object", "The context for 'getCodeActions'."),
    ParameterField("newName", "string", "The new name for 'renameSymbol'."),
    ParameterField(
        "item", "object", "The CallHierarchyItem for call hierarchy requests."
    ),
    ParameterField(
        "formattingOptions", "object", "The formatting options for 'formatDocument'."
    ),
)

ActionHandler = Callable[[LSPConnectionManager, dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class ActionSpec:
    """Required fields of an action and the connection operation it runs."""

    action: LSPAction
    required: tuple[str, ...]
    handler: ActionHandler


def _position(params: dict[str, Any]) -> Position:
    return Position(line=params["line"], character=params["character"])


def _range(params: dict[str, Any]) -> Range:
    return Range(
        start=Position(line=params["start_line"], character=params["start_char"]),
        end=Position(line=params["end_line"], character=params["end_char"]),
    )


_POSITION_FIELDS = ("file_path", "line", "character")

ACTION_CATALOG: dict[LSPAction, ActionSpec] = {
    spec.action: spec
    for spec in (
        ActionSpec(
            LSPAction.FIND_REFERENCES,
            _POSITION_FIELDS,
            lambda conn, p: conn.find_references(p["file_path"], _position(p)),
        ),
        ActionSpec(
            LSPAction.GO_TO_DEFINITION,
            _POSITION_FIELDS,
            lambda conn, p: conn.go_to_definition(p["file_path"], _position(p)),
        ),
        ActionSpec(
            LSPAction.GET_DIAGNOSTICS,
            ("file_path",),
            lambda conn, p: conn.get_diagnostics(p["file_path"]),
        ),
        ActionSpec(
            LSPAction.GET_HOVER,
            _POSITION_FIELDS,
            lambda conn, p: conn.get_hover(p["file_path"], _position(p)),
        ),
        ActionSpec(
            LSPAction.GET_DOCUMENT_SYMBOLS,
            ("file_path",),
            lambda conn, p: conn.get_document_symbols(p["file_path"]),
        ),
        ActionSpec(
            LSPAction.GET_WORKSPACE_SYMBOLS,
            ("query",),
            lambda conn, p: conn.get_workspace_symbols(p["query"]),
        ),
        ActionSpec(
            LSPAction.GET_CODE_ACTIONS,
            ("file_path", "start_line", "start_char", "end_line", "end_char", "context"),
            lambda conn, p: conn.get_code_actions(p["file_path"], _range(p), p["context"]),
        ),
        ActionSpec(
            LSPAction.PREPARE_RENAME,
            _POSITION_FIELDS,
            lambda conn, p: conn.prepare_rename(p["file_path"], _position(p)),
        ),
        ActionSpec(
            LSPAction.RENAME_SYMBOL,
            (*_POSITION_FIELDS, "newName"),
            lambda conn, p: conn.rename_symbol(p["file_path"], _position(p), p["newName"]),
        ),
        ActionSpec(
            LSPAction.PREPARE_CALL_HIERARCHY,
            _POSITION_FIELDS,
            lambda conn, p: conn.prepare_call_hierarchy(p["file_path"], _position(p)),
        ),
        ActionSpec(
            LSPAction.GET_INCOMING_CALLS,
            ("item",),
            lambda conn, p: conn.get_incoming_calls(p["item"]),
        ),
        ActionSpec(
            LSPAction.GET_OUTGOING_CALLS,
            ("item",),
            lambda conn, p: conn.get_outgoing_calls(p["item"]),
        ),
        ActionSpec(
            LSPAction.GO_TO_IMPLEMENTATION,
            _POSITION_FIELDS,
            lambda conn, p: conn.go_to_implementation(p["file_path"], _position(p)),
        ),
        ActionSpec(
            LSPAction.FORMAT_DOCUMENT,
            ("file_path", "formattingOptions"),
            lambda conn, p: conn.format_document(p["file_path"], p["formattingOptions"]),
        ),
    )
}

_uncatalogued = [action.value for action in LSPAction if action not in ACTION_CATALOG]
if _uncatalogued:
    raise RuntimeError(f"LSP actions missing from the catalog: {_uncatalogued}")


def _matches_type(value: Any, field_type: str) -> bool:
    if field_type == "string":
        return isinstance(value, str)
    if field_type == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if field_type == "object":
        return isinstance(value, dict)
    raise AssertionError(f"Unknown parameter type: {field_type}")


_TYPE_NAMES = {"string": "a string", "integer": "an integer", "object": "an object"}


def validate_action_params(params: Any) -> str | None:
    """Validate an action request.

    Args:
        params: Request dictionary with an ``action`` key and optional fields

    Returns:
        None when the request is valid, otherwise one message listing every
        missing or invalid field
    """
    if not isinstance(params, dict):
        return "Invalid parameters: request must be an object."

    action_name = params.get("action")
    if action_name is None:
        return "Invalid parameters: 'action' is required."
    try:
        action = LSPAction(action_name)
    except ValueError:
        valid = ", ".join(a.value for a in LSPAction)
        return f"Invalid parameters: unsupported action {action_name!r}. Valid actions: {valid}."

    errors: list[str] = []
    for name in ACTION_CATALOG[action].required:
        if params.get(name) is None:
            errors.append(f"'{name}' is required.")

    for field in PARAMETER_FIELDS:
        value = params.get(field.name)
        if value is None:
            continue
        if not _matches_type(value, field.type):
            errors.append(f"'{field.name}' must be {_TYPE_NAMES[field.type]}.")
        elif field.non_negative and value < 0:
            errors.append(f"'{field.name}' must be non-negative.")

    if errors:
        return f"Invalid parameters: {' '.join(errors)}"
    return None


def get_tool_definition() -> dict[str, Any]:
    """Get the tool definition, with the request surface as a JSON schema."""
    properties: dict[str, Any] = {
        "action": {
            "type": "string",
            "description": "The LSP action to perform.",
            "enum": [action.value for action in LSPAction],
        }
    }
    for field in PARAMETER_FIELDS:
        schema: dict[str, Any] = {
            "type": field.type,
            "description": f"Optional: {field.description}",
        }
        if field.non_negative:
            schema["minimum"] = 0
        properties[field.name] = schema

    return {
        "name": LSPTool.NAME,
        "description": (
            "Performs language-aware operations using the Language Server Protocol "
            "(LSP) for code intelligence tasks like finding references, definitions, "
            "symbols, and more."
        ),
        "inputSchema": {
            "type": "object",
            "properties": properties,
            "required": ["action"],
        },
    }


@dataclass(frozen=True)
class ToolResult:
    """Uniform envelope returned for every action, successful or not."""

    content: str
    display_hint: DisplayHint = DisplayHint.RAW
    is_error: bool = False

    def to_dict(self) -> dict[str, str]:
        return {"content": self.content, "displayHint": self.display_hint.value}


class LSPTool:
    """Route action requests to a lazily started language server session."""

    NAME = "lsp"

    def __init__(
        self,
        project_root: str,
        server_manager: LSPServerManager | None = None,
        config: LSPToolConfig | None = None,
        logger: logging.Logger | None = None,
        connection_factory: Callable[[], LSPConnectionManager] | None = None,
    ):
        """
        Args:
            project_root: Root of the project the language server analyses
            server_manager: Chooses the server command; detected when omitted
            config: Timeouts and server overrides
            logger: Logger instance for debugging and monitoring
            connection_factory: Builds a fresh connection manager (for tests)
        """
        self.project_root = str(Path(project_root).resolve())
        self.config = config or LSPToolConfig()
        self.server_manager = server_manager or create_server_manager(
            self.project_root, self.config
        )
        self.logger = logger or logging.getLogger(
            f"{__name__}.{Path(self.project_root).name}"
        )
        self._connection_factory = connection_factory or self._create_connection
        self._connection: LSPConnectionManager | None = None

    @property
    def connection(self) -> LSPConnectionManager | None:
        """The connection manager currently held, if any."""
        return self._connection

    def _create_connection(self) -> LSPConnectionManager:
        return LSPConnectionManager(
            self.project_root,
            logger=self.logger,
            initialization_options=self.server_manager.get_initialization_options(),
            request_timeout=self.config.request_timeout,
            shutdown_timeout=self.config.shutdown_timeout,
            startup_grace=self.config.startup_grace,
        )

    async def _ensure_connection(self) -> LSPConnectionManager:
        """Return a started connection, replacing one that is no longer running."""
        connection = self._connection
        if connection is None or not connection.is_running():
            if connection is not None:
                await connection.stop()
            connection = self._connection_factory()
            self._connection = connection

        await connection.start(
            self.server_manager.get_server_command(),
            self.server_manager.get_server_args(),
        )
        return connection

    async def execute(
        self, params: dict[str, Any], signal: asyncio.Event | None = None
    ) -> ToolResult:
        """Run one action request.

        Args:
            params: Request dictionary (``action`` plus action-specific fields)
            signal: Optional cancellation signal; once set, the action is
                abandoned and a failure result returned

        Returns:
            ToolResult with the JSON-serialized server response, or the
            failure message
        """
        action_name = params.get("action") if isinstance(params, dict) else None
        label = str(action_name) if action_name is not None else "lsp"

        try:
            error = validate_action_params(params)
            if error:
                raise ValidationError(error)

            spec = ACTION_CATALOG.get(LSPAction(action_name))
            if spec is None:
                raise AssertionError(f"Unsupported LSP action: '{action_name}'")

            self._check_cancelled(signal)
            connection = await self._run_cancellable(self._ensure_connection(), signal)
            self._check_cancelled(signal)

            self.logger.debug(f"Running LSP action '{label}'")
            result = await self._run_cancellable(spec.handler(connection, params), signal)
            return ToolResult(content=json.dumps(result, indent=2))

        except Exception as e:
            self.logger.error(f"LSP action '{label}' failed: {e}")
            return ToolResult(content=f"{label} failed: {e}", is_error=True)

    async def close(self) -> None:
        """Stop the language server session, if one is held."""
        if self._connection is not None:
            await self._connection.stop()
            self._connection = None

    @staticmethod
    def _check_cancelled(signal: asyncio.Event | None) -> None:
        if signal is not None and signal.is_set():
            raise RequestCancelledError("Request was cancelled")

    async def _run_cancellable(
        self, coro: Awaitable[Any], signal: asyncio.Event | None
    ) -> Any:
        """Await ``coro`` unless ``signal`` fires first, in which case it is cancelled."""
        if signal is None:
            return await coro

        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, LSPError) as e:
            self.logger.debug(f"Cancelled action finished with: {e!r}")
        raise RequestCancelledError("Request was cancelled")


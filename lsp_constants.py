"""
LSP Protocol Constants and Message Types

This module defines the essential constants and message types for Language Server Protocol
communication (LSP 3.17).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class LSPErrorCode(Enum):
    """JSON-RPC and LSP error codes."""

    # JSON-RPC Error Codes
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # LSP-specific Error Codes
    SERVER_NOT_INITIALIZED = -32002
    UNKNOWN_ERROR_CODE = -32001
    REQUEST_FAILED = -32803
    SERVER_CANCELLED = -32802
    CONTENT_MODIFIED = -32801
    REQUEST_CANCELLED = -32800


class LSPMessageType(Enum):
    """LSP Message Types for logging and notifications."""

    ERROR = 1
    WARNING = 2
    INFO = 3
    LOG = 4


class LSPMethod:
    """LSP Method Names as constants."""

    # General
    INITIALIZE = "initialize"
    INITIALIZED = "initialized"
    SHUTDOWN = "shutdown"
    EXIT = "exit"
    CANCEL_REQUEST = "$/cancelRequest"

    # Language Features
    DEFINITION = "textDocument/definition"
    IMPLEMENTATION = "textDocument/implementation"
    REFERENCES = "textDocument/references"
    HOVER = "textDocument/hover"
    DOCUMENT_SYMBOLS = "textDocument/documentSymbol"
    CODE_ACTION = "textDocument/codeAction"
    PREPARE_RENAME = "textDocument/prepareRename"
    RENAME = "textDocument/rename"
    FORMATTING = "textDocument/formatting"
    DIAGNOSTIC = "textDocument/diagnostic"
    PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"

    # Call Hierarchy
    PREPARE_CALL_HIERARCHY = "textDocument/prepareCallHierarchy"
    INCOMING_CALLS = "callHierarchy/incomingCalls"
    OUTGOING_CALLS = "callHierarchy/outgoingCalls"

    # Workspace Features
    WORKSPACE_SYMBOLS = "workspace/symbol"
    WORKSPACE_CONFIGURATION = "workspace/configuration"

    # Window Features
    SHOW_MESSAGE = "window/showMessage"
    SHOW_MESSAGE_REQUEST = "window/showMessageRequest"
    LOG_MESSAGE = "window/logMessage"
    WORK_DONE_PROGRESS_CREATE = "window/workDoneProgress/create"

    # Client Features
    REGISTER_CAPABILITY = "client/registerCapability"


class LSPCapabilities:
    """LSP Capabilities structure templates."""

    @staticmethod
    def client_capabilities() -> dict[str, Any]:
        """Default client capabilities."""
        return {
            "textDocument": {
                "hover": {"contentFormat": ["markdown", "plaintext"]},
                "definition": {"linkSupport": True},
                "implementation": {"linkSupport": True},
                "references": {},
                "documentSymbol": {
                    "hierarchicalDocumentSymbolSupport": True,
                    "symbolKind": {
                        "valueSet": list(range(1, 27))  # All symbol kinds
                    },
                },
                "codeAction": {
                    "codeActionLiteralSupport": {
                        "codeActionKind": {
                            "valueSet": [
                                "quickfix",
                                "refactor",
                                "refactor.extract",
                                "refactor.inline",
                                "refactor.rewrite",
                                "source",
                                "source.organizeImports",
                            ]
                        }
                    },
                },
                "rename": {"prepareSupport": True},
                "formatting": {},
                "callHierarchy": {},
                "diagnostic": {"relatedDocumentSupport": False},
                "publishDiagnostics": {"relatedInformation": True},
            },
            "workspace": {
                "symbol": {
                    "symbolKind": {
                        "valueSet": list(range(1, 27))  # All symbol kinds
                    },
                },
                "workspaceEdit": {"documentChanges": True},
                "configuration": True,
                "workspaceFolders": True,
            },
            "window": {"workDoneProgress": True},
        }


class LSPDiagnosticSeverity(Enum):
    """Diagnostic severity levels."""

    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4


@dataclass(frozen=True)
class Position:
    """Zero-based line/character position in a text document."""

    line: int
    character: int

    def to_dict(self) -> dict[str, int]:
        return {"line": self.line, "character": self.character}


@dataclass(frozen=True)
class Range:
    """A span between two positions. The server is authoritative on ordering."""

    start: Position
    end: Position

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}


# JSON-RPC 2.0 Message Types
JsonRPCRequest = dict[str, Any]
JsonRPCResponse = dict[str, Any]
JsonRPCNotification = dict[str, Any]
JsonRPCMessage = JsonRPCRequest | JsonRPCResponse | JsonRPCNotification

# LSP-specific types
InitializeResult = dict[str, Any]
CallHierarchyItem = dict[str, Any]  # opaque, passed back to the server verbatim
CodeActionContext = dict[str, Any]
FormattingOptions = dict[str, Any]

#!/usr/bin/env python3

"""
LSP Tool Configuration

Loads tool settings from the environment (optionally seeded from a .env file)
so the surrounding harness can choose the language server and timeouts
without code changes.
"""

import logging
import os
import shlex
from dataclasses import dataclass, field

from dotenv import load_dotenv

from constants import (
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_STARTUP_GRACE,
    ENV_LANGUAGE,
    ENV_LOG_LEVEL,
    ENV_REQUEST_TIMEOUT,
    ENV_SERVER_ARGS,
    ENV_SERVER_COMMAND,
    ENV_SHUTDOWN_TIMEOUT,
    ENV_STARTUP_GRACE,
    Language,
)

logger = logging.getLogger(__name__)


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


@dataclass
class LSPToolConfig:
    """Settings for the language server session."""

    server_command: str | None = None
    server_args: list[str] = field(default_factory=list)
    language: Language | None = None
    request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    startup_grace: float = DEFAULT_STARTUP_GRACE
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "LSPToolConfig":
        """Build a configuration from environment variables.

        Variables already set in the environment take precedence over the
        .env file. A request timeout of 0 disables the timeout.

        Raises:
            ValueError: If a variable holds an invalid value
        """
        if dotenv_path:
            load_dotenv(dotenv_path)
        else:
            load_dotenv()

        server_command = os.getenv(ENV_SERVER_COMMAND) or None
        server_args = shlex.split(os.getenv(ENV_SERVER_ARGS, ""))

        language = None
        language_name = os.getenv(ENV_LANGUAGE)
        if language_name:
            try:
                language = Language(language_name.strip().lower())
            except ValueError as e:
                valid = ", ".join(lang.value for lang in Language)
                raise ValueError(
                    f"{ENV_LANGUAGE} must be one of: {valid}, got {language_name!r}"
                ) from e

        request_timeout: float | None = _read_float(
            ENV_REQUEST_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
        )
        if request_timeout == 0:
            request_timeout = None

        config = cls(
            server_command=server_command,
            server_args=server_args,
            language=language,
            request_timeout=request_timeout,
            shutdown_timeout=_read_float(ENV_SHUTDOWN_TIMEOUT, DEFAULT_SHUTDOWN_TIMEOUT),
            startup_grace=_read_float(ENV_STARTUP_GRACE, DEFAULT_STARTUP_GRACE),
            log_level=os.getenv(ENV_LOG_LEVEL, "INFO").upper(),
        )
        logger.debug(f"Loaded LSP tool configuration: {config}")
        return config

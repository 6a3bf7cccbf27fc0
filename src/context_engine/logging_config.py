"""Structured logging configuration for the Compressed Context Engine.

- JSON structured logging with StructuredFormatter
- Logger hierarchy under the context_engine namespace
- Environment variable control (CONTEXT_ENGINE_LOG_LEVEL, CONTEXT_ENGINE_LOG_FORMAT)
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

ROOT_LOGGER = "context_engine"

# Keys redacted from log output
SENSITIVE_KEYS = {
    "password", "token", "secret", "apikey", "api_key",
    "authorization", "credential", "auth", "key", "bearer",
}

_STANDARD_FIELDS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    Outputs one JSON object per record with:
    - timestamp: UTC ISO 8601 format with 'Z' suffix
    - level: Log level name (INFO, ERROR, etc.)
    - logger: Logger name (context_engine hierarchy)
    - message: Log message (snake_case event name)
    - context: Extras dict merged from LogRecord attributes

    Sensitive keys (api_key, token, authorization, ...) are redacted.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            k: ("[REDACTED]" if k.lower() in SENSITIVE_KEYS else v)
            for k, v in record.__dict__.items()
            if k not in _STANDARD_FIELDS and not k.startswith("_")
        }

        if extras:
            log_data["context"] = extras

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for local development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structured logging for all context_engine loggers.

    Runs once on package import from environment variables; the service
    entry points call it again with ``EngineConfig.log_level`` and
    ``EngineConfig.log_format``. A repeated call reuses the installed handler
    and swaps its level and formatter.

    Args:
        level: Optional log level override. If not provided, uses
               CONTEXT_ENGINE_LOG_LEVEL (default: INFO).
        log_format: Optional ``json`` or ``text`` override. If not provided,
               uses CONTEXT_ENGINE_LOG_FORMAT (default: json).

    Environment Variables:
        CONTEXT_ENGINE_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR. Default: INFO
        CONTEXT_ENGINE_LOG_FORMAT: json or text. Default: json
    """
    if level is None:
        level = os.getenv("CONTEXT_ENGINE_LOG_LEVEL", "INFO")
    if log_format is None:
        log_format = os.getenv("CONTEXT_ENGINE_LOG_FORMAT", "json")

    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = TextFormatter() if log_format.lower() == "text" else StructuredFormatter()

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)

    # Only one handler, repeated calls must not stack handlers
    if not logger.handlers:
        logger.addHandler(logging.StreamHandler())
    logger.handlers[0].setFormatter(formatter)

    logger.propagate = False

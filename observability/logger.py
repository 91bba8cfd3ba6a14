"""
observability/logger.py — OpsDesk Structured Logger

structlog routed through stdlib logging:
  - JSON lines in a rotating file (always), console optional (JSON or pretty)
  - every line carries the live turn's session_id / turn_id (bind_session)
  - provider credentials are masked before rendering: fields named like a
    secret, and OpenAI ("sk-...") / Google ("AIza...") key shapes in any
    string value
  - long string fields (engine text, observations, utterances) are clipped
    to `max_field_chars`

Usage:
    from observability.logger import get_logger, setup_logging

    setup_logging(level="INFO", log_dir="./data/logs")   # call once at startup
    log = get_logger(__name__)
    log.info("executor.batch_start", mode="parallel", total=3)
"""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, MutableMapping

import structlog

REDACTED = "***"
TURN_KEYS = ("session_id", "turn_id")

_SECRET_FIELD = re.compile(r"(api_?key|token|secret|password|authorization)$", re.IGNORECASE)
_SECRET_VALUE = re.compile(r"\b(?:sk-[A-Za-z0-9_\-]{16,}|AIza[0-9A-Za-z_\-]{30,})")

# Fields produced by the pipeline itself; never clipped or masked
_STRUCTURAL = {"event", "level", "logger", "timestamp", "exception", "stack"}


# ─────────────────────────────────────────────────────────────────────────────
# Processors
# ─────────────────────────────────────────────────────────────────────────────


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential fields and key-shaped substrings."""
    for key, value in list(event_dict.items()):
        if key in _STRUCTURAL:
            continue
        if _SECRET_FIELD.search(key) and value:
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            event_dict[key] = _SECRET_VALUE.sub(REDACTED, value)
    return event_dict


class ClipLongFields:
    """Truncate string fields longer than `max_chars`, marking the cut with "…"."""

    def __init__(self, max_chars: int = 500):
        self.max_chars = max_chars

    def __call__(
        self, logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        if self.max_chars <= 0:
            return event_dict
        for key, value in event_dict.items():
            if key in _STRUCTURAL or not isinstance(value, str):
                continue
            if len(value) > self.max_chars:
                event_dict[key] = value[: self.max_chars - 1] + "…"
        return event_dict


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
    max_field_chars: int = 500,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:           DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:         Directory for the rotating opsdesk.log files.
        json_format:     Console emits JSON when True, coloured text otherwise.
        console_output:  Whether to emit logs to stderr at all.
        max_bytes:       Max size of each log file before rotation.
        backup_count:    Number of rotated log files to keep.
        max_field_chars: Clip string fields past this length (0 disables).
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        ClipLongFields(max_field_chars),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            filename=log_dir / "opsdesk.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    ]
    # stdout belongs to the CLI transcript
    if console_output:
        handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setLevel(numeric_level)

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)
    # The provider SDKs log full request bodies at DEBUG
    for noisy in ("httpx", "httpcore", "openai", "google_genai"):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=shared_processors,
    )
    for handler in handlers:
        handler.setFormatter(formatter)


def get_logger(name: str = "opsdesk", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Logger named after the calling module, with optional bound values."""
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_session(session_id: str, turn_id: str | None = None) -> None:
    """
    Tag every log line in this async context (and tasks it spawns) with the
    session and turn. Concurrent turns run in separate tasks, so each keeps
    its own values.
    """
    values: dict[str, Any] = {"session_id": session_id}
    if turn_id:
        values["turn_id"] = turn_id
    structlog.contextvars.bind_contextvars(**values)


def clear_session() -> None:
    """Drop the turn's session_id / turn_id; other bound context stays."""
    structlog.contextvars.unbind_contextvars(*TURN_KEYS)

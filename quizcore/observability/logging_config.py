"""
Logging setup for the orchestration core.

Log messages are event names (``provider_selected``,
``validation_fanout_completed``) and the details travel in ``extra``.
Production renders one JSON object per line on stdout; every other
environment gets a compact colored line on stderr.

Every record emitted while an orchestration cycle is open carries its
``cycle_id``, including records from validation fan-out tasks.

Usage:
    from quizcore.observability.logging_config import configure_logging

    configure_logging()  # QUIZCORE_ENV decides the format

    logger = logging.getLogger(__name__)
    logger.info("provider_selected", extra={
        "provider_id": "anthropic",
        "purpose": "generation",
    })
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Any, Optional

ENV_VAR = "QUIZCORE_ENV"

# ─── Cycle Context ────────────────────────────────────────────────────

_cycle_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "quizcore_cycle_id", default=None
)


def set_cycle_id(cycle_id: str) -> None:
    """Bind ``cycle_id`` to the current context (and tasks spawned from it)."""
    _cycle_id.set(cycle_id)


def get_cycle_id() -> Optional[str]:
    return _cycle_id.get()


def clear_cycle_id() -> None:
    _cycle_id.set(None)


class ContextFilter(logging.Filter):
    """Stamps the open cycle id onto records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        cycle_id = get_cycle_id()
        if cycle_id and getattr(record, "cycle_id", None) is None:
            record.cycle_id = cycle_id  # type: ignore[attr-defined]
        return True


# ─── Record Helpers ───────────────────────────────────────────────────

# Attributes every LogRecord has; anything else came in through extra=.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}

# Never rendered, whatever the caller passed.
REDACTED_FIELDS = frozenset({
    "api_key", "apiKey", "encrypted_api_key", "authorization", "secret",
})
REDACTED = "***"


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """The ``extra`` fields of a record, secrets masked, cycle id excluded."""
    fields: dict[str, Any] = {}
    for key, value in vars(record).items():
        if key in _RECORD_ATTRS or key.startswith("_") or key == "cycle_id":
            continue
        fields[key] = REDACTED if key in REDACTED_FIELDS else value
    return fields


def _error_payload(record: logging.LogRecord) -> Optional[Any]:
    """
    Provider failures render as their structured dict, not a traceback.

    Vendor stack traces stay out of the logs; anything without a
    ``to_dict()`` falls back to the formatted traceback.
    """
    if not record.exc_info or record.exc_info[1] is None:
        return None
    exc = record.exc_info[1]
    to_dict = getattr(exc, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return logging.Formatter().formatException(record.exc_info)


# ─── Formatters ───────────────────────────────────────────────────────


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

        {"ts": "...", "level": "INFO", "logger": "quizcore.providers.router",
         "event": "provider_selected", "cycle_id": "3f2a...",
         "provider_id": "gemini", "purpose": "generation"}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        cycle_id = getattr(record, "cycle_id", None)
        if cycle_id:
            entry["cycle_id"] = cycle_id

        for key, value in record_fields(record).items():
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = repr(value)
            entry[key] = value

        error = _error_payload(record)
        if error is not None:
            entry["error"] = error
        return json.dumps(entry, ensure_ascii=False)


_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[41m",
}
_RESET = "\033[0m"
_DIM = "\033[2m"


class DevFormatter(logging.Formatter):
    """
    Readable single lines for a terminal:

        12:03:44 WARNING  router  validator_failed  provider_id=mistral  (cycle 3f2a)
    """

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def _paint(self, code: str, text: str) -> str:
        return f"{code}{text}{_RESET}" if self.color else text

    def format(self, record: logging.LogRecord) -> str:
        level = self._paint(
            _LEVEL_COLORS.get(record.levelno, ""), f"{record.levelname:<8}"
        )
        short_name = record.name.rsplit(".", 1)[-1]
        line = (
            f"{self.formatTime(record, '%H:%M:%S')} {level} "
            f"{short_name}  {record.getMessage()}"
        )

        fields = record_fields(record)
        if fields:
            line += "  " + " ".join(f"{k}={v}" for k, v in fields.items())

        cycle_id = getattr(record, "cycle_id", None)
        if cycle_id:
            line += "  " + self._paint(_DIM, f"(cycle {cycle_id})")

        error = _error_payload(record)
        if isinstance(error, dict):
            line += "\n    " + json.dumps(error, ensure_ascii=False)
        elif error:
            line += "\n" + error
        return line


# ─── Configuration ────────────────────────────────────────────────────

_QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "supabase", "postgrest")


def configure_logging(
    env: Optional[str] = None,
    level: int = logging.INFO,
    stream: Optional[IO[str]] = None,
) -> logging.Handler:
    """
    Replace the root logger's handlers with one quizcore handler.

    Args:
        env: "production" selects JSON output. Defaults to $QUIZCORE_ENV,
             then "development".
        level: Root log level.
        stream: Output stream. Defaults to stdout for JSON, stderr otherwise.

    Returns:
        The installed handler.
    """
    env = (env or os.environ.get(ENV_VAR) or "development").strip().lower()
    production = env == "production"

    handler = logging.StreamHandler(
        stream or (sys.stdout if production else sys.stderr)
    )
    handler.setFormatter(JSONFormatter() if production else DevFormatter())
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler

"""
Apsara logging setup.

Two output modes, picked by APSARA_LOG_FORMAT:
- text: ``HH:MM:SS [logger] LEVEL: message``, colored when stdout is a TTY
  (override with APSARA_LOG_COLOR=true|false). A ``session_id`` passed in
  ``extra`` is shown as a short tag after the logger name.
- json: one object per line for log shippers, with the relay's structured
  fields (session_id, tool, call_id, duration_ms, status, state) lifted to
  the top level.

APSARA_LOG_LEVEL sets the root level. Chatty client libraries are held at
WARNING whatever the level.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

_RESET = "\033[0m"
_DIM = "\033[2m"
_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}

STRUCTURED_FIELDS = ("session_id", "tool", "call_id", "duration_ms", "status", "state")

QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "websockets",
    "google_genai",
    "uvicorn.access",
)


class ColorFormatter(logging.Formatter):
    """Terminal formatter; plain text when ``use_color`` is off."""

    def __init__(self, use_color: bool = True):
        super().__init__("%(asctime)s [%(name)s]%(session_tag)s %(levelname)s: %(message)s", "%H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        session_id = getattr(record, "session_id", None)
        record.session_tag = f" ({session_id})" if session_id else ""
        if not self.use_color:
            return super().format(record)

        levelname, name = record.levelname, record.name
        record.levelname = f"{_LEVEL_COLORS.get(record.levelno, '')}{levelname}{_RESET}"
        record.name = f"{_DIM}{name}{_RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname, record.name = levelname, name


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Fields given through ``extra=`` that appear in STRUCTURED_FIELDS are
    copied to the top level, so ``extra={"session_id": "ab12cd34"}`` can be
    filtered on directly.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key)) for key in STRUCTURED_FIELDS if hasattr(record, key)
        )
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ToolTimer:
    """Measures one tool call and renders the log ``extra`` for it."""

    def __init__(self, tool: str, call_id: str = ""):
        self.tool = tool
        self.call_id = call_id
        self._start = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def extra(self, **fields) -> dict:
        return {"tool": self.tool, "call_id": self.call_id, "duration_ms": self.elapsed_ms, **fields}


def _color_enabled() -> bool:
    setting = os.getenv("APSARA_LOG_COLOR", "auto").lower()
    if setting in ("true", "false"):
        return setting == "true"
    return sys.stdout.isatty()


def setup_logging() -> None:
    """Install a single stdout handler on the root logger.

    Safe to call more than once; previous handlers are replaced.
    """
    level_name = os.getenv("APSARA_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    log_format = os.getenv("APSARA_LOG_FORMAT", "text").lower()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_color_enabled())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("apsara").debug("Logging ready (level=%s, format=%s)", level_name, log_format)

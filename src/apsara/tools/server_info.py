"""Clock and host built-in tools. Instant, no network."""

from __future__ import annotations

import platform
import sys
import time
from datetime import datetime, timezone

from apsara.tools.base import ApsaraTool, ToolResult

_STARTED = time.monotonic()


def _uptime() -> str:
    seconds = int(time.monotonic() - _STARTED)
    hours, rest = divmod(seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}h {minutes}m {seconds}s"


def clock_snapshot() -> dict:
    now = datetime.now(timezone.utc)
    local = now.astimezone()
    return {
        "server_time": now.isoformat(),
        "local_time": local.strftime("%Y-%m-%d %H:%M:%S"),
        "timezone": local.tzname() or "UTC",
        "uptime": _uptime(),
    }


class CurrentTimeTool(ApsaraTool):
    """Current date and time on the server."""

    name = "get_current_time"
    description = (
        "Returns the current date and time (UTC and server local time) and the "
        "server timezone. Use when the user asks what time or date it is."
    )

    async def execute(self, **_) -> ToolResult:
        return ToolResult.success(**clock_snapshot())


class ServerInfoTool(ApsaraTool):
    """Clock plus runtime details."""

    name = "get_server_info"
    description = (
        "Returns current server information including date/time, timezone, "
        "server uptime, and Python version. Useful when the user asks for the "
        "current time, date, or server status."
    )

    async def execute(self, **_) -> ToolResult:
        return ToolResult.success(
            **clock_snapshot(),
            python_version=sys.version.split()[0],
            platform=platform.system().lower(),
        )

"""
Tool Executor — the relay's single entry point into the tool layer.

Resolves a tool call by name, runs it, and always returns a payload dict
with ``success``. Failures are logged here and never propagate.
"""

from __future__ import annotations

import logging
from typing import Any

from apsara.core.logging import ToolTimer
from apsara.tools.base import ProgressCallback
from apsara.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutor:
    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(
        self,
        name: str,
        args: dict[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
        call_id: str = "",
    ) -> dict[str, Any]:
        timer = ToolTimer(name, call_id)
        result = await self.registry.dispatch(name, args or {}, on_progress)
        payload = result.to_payload()
        status = "ok" if payload["success"] else "error"
        logger.info(
            "Tool %s finished (%s) in %dms",
            name,
            status,
            timer.elapsed_ms,
            extra=timer.extra(status=status),
        )
        return payload

    def is_long_running(self, name: str) -> bool:
        tool = self.registry.get(name)
        return bool(tool and tool.long_running)

    def family(self, name: str) -> str:
        tool = self.registry.get(name)
        return tool.family if tool else "tool"

    def declarations(self, enabled: list[str] | None = None) -> list[dict]:
        return self.registry.declarations(enabled)

    def tool_names(self) -> list[str]:
        return self.registry.tool_names()

    def describe(self) -> list[dict]:
        return self.registry.describe()

"""
Tool registry — the set of tools one app exposes to Gemini Live.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from apsara.tools.base import ApsaraTool, ProgressCallback, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self):
        self._tools: dict[str, ApsaraTool] = {}

    def register(self, tool: ApsaraTool) -> None:
        """Add ``tool``; a later tool with the same name replaces it."""
        if not tool.name:
            raise ValueError(f"{tool!r} has no name")
        if tool.name in self._tools:
            logger.warning("Replacing tool %s", tool.name)
        self._tools[tool.name] = tool
        logger.debug("Registered %s (long_running=%s)", tool.name, tool.long_running)

    def get(self, name: str) -> ApsaraTool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[ApsaraTool]:
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def dispatch(
        self,
        name: str,
        args: dict[str, Any],
        on_progress: ProgressCallback | None = None,
    ) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.fail(f"Unknown tool: {name}")
        logger.info("Calling %s(%s)", name, ", ".join(args))
        return await tool.safe_execute(args, on_progress=on_progress)

    def declarations(self, enabled: Iterable[str] | None = None) -> list[dict]:
        """Function declarations, optionally restricted to ``enabled`` names."""
        wanted = None if enabled is None else set(enabled)
        return [
            tool.to_function_declaration()
            for tool in self._tools.values()
            if wanted is None or tool.name in wanted
        ]

    def describe(self) -> list[dict]:
        """Client-facing tool list for get_tools."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "longRunning": tool.long_running,
                "family": tool.family,
            }
            for tool in self._tools.values()
        ]

"""Apsara Tools — what the Live model can call on the server."""

from apsara.tools.base import ApsaraTool, ToolParam, ToolResult
from apsara.tools.executor import ToolExecutor
from apsara.tools.registry import ToolRegistry

__all__ = ["ApsaraTool", "ToolParam", "ToolResult", "ToolExecutor", "ToolRegistry"]

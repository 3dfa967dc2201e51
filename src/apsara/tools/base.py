"""
ApsaraTool — the base class for all server-side tools.

A tool is name + description + parameters + execute. Two class attributes
tell the relay how to schedule it:

- ``long_running``: runs on its own task instead of in the instant batch
- ``family``: prefix for progress messages (``canvas_progress``…)

Long-running tools receive an ``on_progress(status, message)`` coroutine
callback. Results are always turned into a ``{"success": bool, ...}``
payload before they leave the tool layer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], Awaitable[None]]


async def _ignore_progress(status: str, message: str) -> None:
    return None


@dataclass
class ToolParam:
    name: str
    type: str  # JSON schema type
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None

    def schema(self) -> dict[str, Any]:
        prop: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            prop["enum"] = self.enum
        return prop


@dataclass
class ToolResult:
    """Outcome of one call: a human message plus payload fields."""

    message: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    error: bool = False

    @classmethod
    def success(cls, message: str = "", **fields) -> ToolResult:
        return cls(message, fields)

    @classmethod
    def fail(cls, error: str, **fields) -> ToolResult:
        return cls(error, fields, error=True)

    def to_payload(self) -> dict[str, Any]:
        """Body of the function response sent upstream."""
        if self.error:
            return {"success": False, "error": self.message, **self.fields}
        payload: dict[str, Any] = {"success": True, **self.fields}
        if self.message and "message" not in payload:
            payload["message"] = self.message
        return payload


class ApsaraTool(ABC):
    """One callable function exposed to the Live model."""

    name: str = ""
    description: str = ""
    parameters: list[ToolParam] = []
    long_running: bool = False
    family: str = "tool"

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult: ...

    def to_function_declaration(self) -> dict:
        """Gemini function declaration (name, description, JSON schema)."""
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {p.name: p.schema() for p in self.parameters},
        }
        required = [p.name for p in self.parameters if p.required]
        if required:
            schema["required"] = required
        return {"name": self.name, "description": self.description, "parameters": schema}

    def validate_args(self, args: dict) -> dict:
        """Drop unknown and empty args, apply defaults, reject missing required ones."""
        cleaned = {}
        for param in self.parameters:
            value = args.get(param.name)
            if value is None or value == "":
                if param.required:
                    raise ValueError(f"Missing required parameter: {param.name}")
                value = param.default
            if value is not None:
                cleaned[param.name] = value
        return cleaned

    async def safe_execute(
        self, args: dict, on_progress: ProgressCallback | None = None
    ) -> ToolResult:
        """Validate, run, and convert any exception into a failed result."""
        try:
            cleaned = self.validate_args(args or {})
        except ValueError as e:
            return ToolResult.fail(f"Invalid arguments: {e}")

        if self.long_running:
            cleaned["on_progress"] = on_progress or _ignore_progress

        try:
            return await self.execute(**cleaned)
        except Exception as e:
            logger.error("Tool %s raised: %s", self.name, e, exc_info=True)
            return ToolResult.fail(str(e))

    def __repr__(self) -> str:
        return f"<Tool:{self.name}>"

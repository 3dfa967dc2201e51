"""Function tools the text chat executes on its own, without the client."""

from __future__ import annotations

import json
import logging
from typing import Any

from apsara.tools.server_info import clock_snapshot

logger = logging.getLogger(__name__)

FUNCTION_TOOLS: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "get_current_time",
        "description": (
            "Returns the current date, time, timezone, and server uptime. Useful "
            "when the user asks for the current time or date."
        ),
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
    {
        "type": "function",
        "name": "get_weather",
        "description": (
            "Gets the current weather for a given location. Returns temperature, "
            "conditions, humidity, and wind."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "location": {
                    "type": "string",
                    "description": 'The city name, e.g. "Paris", "New York, NY"',
                },
            },
            "required": ["location"],
        },
    },
]


def function_names() -> list[str]:
    return [t["name"] for t in FUNCTION_TOOLS]


def execute_function(name: str, args: dict[str, Any] | None = None) -> str:
    """Run a chat function tool. The result is a JSON string for function_result."""
    args = args or {}
    if name == "get_current_time":
        return json.dumps({"success": True, **clock_snapshot()})
    if name == "get_weather":
        # Mock data until a weather provider is wired in
        return json.dumps(
            {
                "success": True,
                "location": args.get("location") or "Unknown",
                "temperature": "22°C",
                "conditions": "Partly cloudy",
                "humidity": "65%",
                "wind": "12 km/h NW",
                "note": "This is mock data.",
            }
        )
    logger.warning("Unknown chat function: %s", name)
    return json.dumps({"success": False, "error": f"Unknown function: {name}"})

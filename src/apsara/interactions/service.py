"""
Interactions Service — stateful text chat on the Gemini Interactions API.

Conversations are chained server-side with previous_interaction_id, so the
service itself keeps no history. Function calls to the chat's own tools
(apsara.interactions.tools) are executed here and fed back, up to
max_tool_rounds follow-up interactions.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from apsara.core.config import InteractionsConfig, config
from apsara.core.gemini import attr, outputs_of
from apsara.interactions.tools import FUNCTION_TOOLS, execute_function

logger = logging.getLogger(__name__)

INTERACTIONS_MODELS = [
    {"id": "gemini-2.5-pro", "name": "Gemini 2.5 Pro", "type": "model"},
    {"id": "gemini-2.5-flash", "name": "Gemini 2.5 Flash", "type": "model"},
    {"id": "gemini-2.5-flash-lite", "name": "Gemini 2.5 Flash Lite", "type": "model"},
    {"id": "gemini-3-pro-preview", "name": "Gemini 3 Pro Preview", "type": "model"},
    {"id": "gemini-3-flash-preview", "name": "Gemini 3 Flash Preview", "type": "model"},
]

THINKING_LEVELS = ["minimal", "low", "medium", "high"]

BUILTIN_TOOLS = {
    "googleSearch": {"type": "google_search"},
    "codeExecution": {"type": "code_execution"},
    "urlContext": {"type": "url_context"},
}

DEFAULT_SYSTEM_INSTRUCTION = """You are Apsara, a helpful, friendly, and intelligent AI assistant created by Shubharthak.
You are warm, concise, and to the point. You keep responses short unless asked for detail.
You format your responses in clean markdown when appropriate."""

_GENERATION_KEYS = (
    "temperature",
    "max_output_tokens",
    "thinking_level",
    "thinking_summaries",
    "response_modalities",
    "speech_config",
    "image_config",
)


def to_jsonable(item: Any) -> Any:
    """SDK objects to plain JSON values."""
    if hasattr(item, "model_dump"):
        return item.model_dump(mode="json", exclude_none=True)
    if isinstance(item, Mapping):
        return {k: to_jsonable(v) for k, v in item.items()}
    if isinstance(item, (list, tuple)):
        return [to_jsonable(v) for v in item]
    return item


def build_tools(tools_config: Mapping[str, Any] | None) -> list[dict]:
    """Translate the client's tool switches into an Interactions tools list."""
    tools_config = tools_config or {}
    tools = [spec for key, spec in BUILTIN_TOOLS.items() if tools_config.get(key)]

    if tools_config.get("functionCalling", True) is not False:
        enabled = tools_config.get("enabledFunctions")
        tools.extend(
            t for t in FUNCTION_TOOLS if enabled is None or t["name"] in enabled
        )

    custom = tools_config.get("customTools")
    if isinstance(custom, list):
        tools.extend(custom)
    return tools


def build_generation_config(
    defaults: Mapping[str, Any], overrides: Mapping[str, Any] | None
) -> dict[str, Any]:
    merged = {**defaults, **(overrides or {})}
    return {k: merged[k] for k in _GENERATION_KEYS if merged.get(k) is not None}


def format_response(interaction: Any) -> dict[str, Any]:
    """Client view of an interaction with convenience fields pulled out."""
    outputs = [to_jsonable(o) for o in outputs_of(interaction)]
    response: dict[str, Any] = {
        "id": attr(interaction, "id"),
        "status": to_jsonable(attr(interaction, "status")),
        "model": attr(interaction, "model"),
        "outputs": outputs,
        "usage": to_jsonable(attr(interaction, "usage")),
    }

    texts = [o for o in outputs if o.get("type") == "text"]
    if texts:
        response["text"] = texts[-1].get("text")

    thoughts = [o for o in outputs if o.get("type") == "thought"]
    if thoughts:
        response["thoughts"] = [
            {"summary": t.get("summary"), "signature": t.get("signature")}
            for t in thoughts
        ]

    calls = [o for o in outputs if o.get("type") == "function_call"]
    if calls:
        response["functionCalls"] = calls

    images = [o for o in outputs if o.get("type") == "image"]
    if images:
        response["images"] = [
            {"data": i.get("data"), "mime_type": i.get("mime_type")} for i in images
        ]
    return response


class InteractionsService:
    def __init__(self, client: Any, settings: InteractionsConfig | None = None):
        self.client = client
        self.settings = settings or config.interactions

    def default_session_config(self) -> dict[str, Any]:
        return {
            "model": self.settings.model,
            "system_instruction": DEFAULT_SYSTEM_INSTRUCTION,
            "generation_config": self.settings.generation_config(),
            "tools": {"functionCalling": True},
        }

    async def create_interaction(
        self,
        input: Any,
        *,
        model: str | None = None,
        previous_interaction_id: str | None = None,
        system_instruction: str | None = DEFAULT_SYSTEM_INSTRUCTION,
        generation_config: Mapping[str, Any] | None = None,
        tools: Mapping[str, Any] | None = None,
        response_format: Any = None,
        auto_execute_tools: bool = True,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {"model": model or self.settings.model, "input": input}
        if previous_interaction_id:
            request["previous_interaction_id"] = previous_interaction_id
        if system_instruction:
            request["system_instruction"] = system_instruction
        gen = build_generation_config(self.settings.generation_config(), generation_config)
        if gen:
            request["generation_config"] = gen
        tool_list = build_tools(tools)
        if tool_list:
            request["tools"] = tool_list
        if response_format is not None:
            request["response_format"] = response_format

        logger.info(
            "Creating interaction (model=%s, chained=%s, tools=%d)",
            request["model"],
            bool(previous_interaction_id),
            len(tool_list),
        )
        interaction = await self.client.aio.interactions.create(**request)

        if auto_execute_tools:
            interaction = await self._handle_function_calls(interaction, request)
        return format_response(interaction)

    async def get_interaction(self, interaction_id: str) -> dict[str, Any]:
        interaction = await self.client.aio.interactions.get(interaction_id)
        return format_response(interaction)

    async def _handle_function_calls(self, interaction: Any, request: dict[str, Any]) -> Any:
        max_rounds = self.settings.max_tool_rounds
        for round_no in range(1, max_rounds + 1):
            calls = [o for o in outputs_of(interaction) if attr(o, "type") == "function_call"]
            if not calls:
                return interaction

            logger.info(
                "Function calls (round %d): %s", round_no, [attr(c, "name") for c in calls]
            )
            results = [
                {
                    "type": "function_result",
                    "name": attr(c, "name"),
                    "call_id": attr(c, "id"),
                    "result": execute_function(attr(c, "name"), dict(attr(c, "arguments") or {})),
                }
                for c in calls
            ]

            follow_up: dict[str, Any] = {
                "model": request["model"],
                "previous_interaction_id": attr(interaction, "id"),
                "input": results,
            }
            # Tools and instructions are interaction-scoped, resend them
            for key in ("tools", "system_instruction", "generation_config"):
                if key in request:
                    follow_up[key] = request[key]
            interaction = await self.client.aio.interactions.create(**follow_up)

        if any(attr(o, "type") == "function_call" for o in outputs_of(interaction)):
            logger.warning("Reached max function call rounds (%d)", max_rounds)
        return interaction

    def config_options(self) -> dict[str, Any]:
        return {
            "models": INTERACTIONS_MODELS,
            "defaults": {
                "model": self.settings.model,
                "generation_config": self.settings.generation_config(),
                "system_instruction": DEFAULT_SYSTEM_INSTRUCTION,
            },
            "thinking_levels": THINKING_LEVELS,
            "available_tools": {
                "builtin": [spec["type"] for spec in BUILTIN_TOOLS.values()],
                "functions": [
                    {"name": t["name"], "description": t["description"]}
                    for t in FUNCTION_TOOLS
                ],
            },
        }

"""
Live session configuration — one immutable record per client connection.

Built from server defaults plus the client's ``connect`` overrides. The
client speaks camelCase keys (``responseModalities``, ``toolAsyncModes``…);
this module is the only place that knows that mapping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from apsara.core.config import config

logger = logging.getLogger(__name__)

AVAILABLE_VOICES = [
    "Puck",
    "Charon",
    "Kore",
    "Fenrir",
    "Aoede",
    "Leda",
    "Orus",
    "Zephyr",
]

AVAILABLE_MODELS = [
    "gemini-2.5-flash-native-audio-preview-12-2025",
]

MEDIA_RESOLUTIONS = ("low", "medium", "high")

AUDIO_MODALITY = "AUDIO"

AUDIO_FORMAT = {
    "INPUT_SAMPLE_RATE": 16000,
    "INPUT_CHANNELS": 1,
    "INPUT_BIT_DEPTH": 16,
    "INPUT_MIME_TYPE": "audio/pcm;rate=16000",
    "OUTPUT_SAMPLE_RATE": 24000,
    "OUTPUT_CHANNELS": 1,
    "OUTPUT_BIT_DEPTH": 16,
}

DEFAULT_SYSTEM_INSTRUCTION = """You are Apsara, a helpful, friendly, and intelligent AI assistant created by Shubharthak.
You speak naturally and conversationally. You are warm, concise, and to the point.
When speaking, you keep responses short unless asked for detail.
You are assisting Shubharthak with his day-to-day tasks, ideas, and conversations.
When you start a long-running tool (canvas, interpreter, URL summary), tell the user
it is running and keep talking; you will be interrupted with the result when it is ready."""


def _number(key: str, value: Any, cast: type) -> Any:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number")
    try:
        return cast(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"{key} must be a number") from None


@dataclass(frozen=True)
class SessionConfig:
    """Declarative Live session settings. Replace, never mutate."""

    model: str = config.gemini.live_model
    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION
    response_modalities: tuple[str, ...] = (AUDIO_MODALITY,)
    voice: str = config.gemini.live_voice
    temperature: float | None = 0.7
    context_compression: bool = True
    session_resumption: bool = True
    affective_dialog: bool = True
    proactive_audio: bool = True
    thinking_budget: int | None = None  # None = dynamic, 0 = off
    include_thoughts: bool = False
    input_transcription: bool = True
    output_transcription: bool = True
    media_resolution: str | None = None  # low / medium / high
    google_search: bool = False
    function_calling: bool = True
    function_declarations: tuple[dict, ...] = ()
    tool_async_modes: Mapping[str, bool] = field(default_factory=dict)

    @property
    def audio_enabled(self) -> bool:
        return AUDIO_MODALITY in self.response_modalities

    def is_async(self, tool_name: str) -> bool:
        """Tools absent from the async map are sync (blocking)."""
        return bool(self.tool_async_modes.get(tool_name, False))

    @property
    def tool_names(self) -> list[str]:
        return [d["name"] for d in self.function_declarations]

    @classmethod
    def build(
        cls,
        overrides: Mapping[str, Any] | None = None,
        declarations: list[dict] | None = None,
    ) -> SessionConfig:
        """Construct from server defaults plus client overrides."""
        base = cls(function_declarations=tuple(declarations or ()))
        return base.merged(overrides or {}, declarations=declarations)

    def merged(
        self,
        overrides: Mapping[str, Any],
        declarations: list[dict] | None = None,
    ) -> SessionConfig:
        """Return a copy with client overrides applied over current values.

        ``declarations`` is the full list of server-side tool declarations;
        when given, ``enabledTools`` in the overrides filters it.
        """
        if not isinstance(overrides, Mapping):
            raise ValueError("config must be an object")

        changes: dict[str, Any] = {}

        if "model" in overrides:
            model = str(overrides["model"])
            if model not in AVAILABLE_MODELS:
                logger.warning("Client requested unlisted model: %s", model)
            changes["model"] = model

        if "systemInstruction" in overrides:
            changes["system_instruction"] = str(overrides["systemInstruction"] or "")

        if "responseModalities" in overrides:
            requested = overrides["responseModalities"] or []
            if not isinstance(requested, (list, tuple)):
                raise ValueError("responseModalities must be a list")
            if list(requested) != [AUDIO_MODALITY]:
                logger.warning(
                    "Forcing response modality to AUDIO (requested %s)", requested
                )
            changes["response_modalities"] = (AUDIO_MODALITY,)

        if "voice" in overrides and overrides["voice"]:
            voice = str(overrides["voice"])
            if voice not in AVAILABLE_VOICES:
                logger.warning("Client requested unlisted voice: %s", voice)
            changes["voice"] = voice

        if "temperature" in overrides:
            temp = overrides["temperature"]
            if temp is not None:
                temp = min(max(_number("temperature", temp, float), 0.0), 2.0)
            changes["temperature"] = temp

        for client_key, attr in (
            ("contextWindowCompression", "context_compression"),
            ("sessionResumption", "session_resumption"),
            ("enableAffectiveDialog", "affective_dialog"),
            ("proactiveAudio", "proactive_audio"),
            ("includeThoughts", "include_thoughts"),
            ("inputAudioTranscription", "input_transcription"),
            ("outputAudioTranscription", "output_transcription"),
        ):
            if client_key in overrides:
                # Objects like {"slidingWindow": {}} count as enabled
                changes[attr] = bool(overrides[client_key]) or overrides[
                    client_key
                ] == {}

        if "thinkingBudget" in overrides:
            budget = overrides["thinkingBudget"]
            if budget is not None:
                budget = _number("thinkingBudget", budget, int)
            changes["thinking_budget"] = budget

        if "mediaResolution" in overrides:
            res = overrides["mediaResolution"]
            if res is not None:
                res = str(res).lower()
                if res not in MEDIA_RESOLUTIONS:
                    raise ValueError(f"Invalid mediaResolution: {res}")
            changes["media_resolution"] = res

        tools_cfg = overrides.get("tools")
        if isinstance(tools_cfg, Mapping):
            if "googleSearch" in tools_cfg:
                changes["google_search"] = bool(tools_cfg["googleSearch"])
            if "functionCalling" in tools_cfg:
                changes["function_calling"] = bool(tools_cfg["functionCalling"])

        if "toolAsyncModes" in overrides:
            modes = overrides["toolAsyncModes"] or {}
            if not isinstance(modes, Mapping):
                raise ValueError("toolAsyncModes must be an object")
            changes["tool_async_modes"] = {str(k): bool(v) for k, v in modes.items()}

        if declarations is not None:
            enabled = overrides.get("enabledTools")
            if enabled is None:
                changes["function_declarations"] = tuple(declarations)
            else:
                if not isinstance(enabled, (list, tuple)):
                    raise ValueError("enabledTools must be a list")
                wanted = {str(name) for name in enabled}
                changes["function_declarations"] = tuple(
                    d for d in declarations if d["name"] in wanted
                )

        return replace(self, **changes)

    def to_state(self) -> dict[str, Any]:
        """Client-visible view used by get_state / update_config replies."""
        return {
            "model": self.model,
            "voice": self.voice,
            "modalities": list(self.response_modalities),
            "temperature": self.temperature,
            "enableAffectiveDialog": self.affective_dialog,
            "proactiveAudio": self.proactive_audio,
            "thinkingBudget": self.thinking_budget,
            "includeThoughts": self.include_thoughts,
            "inputAudioTranscription": self.input_transcription,
            "outputAudioTranscription": self.output_transcription,
            "contextWindowCompression": self.context_compression,
            "sessionResumption": self.session_resumption,
            "mediaResolution": self.media_resolution,
            "googleSearch": self.google_search,
            "functionCalling": self.function_calling,
            "toolAsyncModes": dict(self.tool_async_modes),
            "tools": self.tool_names,
        }


def config_options() -> dict[str, Any]:
    """Available voices/models plus defaults — the Live settings panel payload."""
    defaults = SessionConfig()
    return {
        "voices": AVAILABLE_VOICES,
        "models": AVAILABLE_MODELS,
        "defaults": {
            "model": defaults.model,
            "voice": defaults.voice,
            "temperature": defaults.temperature,
            "responseModalities": list(defaults.response_modalities),
            "enableAffectiveDialog": defaults.affective_dialog,
            "proactiveAudio": defaults.proactive_audio,
            "thinkingBudget": defaults.thinking_budget,
            "includeThoughts": defaults.include_thoughts,
            "inputAudioTranscription": defaults.input_transcription,
            "outputAudioTranscription": defaults.output_transcription,
            "contextWindowCompression": defaults.context_compression,
            "sessionResumption": defaults.session_resumption,
            "googleSearch": defaults.google_search,
            "functionCalling": defaults.function_calling,
            "systemInstruction": defaults.system_instruction,
        },
        "mediaResolutions": list(MEDIA_RESOLUTIONS),
        "audio": AUDIO_FORMAT,
    }

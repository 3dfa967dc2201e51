"""
Apsara Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
Per-connection Live session settings live in apsara.live.session_config;
this module only holds process-wide settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class GeminiConfig:
    """Gemini API credentials and Live defaults."""

    api_key: str = ""
    api_version: str = "v1alpha"
    live_model: str = "gemini-2.5-flash-native-audio-preview-12-2025"
    live_voice: str = "Kore"

    @classmethod
    def from_env(cls) -> GeminiConfig:
        return cls(
            api_key=os.getenv("GEMINI_API_KEY", ""),
            api_version=os.getenv("APSARA_API_VERSION", "v1alpha"),
            live_model=os.getenv(
                "APSARA_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-12-2025"
            ),
            live_voice=os.getenv("APSARA_LIVE_VOICE", "Kore"),
        )

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key) and self.api_key != "your_gemini_api_key_here"


@dataclass(frozen=True)
class RelayConfig:
    """Reconnect timing for the Live relay."""

    go_away_reconnect_delay: float = 2.0  # seconds after go_away
    resume_reconnect_delay: float = 1.0  # seconds, doubles per consecutive attempt
    max_reconnect_attempts: int = 3

    @classmethod
    def from_env(cls) -> RelayConfig:
        return cls(
            go_away_reconnect_delay=float(
                os.getenv("APSARA_GO_AWAY_RECONNECT_DELAY", "2.0")
            ),
            resume_reconnect_delay=float(
                os.getenv("APSARA_RESUME_RECONNECT_DELAY", "1.0")
            ),
            max_reconnect_attempts=int(
                os.getenv("APSARA_MAX_RECONNECT_ATTEMPTS", "3")
            ),
        )


@dataclass(frozen=True)
class CanvasConfig:
    """App generation settings (Interactions API)."""

    model: str = "gemini-3-flash-preview"
    max_output_tokens: int = 65536
    thinking_level: str = "high"
    thinking_summaries: str = "auto"
    temperature: float = 0.7
    fix_temperature: float = 0.3
    max_attempts: int = 3

    @classmethod
    def from_env(cls) -> CanvasConfig:
        return cls(
            model=os.getenv("APSARA_CANVAS_MODEL", "gemini-3-flash-preview"),
            max_output_tokens=int(
                os.getenv("APSARA_CANVAS_MAX_OUTPUT_TOKENS", "65536")
            ),
            thinking_level=os.getenv("APSARA_CANVAS_THINKING_LEVEL", "high"),
            thinking_summaries=os.getenv("APSARA_CANVAS_THINKING_SUMMARIES", "auto"),
            temperature=float(os.getenv("APSARA_CANVAS_TEMPERATURE", "0.7")),
            fix_temperature=float(os.getenv("APSARA_CANVAS_FIX_TEMPERATURE", "0.3")),
            max_attempts=int(os.getenv("APSARA_CANVAS_MAX_ATTEMPTS", "3")),
        )

    def as_dict(self) -> dict:
        return {
            "model": self.model,
            "max_output_tokens": self.max_output_tokens,
            "thinking_level": self.thinking_level,
            "thinking_summaries": self.thinking_summaries,
            "temperature": self.temperature,
            "max_attempts": self.max_attempts,
        }


@dataclass(frozen=True)
class InterpreterConfig:
    """Code execution settings (Interactions API + code_execution tool)."""

    model: str = "gemini-3-flash-preview"
    max_output_tokens: int = 65536
    thinking_level: str = "high"
    thinking_summaries: str = "auto"
    temperature: float = 0.7

    @classmethod
    def from_env(cls) -> InterpreterConfig:
        return cls(
            model=os.getenv("APSARA_INTERPRETER_MODEL", "gemini-3-flash-preview"),
            max_output_tokens=int(
                os.getenv("APSARA_INTERPRETER_MAX_OUTPUT_TOKENS", "65536")
            ),
            thinking_level=os.getenv("APSARA_INTERPRETER_THINKING_LEVEL", "high"),
            thinking_summaries=os.getenv(
                "APSARA_INTERPRETER_THINKING_SUMMARIES", "auto"
            ),
            temperature=float(os.getenv("APSARA_INTERPRETER_TEMPERATURE", "0.7")),
        )


@dataclass(frozen=True)
class InteractionsConfig:
    """Text chat settings (Interactions API)."""

    model: str = "gemini-3-flash-preview"
    max_output_tokens: int = 8192
    thinking_level: str = "high"
    thinking_summaries: str = "auto"
    temperature: float = 0.7
    max_tool_rounds: int = 5
    summary_model: str = "gemini-2.5-flash"
    fetch_timeout: float = 15.0
    fetch_max_chars: int = 40000

    @classmethod
    def from_env(cls) -> InteractionsConfig:
        return cls(
            model=os.getenv("APSARA_INTERACTIONS_MODEL", "gemini-3-flash-preview"),
            max_output_tokens=int(
                os.getenv("APSARA_INTERACTIONS_MAX_OUTPUT_TOKENS", "8192")
            ),
            thinking_level=os.getenv("APSARA_INTERACTIONS_THINKING_LEVEL", "high"),
            thinking_summaries=os.getenv(
                "APSARA_INTERACTIONS_THINKING_SUMMARIES", "auto"
            ),
            temperature=float(os.getenv("APSARA_INTERACTIONS_TEMPERATURE", "0.7")),
            max_tool_rounds=int(os.getenv("APSARA_INTERACTIONS_MAX_TOOL_ROUNDS", "5")),
            summary_model=os.getenv("APSARA_SUMMARY_MODEL", "gemini-2.5-flash"),
            fetch_timeout=float(os.getenv("APSARA_FETCH_TIMEOUT", "15.0")),
            fetch_max_chars=int(os.getenv("APSARA_FETCH_MAX_CHARS", "40000")),
        )

    def generation_config(self) -> dict:
        return {
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
            "thinking_level": self.thinking_level,
            "thinking_summaries": self.thinking_summaries,
        }


@dataclass(frozen=True)
class ServerConfig:
    """Server settings."""

    host: str = "0.0.0.0"
    port: int = 3000
    ws_send_timeout: float = 5.0
    idle_timeout: float = 90.0
    max_message_bytes: int = 10 * 1024 * 1024  # video frames
    public_url: str = ""

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("APSARA_HOST", "0.0.0.0"),
            port=int(os.getenv("APSARA_PORT", "3000")),
            ws_send_timeout=float(os.getenv("APSARA_WS_SEND_TIMEOUT", "5.0")),
            idle_timeout=float(os.getenv("APSARA_WS_IDLE_TIMEOUT", "90")),
            max_message_bytes=int(
                os.getenv("APSARA_WS_MAX_MESSAGE_BYTES", str(10 * 1024 * 1024))
            ),
            public_url=os.getenv("APSARA_PUBLIC_URL", ""),
        )


@dataclass(frozen=True)
class ApsaraConfig:
    """All settings, grouped by subsystem."""

    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    canvas: CanvasConfig = field(default_factory=CanvasConfig)
    interpreter: InterpreterConfig = field(default_factory=InterpreterConfig)
    interactions: InteractionsConfig = field(default_factory=InteractionsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> ApsaraConfig:
        return cls(
            gemini=GeminiConfig.from_env(),
            relay=RelayConfig.from_env(),
            canvas=CanvasConfig.from_env(),
            interpreter=InterpreterConfig.from_env(),
            interactions=InteractionsConfig.from_env(),
            server=ServerConfig.from_env(),
        )


# Process-wide settings, read once at import
config = ApsaraConfig.from_env()

"""
Live events — everything an upstream Live session can tell the relay.

A closed set of frozen dataclasses. The adapter puts them on one queue per
session; the relay reads that queue and dispatches on the concrete type.
LIVE_EVENT_TYPES lists every variant so consumers can check they handle
all of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class ToolCall:
    """One function call requested by the model."""

    id: str
    name: str
    args: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "args": self.args}


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Disconnected:
    reason: str = ""


@dataclass(frozen=True)
class AudioChunk:
    data: str  # base64 PCM
    mime_type: str = "audio/pcm;rate=24000"


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class ThoughtChunk:
    text: str


@dataclass(frozen=True)
class InputTranscript:
    text: str


@dataclass(frozen=True)
class OutputTranscript:
    text: str


@dataclass(frozen=True)
class Interrupted:
    pass


@dataclass(frozen=True)
class TurnComplete:
    pass


@dataclass(frozen=True)
class GenerationComplete:
    pass


@dataclass(frozen=True)
class ToolCallRequest:
    calls: tuple[ToolCall, ...]


@dataclass(frozen=True)
class GoingAway:
    time_left: str | None = None


@dataclass(frozen=True)
class ResumptionUpdate:
    resumable: bool
    has_handle: bool


@dataclass(frozen=True)
class Usage:
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class UpstreamError:
    kind: str  # "connection_failed" | "gemini_error"
    message: str


LiveEvent = Union[
    Connected,
    Disconnected,
    AudioChunk,
    TextChunk,
    ThoughtChunk,
    InputTranscript,
    OutputTranscript,
    Interrupted,
    TurnComplete,
    GenerationComplete,
    ToolCallRequest,
    GoingAway,
    ResumptionUpdate,
    Usage,
    UpstreamError,
]

LIVE_EVENT_TYPES: tuple[type, ...] = LiveEvent.__args__

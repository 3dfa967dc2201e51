"""
Relay wire protocol — JSON envelopes on the /live WebSocket.

Client messages are decoded into a closed set of frozen dataclasses at the
transport boundary; an unknown ``type`` raises UnknownMessageType and a bad
field raises MalformedMessage. Outbound messages are plain dicts built by
encode_event() and the small helpers below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Union

from apsara.core.errors import MalformedMessage, UnknownMessageType
from apsara.live.events import (
    AudioChunk,
    Connected,
    Disconnected,
    GenerationComplete,
    GoingAway,
    InputTranscript,
    Interrupted,
    LiveEvent,
    OutputTranscript,
    ResumptionUpdate,
    TextChunk,
    ThoughtChunk,
    ToolCallRequest,
    TurnComplete,
    UpstreamError,
    Usage,
)

# ─── Client → Relay ──────────────────────────────────────────────


@dataclass(frozen=True)
class Connect:
    config: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Disconnect:
    pass


@dataclass(frozen=True)
class Audio:
    data: str
    mime_type: str | None = None


@dataclass(frozen=True)
class Video:
    data: str
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class Context:
    turns: list
    turn_complete: bool = False


@dataclass(frozen=True)
class ToolResponseMsg:
    responses: list


@dataclass(frozen=True)
class AudioStreamEnd:
    pass


@dataclass(frozen=True)
class UpdateConfig:
    config: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Reconnect:
    config: dict | None = None


@dataclass(frozen=True)
class GetState:
    pass


@dataclass(frozen=True)
class GetConfig:
    pass


@dataclass(frozen=True)
class GetTools:
    pass


@dataclass(frozen=True)
class Ping:
    pass


ClientMessage = Union[
    Connect,
    Disconnect,
    Audio,
    Video,
    Text,
    Context,
    ToolResponseMsg,
    AudioStreamEnd,
    UpdateConfig,
    Reconnect,
    GetState,
    GetConfig,
    GetTools,
    Ping,
]


def _string(raw: dict, key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str):
        raise MalformedMessage(f'"{raw.get("type")}" requires a string "{key}"')
    return value


def _object(raw: dict, key: str, optional: bool = False) -> dict | None:
    value = raw.get(key)
    if value is None:
        return None if optional else {}
    if not isinstance(value, dict):
        raise MalformedMessage(f'"{key}" must be an object')
    return value


def _list(raw: dict, key: str) -> list:
    value = raw.get(key)
    if not isinstance(value, list):
        raise MalformedMessage(f'"{raw.get("type")}" requires a list "{key}"')
    return value


_DECODERS: dict[str, Callable[[dict], ClientMessage]] = {
    "connect": lambda r: Connect(config=_object(r, "config")),
    "disconnect": lambda r: Disconnect(),
    "audio": lambda r: Audio(data=_string(r, "data"), mime_type=r.get("mimeType")),
    "video": lambda r: Video(
        data=_string(r, "data"), mime_type=r.get("mimeType") or "image/jpeg"
    ),
    "text": lambda r: Text(text=_string(r, "text")),
    "context": lambda r: Context(
        turns=_list(r, "turns"), turn_complete=bool(r.get("turnComplete", False))
    ),
    "tool_response": lambda r: ToolResponseMsg(responses=_list(r, "responses")),
    "audio_stream_end": lambda r: AudioStreamEnd(),
    "update_config": lambda r: UpdateConfig(config=_object(r, "config")),
    "reconnect": lambda r: Reconnect(config=_object(r, "config", optional=True)),
    "get_state": lambda r: GetState(),
    "get_config": lambda r: GetConfig(),
    "get_tools": lambda r: GetTools(),
    "ping": lambda r: Ping(),
}

CLIENT_MESSAGE_TYPES = tuple(_DECODERS)


def decode_client_message(raw: Any) -> ClientMessage:
    """Decode one parsed JSON envelope. Raises ProtocolError subclasses."""
    if not isinstance(raw, dict):
        raise MalformedMessage("Message must be a JSON object")
    decoder = _DECODERS.get(raw.get("type"))
    if decoder is None:
        raise UnknownMessageType(raw.get("type"))
    return decoder(raw)


# ─── Relay → Client ──────────────────────────────────────────────


def error_message(message: str, error_type: str | None = None) -> dict[str, Any]:
    msg: dict[str, Any] = {"type": "error", "message": message}
    if error_type:
        msg["errorType"] = error_type
    return msg


def progress_message(family: str, tool_call_id: str, status: str, message: str) -> dict[str, Any]:
    return {
        "type": f"{family}_progress",
        "tool_call_id": tool_call_id,
        "status": status,
        "message": message,
    }


def encode_event(event: LiveEvent) -> dict[str, Any]:
    """Client envelope for an upstream event."""
    if isinstance(event, Connected):
        return {"type": "connected"}
    if isinstance(event, Disconnected):
        return {"type": "disconnected", "reason": event.reason}
    if isinstance(event, AudioChunk):
        return {"type": "audio", "data": event.data, "mimeType": event.mime_type}
    if isinstance(event, TextChunk):
        return {"type": "text", "text": event.text}
    if isinstance(event, ThoughtChunk):
        return {"type": "thought", "text": event.text}
    if isinstance(event, InputTranscript):
        return {"type": "input_transcription", "text": event.text}
    if isinstance(event, OutputTranscript):
        return {"type": "output_transcription", "text": event.text}
    if isinstance(event, Interrupted):
        return {"type": "interrupted"}
    if isinstance(event, TurnComplete):
        return {"type": "turn_complete"}
    if isinstance(event, GenerationComplete):
        return {"type": "generation_complete"}
    if isinstance(event, ToolCallRequest):
        return {"type": "tool_call", "calls": [c.to_dict() for c in event.calls]}
    if isinstance(event, GoingAway):
        return {"type": "go_away", "timeLeft": event.time_left}
    if isinstance(event, ResumptionUpdate):
        return {
            "type": "session_resumption_update",
            "resumable": event.resumable,
            "hasHandle": event.has_handle,
        }
    if isinstance(event, Usage):
        return {"type": "usage", **event.metadata}
    if isinstance(event, UpstreamError):
        return error_message(event.message, event.kind)
    raise TypeError(f"Not a live event: {event!r}")

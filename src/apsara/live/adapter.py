"""
Live Session Adapter — one google-genai Live connection per relay session.

Hides the upstream streaming protocol behind typed sends and a single event
stream. Upstream messages are translated into apsara.live.events variants
and queued in arrival order; the relay consumes them with events().

Sends are fire-and-forget: when the session is not connected they return
silently (audio arrives many times a second, so drops are not logged).
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosed

from apsara.core.config import config
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
    ToolCall,
    ToolCallRequest,
    TurnComplete,
    UpstreamError,
    Usage,
)
from apsara.live.session_config import AUDIO_FORMAT, SessionConfig

logger = logging.getLogger(__name__)

_MEDIA_RESOLUTION = {
    "low": types.MediaResolution.MEDIA_RESOLUTION_LOW,
    "medium": types.MediaResolution.MEDIA_RESOLUTION_MEDIUM,
    "high": types.MediaResolution.MEDIA_RESOLUTION_HIGH,
}


class Scheduling(str, Enum):
    """How the model should consume a tool result."""

    DEFAULT = "default"  # in-order, within the current turn
    INTERRUPT = "interrupt"  # preempt whatever the model is saying


@dataclass(frozen=True)
class ToolResponse:
    """One tool outcome on its way back upstream."""

    id: str
    name: str
    response: dict = field(default_factory=dict)
    scheduling: Scheduling = Scheduling.DEFAULT

    def to_function_response(self) -> types.FunctionResponse:
        kwargs: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "response": self.response,
        }
        if self.scheduling is Scheduling.INTERRUPT:
            kwargs["scheduling"] = types.FunctionResponseScheduling.INTERRUPT
        return types.FunctionResponse(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "response": self.response,
            "scheduling": self.scheduling.value,
        }


def _function_declaration(decl: dict, is_async: bool) -> types.FunctionDeclaration:
    behavior = types.Behavior.NON_BLOCKING if is_async else types.Behavior.BLOCKING
    kwargs: dict[str, Any] = {
        "name": decl["name"],
        "description": decl.get("description", ""),
        "behavior": behavior,
    }
    params = decl.get("parameters") or {}
    if params.get("properties"):
        kwargs["parameters"] = params
    return types.FunctionDeclaration(**kwargs)


def build_connect_config(
    session_config: SessionConfig, resumption_handle: str | None = None
) -> types.LiveConnectConfig:
    """Translate a SessionConfig into the upstream LiveConnectConfig.

    Optional features are omitted rather than sent as false, because the
    upstream treats presence as the enabling signal. Audio-only features are
    only attached under audio modality.
    """
    cfg = session_config
    kwargs: dict[str, Any] = {
        "response_modalities": [types.Modality(m) for m in cfg.response_modalities],
    }

    if cfg.system_instruction:
        kwargs["system_instruction"] = types.Content(
            role="user", parts=[types.Part(text=cfg.system_instruction)]
        )

    if cfg.temperature is not None:
        kwargs["temperature"] = cfg.temperature

    if cfg.context_compression:
        kwargs["context_window_compression"] = types.ContextWindowCompressionConfig(
            sliding_window=types.SlidingWindow()
        )

    if cfg.session_resumption:
        if resumption_handle:
            kwargs["session_resumption"] = types.SessionResumptionConfig(
                handle=resumption_handle
            )
        else:
            kwargs["session_resumption"] = types.SessionResumptionConfig()

    if cfg.audio_enabled:
        if cfg.voice:
            kwargs["speech_config"] = types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(
                        voice_name=cfg.voice
                    )
                )
            )
        if cfg.affective_dialog:
            kwargs["enable_affective_dialog"] = True
        if cfg.proactive_audio:
            kwargs["proactivity"] = types.ProactivityConfig(proactive_audio=True)
        if cfg.input_transcription:
            kwargs["input_audio_transcription"] = types.AudioTranscriptionConfig()
        if cfg.output_transcription:
            kwargs["output_audio_transcription"] = types.AudioTranscriptionConfig()

    if cfg.thinking_budget is not None or cfg.include_thoughts:
        thinking: dict[str, Any] = {}
        if cfg.thinking_budget is not None:
            thinking["thinking_budget"] = cfg.thinking_budget
        if cfg.include_thoughts:
            thinking["include_thoughts"] = True
        kwargs["thinking_config"] = types.ThinkingConfig(**thinking)

    if cfg.media_resolution:
        kwargs["media_resolution"] = _MEDIA_RESOLUTION[cfg.media_resolution]

    tools: list[types.Tool] = []
    if cfg.google_search:
        tools.append(types.Tool(google_search=types.GoogleSearch()))
    if cfg.function_calling and cfg.function_declarations:
        tools.append(
            types.Tool(
                function_declarations=[
                    _function_declaration(d, cfg.is_async(d["name"]))
                    for d in cfg.function_declarations
                ]
            )
        )
    if tools:
        kwargs["tools"] = tools

    return types.LiveConnectConfig(**kwargs)


def _default_client_factory(api_key: str) -> genai.Client:
    return genai.Client(
        api_key=api_key,
        http_options={"api_version": config.gemini.api_version},
    )


class LiveSessionAdapter:
    """Owns one upstream Live connection and its event stream."""

    def __init__(
        self,
        api_key: str,
        session_config: SessionConfig,
        client_factory: Callable[[str], Any] | None = None,
    ):
        self._api_key = api_key
        self.config = session_config
        self._client_factory = client_factory or _default_client_factory
        self._client: Any = None
        self._session_ctx: Any = None
        self._session: Any = None
        self._receive_task: asyncio.Task | None = None
        self._connected = False
        self.resumption_handle: str | None = None
        self._events: asyncio.Queue = asyncio.Queue()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def has_resumption_token(self) -> bool:
        return bool(self.resumption_handle)

    # ─── Event stream ────────────────────────────────────────────

    def _emit(self, event: LiveEvent) -> None:
        self._events.put_nowait(event)

    async def events(self) -> AsyncIterator[LiveEvent]:
        """Yield events in the order upstream produced them. Never ends on its own."""
        while True:
            yield await self._events.get()

    # ─── Lifecycle ───────────────────────────────────────────────

    async def connect(self) -> bool:
        """Open the upstream session. Returns False (and emits an error) on failure."""
        if self._connected:
            logger.warning("Already connected, disconnecting first")
            await self.disconnect()

        live_config = build_connect_config(self.config, self.resumption_handle)
        logger.info(
            "Connecting to Gemini Live (model=%s, voice=%s, resume=%s, tools=%s)",
            self.config.model,
            self.config.voice,
            "yes" if self.resumption_handle else "no",
            self.config.tool_names,
        )

        try:
            if self._client is None:
                self._client = self._client_factory(self._api_key)
            self._session_ctx = self._client.aio.live.connect(
                model=self.config.model, config=live_config
            )
            self._session = await self._session_ctx.__aenter__()
        except Exception as e:
            logger.error("Failed to connect to Gemini Live: %s", e)
            self._session_ctx = None
            self._session = None
            self._emit(UpstreamError(kind="connection_failed", message=str(e)))
            return False

        self._connected = True
        self._receive_task = asyncio.create_task(self._receive_loop(self._session))
        logger.info("Connected to Gemini Live")
        self._emit(Connected())
        return True

    async def disconnect(self) -> None:
        """Close the upstream session. Safe to call at any time."""
        self._connected = False

        task, self._receive_task = self._receive_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        ctx, self._session_ctx = self._session_ctx, None
        self._session = None
        if ctx is not None:
            try:
                await ctx.__aexit__(None, None, None)
            except Exception as e:
                logger.debug("Error closing Live session: %s", e)

    async def reconnect(self, new_config: SessionConfig | None = None) -> bool:
        """Disconnect then connect, resuming with the stored handle if enabled."""
        if new_config is not None:
            self.config = new_config
        await self.disconnect()
        return await self.connect()

    # ─── Receive side ────────────────────────────────────────────

    async def _receive_loop(self, session: Any) -> None:
        # receive() ends after each turn_complete, so keep re-entering it
        try:
            while True:
                async for message in session.receive():
                    self._handle_message(message)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            reason = e.rcvd.reason if e.rcvd is not None else ""
            logger.info("Gemini Live connection closed: %s", reason or "unknown")
            self._connected = False
            self._emit(Disconnected(reason=reason))
        except Exception as e:
            logger.error("Gemini Live receive error: %s", e, exc_info=True)
            self._connected = False
            self._emit(UpstreamError(kind="gemini_error", message=str(e)))
            self._emit(Disconnected(reason=str(e)))

    def _handle_message(self, message: Any) -> None:
        update = getattr(message, "session_resumption_update", None)
        if update is not None and update.resumable and update.new_handle:
            self.resumption_handle = update.new_handle
            logger.debug("Session resumption handle updated")
            self._emit(ResumptionUpdate(resumable=True, has_handle=True))

        go_away = getattr(message, "go_away", None)
        if go_away is not None:
            time_left = go_away.time_left
            logger.warning("GoAway received, time_left=%s", time_left)
            self._emit(GoingAway(time_left=None if time_left is None else str(time_left)))

        server_content = getattr(message, "server_content", None)
        if server_content is not None:
            self._handle_server_content(server_content)

        tool_call = getattr(message, "tool_call", None)
        if tool_call is not None and tool_call.function_calls:
            calls = tuple(
                ToolCall(id=fc.id or "", name=fc.name or "", args=dict(fc.args or {}))
                for fc in tool_call.function_calls
            )
            self._emit(ToolCallRequest(calls=calls))

        cancellation = getattr(message, "tool_call_cancellation", None)
        if cancellation is not None:
            logger.info("Tool calls cancelled upstream: %s", cancellation.ids)

        usage = getattr(message, "usage_metadata", None)
        if usage is not None:
            self._emit(Usage(metadata=usage.model_dump(mode="json", exclude_none=True)))

    def _handle_server_content(self, sc: Any) -> None:
        if sc.interrupted:
            self._emit(Interrupted())
            return

        if sc.model_turn is not None and sc.model_turn.parts:
            for part in sc.model_turn.parts:
                if part.inline_data is not None and part.inline_data.data:
                    self._emit(
                        AudioChunk(
                            data=base64.b64encode(part.inline_data.data).decode("ascii"),
                            mime_type=part.inline_data.mime_type
                            or "audio/pcm;rate=24000",
                        )
                    )
                if part.text:
                    if part.thought:
                        # Upstream still sends thoughts when not requested
                        if self.config.include_thoughts:
                            self._emit(ThoughtChunk(text=part.text))
                    else:
                        self._emit(TextChunk(text=part.text))

        if sc.input_transcription is not None and sc.input_transcription.text:
            self._emit(InputTranscript(text=sc.input_transcription.text))

        if sc.output_transcription is not None and sc.output_transcription.text:
            self._emit(OutputTranscript(text=sc.output_transcription.text))

        if sc.generation_complete:
            self._emit(GenerationComplete())

        if sc.turn_complete:
            self._emit(TurnComplete())

    # ─── Send side ───────────────────────────────────────────────

    async def send_audio(self, data_b64: str, mime_type: str | None = None) -> None:
        if not self._connected or self._session is None:
            return
        try:
            await self._session.send_realtime_input(
                audio=types.Blob(
                    data=base64.b64decode(data_b64),
                    mime_type=mime_type or AUDIO_FORMAT["INPUT_MIME_TYPE"],
                )
            )
        except Exception as e:
            logger.debug("Audio send failed: %s", e)

    async def send_video(self, data_b64: str, mime_type: str = "image/jpeg") -> None:
        if not self._connected or self._session is None:
            return
        try:
            await self._session.send_realtime_input(
                video=types.Blob(data=base64.b64decode(data_b64), mime_type=mime_type)
            )
        except Exception as e:
            logger.debug("Video send failed: %s", e)

    async def send_text(self, text: str) -> None:
        """Barge in with the text as realtime input, then close the user turn.

        Server-side activity detection stays on for audio, so explicit
        activity_start is not allowed here. Realtime text counts as user
        activity and interrupts any audio the model is still streaming.
        """
        if not self._connected or self._session is None:
            logger.warning("Cannot send text, not connected")
            return
        try:
            await self._session.send_realtime_input(text=text)
            await self._session.send_client_content(turn_complete=True)
        except Exception as e:
            logger.warning("Text send failed: %s", e)

    async def send_context(self, turns: list[dict], turn_complete: bool = False) -> None:
        """Inject prior conversational turns (session restore)."""
        if not self._connected or self._session is None:
            logger.warning("Cannot send context, not connected")
            return
        try:
            await self._session.send_client_content(
                turns=turns, turn_complete=turn_complete
            )
        except Exception as e:
            logger.warning("Context send failed: %s", e)

    async def send_audio_stream_end(self) -> None:
        if not self._connected or self._session is None:
            return
        try:
            await self._session.send_realtime_input(audio_stream_end=True)
        except Exception as e:
            logger.debug("Audio stream end failed: %s", e)

    async def send_tool_responses(self, responses: list[ToolResponse]) -> None:
        if not self._connected or self._session is None:
            logger.warning(
                "Cannot send tool responses %s, not connected",
                [r.name for r in responses],
            )
            return
        try:
            await self._session.send_tool_response(
                function_responses=[r.to_function_response() for r in responses]
            )
        except Exception as e:
            logger.error("Tool response send failed: %s", e)

    async def send_raw_tool_responses(self, responses: list[dict]) -> None:
        """Forward client-computed tool results verbatim."""
        if not self._connected or self._session is None:
            logger.warning("Cannot send tool responses, not connected")
            return
        try:
            await self._session.send_tool_response(
                function_responses=[types.FunctionResponse(**r) for r in responses]
            )
        except Exception as e:
            logger.error("Client tool response send failed: %s", e)

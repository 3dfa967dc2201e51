"""
Relay Session — bridges one client WebSocket to one Gemini Live session.

The session decodes client messages, owns the LiveSessionAdapter, pumps its
events back to the client, runs server-side tools, and handles go-away and
dropped-connection reconnects. State lives in a RelayStateMachine; the
RECONNECTING state is the reconnect guard.

Tool calls are split three ways:
  - sync + instant:       run now, one batch, scheduling DEFAULT
  - sync + long-running:  each in its own task, scheduling DEFAULT
  - async (NON_BLOCKING): one gathered task, scheduling INTERRUPT
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from apsara.core.config import RelayConfig, config
from apsara.core.errors import ProtocolError
from apsara.live.adapter import LiveSessionAdapter, Scheduling, ToolResponse
from apsara.live.events import (
    Connected,
    Disconnected,
    GoingAway,
    LiveEvent,
    ToolCall,
    ToolCallRequest,
    TurnComplete,
    UpstreamError,
)
from apsara.live.session_config import SessionConfig, config_options
from apsara.relay.protocol import (
    Audio,
    AudioStreamEnd,
    ClientMessage,
    Connect,
    Context,
    Disconnect,
    GetConfig,
    GetState,
    GetTools,
    Ping,
    Reconnect,
    Text,
    ToolResponseMsg,
    UpdateConfig,
    Video,
    decode_client_message,
    encode_event,
    error_message,
    progress_message,
)
from apsara.relay.state import RelayState, RelayStateMachine
from apsara.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

SendFn = Callable[[dict], Awaitable[None]]
AdapterFactory = Callable[[SessionConfig], LiveSessionAdapter]

CLIENT_REQUESTED = "client_requested"


class RelaySession:
    def __init__(
        self,
        executor: ToolExecutor,
        send: SendFn,
        adapter_factory: AdapterFactory,
        relay_config: RelayConfig | None = None,
        session_id: str = "",
    ):
        self.executor = executor
        self._send = send
        self._adapter_factory = adapter_factory
        self.settings = relay_config or config.relay
        self.session_id = session_id

        self.machine = RelayStateMachine(session_id)
        self.adapter: LiveSessionAdapter | None = None
        self.session_config = SessionConfig.build({}, executor.declarations())
        self.reconnect_attempts = 0

        self._pump_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._tool_tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> RelayState:
        return self.machine.state

    # ─── Client → Relay ──────────────────────────────────────────

    async def handle(self, raw: Any) -> None:
        """Decode and dispatch one parsed client message."""
        try:
            msg = decode_client_message(raw)
        except ProtocolError as e:
            logger.warning("[%s] %s", self.session_id, e)
            await self._send(error_message(str(e)))
            return
        await self.dispatch(msg)

    async def dispatch(self, msg: ClientMessage) -> None:
        adapter = self.adapter

        if isinstance(msg, Connect):
            await self._connect(msg.config)

        elif isinstance(msg, Disconnect):
            await self._teardown()
            await self._send({"type": "disconnected", "reason": CLIENT_REQUESTED})

        elif isinstance(msg, Audio):
            if adapter is not None:
                await adapter.send_audio(msg.data, msg.mime_type)

        elif isinstance(msg, Video):
            if adapter is not None:
                await adapter.send_video(msg.data, msg.mime_type)

        elif isinstance(msg, Text):
            if adapter is None:
                await self._not_connected()
                return
            await adapter.send_text(msg.text)

        elif isinstance(msg, Context):
            if adapter is None:
                await self._not_connected()
                return
            await adapter.send_context(msg.turns, msg.turn_complete)

        elif isinstance(msg, ToolResponseMsg):
            if adapter is None:
                await self._not_connected()
                return
            await adapter.send_raw_tool_responses(msg.responses)

        elif isinstance(msg, AudioStreamEnd):
            if adapter is not None:
                await adapter.send_audio_stream_end()

        elif isinstance(msg, UpdateConfig):
            try:
                self.session_config = self._merge_config(msg.config)
            except ValueError as e:
                await self._send(error_message(f"Invalid config: {e}"))
                return
            await self._send({**self.get_state(), "configUpdated": True})

        elif isinstance(msg, Reconnect):
            await self._explicit_reconnect(msg.config)

        elif isinstance(msg, GetState):
            await self._send(self.get_state())

        elif isinstance(msg, GetConfig):
            await self._send({"type": "config_options", **config_options()})

        elif isinstance(msg, GetTools):
            await self._send({"type": "tools", "tools": self.executor.describe()})

        elif isinstance(msg, Ping):
            await self._send({"type": "pong"})

        else:
            raise TypeError(f"Unhandled client message: {msg!r}")

    def get_state(self) -> dict[str, Any]:
        adapter = self.adapter
        return {
            "type": "state",
            "connected": bool(adapter and adapter.connected),
            "state": self.machine.state.value,
            "hasResumptionHandle": bool(adapter and adapter.has_resumption_token),
            **self.session_config.to_state(),
        }

    async def _not_connected(self) -> None:
        await self._send(error_message('Not connected — send "connect" first'))

    def _merge_config(self, overrides: dict) -> SessionConfig:
        declarations = (
            self.executor.declarations() if "enabledTools" in overrides else None
        )
        return self.session_config.merged(overrides, declarations=declarations)

    # ─── Lifecycle ───────────────────────────────────────────────

    async def _connect(self, overrides: dict) -> None:
        # One adapter per session, ever
        if self.adapter is not None or self.machine.state is not RelayState.IDLE:
            await self._teardown()

        try:
            session_config = SessionConfig.build(overrides, self.executor.declarations())
        except ValueError as e:
            await self._send(error_message(f"Invalid config: {e}"))
            return

        self.session_config = session_config
        self.reconnect_attempts = 0
        self.machine.to(RelayState.CONNECTING)

        adapter = self._adapter_factory(session_config)
        self.adapter = adapter
        self._pump_task = asyncio.create_task(self._pump(adapter))

        logger.info(
            "[%s] Connecting (voice=%s, tools=%s)",
            self.session_id,
            session_config.voice,
            session_config.tool_names,
        )
        if await adapter.connect():
            self.machine.to(RelayState.ACTIVE)
            return

        await self._send(
            error_message("Failed to connect to Gemini Live API", "connection_failed")
        )
        await self._teardown()

    async def _teardown(self, final_state: RelayState = RelayState.IDLE) -> None:
        """Drop the adapter and its background tasks. Never echoes a disconnect."""
        current = asyncio.current_task()
        for task in (self._pump_task, self._reconnect_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._pump_task = None
        self._reconnect_task = None

        adapter, self.adapter = self.adapter, None
        if adapter is not None:
            await adapter.disconnect()

        if self.machine.state is not final_state:
            self.machine.to(final_state)

    async def close(self) -> None:
        """Client socket is gone. In-flight tool tasks are left to finish."""
        await self._teardown()
        logger.info(
            "[%s] Relay session closed (%d tool tasks in flight)",
            self.session_id,
            len(self._tool_tasks),
        )

    # ─── Reconnects ──────────────────────────────────────────────

    async def _explicit_reconnect(self, overrides: dict | None) -> None:
        adapter = self.adapter
        if adapter is None:
            await self._send(error_message("No session to reconnect"))
            return
        if self.machine.reconnecting:
            await self._send(error_message("Reconnect already in progress"))
            return

        if overrides:
            try:
                self.session_config = self._merge_config(overrides)
            except ValueError as e:
                await self._send(error_message(f"Invalid config: {e}"))
                return

        self.machine.to(RelayState.RECONNECTING)
        try:
            if await adapter.reconnect(self.session_config):
                self.machine.to(RelayState.ACTIVE)
                return
            await self._send(error_message("Reconnect failed", "reconnect_failed"))
            await self._teardown()
        finally:
            if self.machine.reconnecting:
                self.machine.to(RelayState.IDLE)

    def _schedule_reconnect(self, delay: float, reason: str) -> None:
        """Enter the guard and reconnect after ``delay`` seconds."""
        self.machine.to(RelayState.RECONNECTING)
        logger.info(
            "[%s] Reconnecting in %.1fs (%s)", self.session_id, delay, reason
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            adapter = self.adapter
            if adapter is None:
                logger.info("[%s] Adapter gone, reconnect aborted", self.session_id)
                return

            if await adapter.reconnect(self.session_config):
                self.machine.to(RelayState.ACTIVE)
                logger.info("[%s] Reconnected", self.session_id)
                return

            await self._send(error_message("Auto-reconnect failed", "reconnect_failed"))
            await self._teardown()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("[%s] Reconnect error: %s", self.session_id, e, exc_info=True)
            await self._send(error_message("Auto-reconnect failed", "reconnect_failed"))
            await self._teardown()
        finally:
            if self.machine.reconnecting:
                self.machine.to(RelayState.IDLE)
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    async def _on_unexpected_disconnect(self, adapter: LiveSessionAdapter, event: Disconnected) -> None:
        await self._send(encode_event(event))

        if not (adapter.has_resumption_token and self.session_config.session_resumption):
            logger.info("[%s] Upstream closed, no resumption available", self.session_id)
            await self._teardown()
            return

        if self.reconnect_attempts >= self.settings.max_reconnect_attempts:
            logger.error(
                "[%s] Giving up after %d reconnect attempts",
                self.session_id,
                self.reconnect_attempts,
            )
            await self._send(error_message("Auto-reconnect failed", "reconnect_failed"))
            await self._teardown(final_state=RelayState.ERROR)
            return

        self.reconnect_attempts += 1
        delay = self.settings.resume_reconnect_delay * 2 ** (self.reconnect_attempts - 1)
        self._schedule_reconnect(delay, f"attempt {self.reconnect_attempts}")

    # ─── Relay → Client ──────────────────────────────────────────

    async def _pump(self, adapter: LiveSessionAdapter) -> None:
        async for event in adapter.events():
            try:
                await self._on_event(adapter, event)
            except Exception as e:
                logger.error(
                    "[%s] Error handling %s: %s",
                    self.session_id,
                    type(event).__name__,
                    e,
                    exc_info=True,
                )
            if self.adapter is not adapter:
                # torn down from inside this pump
                return

    async def _on_event(self, adapter: LiveSessionAdapter, event: LiveEvent) -> None:
        if isinstance(event, Disconnected):
            if self.machine.reconnecting:
                logger.debug("[%s] Disconnect during reconnect swallowed", self.session_id)
            elif self.machine.state is RelayState.ACTIVE:
                await self._on_unexpected_disconnect(adapter, event)
            else:
                await self._send(encode_event(event))

        elif isinstance(event, GoingAway):
            await self._send(encode_event(event))
            if self.machine.state is RelayState.ACTIVE:
                self._schedule_reconnect(self.settings.go_away_reconnect_delay, "go_away")

        elif isinstance(event, ToolCallRequest):
            await self._on_tool_calls(event.calls)

        elif isinstance(event, TurnComplete):
            self.reconnect_attempts = 0
            await self._send(encode_event(event))

        elif isinstance(event, Connected):
            logger.info("[%s] Upstream connected", self.session_id)
            await self._send(encode_event(event))

        elif isinstance(event, UpstreamError) and event.kind == "connection_failed":
            # connect and reconnect report their own failure
            logger.debug("[%s] Upstream connect failed: %s", self.session_id, event.message)

        else:
            await self._send(encode_event(event))

    # ─── Tools ───────────────────────────────────────────────────

    async def _on_tool_calls(self, calls: tuple[ToolCall, ...]) -> None:
        await self._send({"type": "tool_call", "calls": [c.to_dict() for c in calls]})

        cfg = self.session_config
        async_calls = [c for c in calls if cfg.is_async(c.name)]
        sync_calls = [c for c in calls if not cfg.is_async(c.name)]
        instant = [c for c in sync_calls if not self.executor.is_long_running(c.name)]
        long_running = [c for c in sync_calls if self.executor.is_long_running(c.name)]

        logger.info(
            "[%s] Tool calls: instant=%s long=%s async=%s",
            self.session_id,
            [c.name for c in instant],
            [c.name for c in long_running],
            [c.name for c in async_calls],
        )

        for call in long_running:
            self._spawn(self._run_long_sync(call))
        if async_calls:
            self._spawn(self._run_async_group(async_calls))

        if instant:
            results = [await self._run_tool(c, Scheduling.DEFAULT) for c in instant]
            await self._deliver(results, mode="sync")

    async def _run_tool(self, call: ToolCall, scheduling: Scheduling) -> ToolResponse:
        try:
            payload = await self.executor.execute(
                call.name, call.args, self._progress_for(call), call_id=call.id
            )
        except Exception as e:
            logger.error("[%s] Tool %s crashed: %s", self.session_id, call.name, e, exc_info=True)
            payload = {"success": False, "error": str(e)}
        return ToolResponse(id=call.id, name=call.name, response=payload, scheduling=scheduling)

    async def _run_long_sync(self, call: ToolCall) -> None:
        result = await self._run_tool(call, Scheduling.DEFAULT)
        await self._deliver([result], mode="sync")

    async def _run_async_group(self, calls: list[ToolCall]) -> None:
        results = await asyncio.gather(
            *(self._run_tool(c, Scheduling.INTERRUPT) for c in calls)
        )
        await self._deliver(list(results), mode="async")

    async def _deliver(self, results: list[ToolResponse], mode: str) -> None:
        adapter = self.adapter
        if adapter is not None:
            await adapter.send_tool_responses(results)
        else:
            logger.warning(
                "[%s] Adapter gone, dropping tool results %s",
                self.session_id,
                [r.name for r in results],
            )
        await self._send(
            {"type": "tool_results", "results": [r.to_dict() for r in results], "mode": mode}
        )

    def _progress_for(self, call: ToolCall):
        family = self.executor.family(call.name)

        async def on_progress(status: str, message: str) -> None:
            await self._send(progress_message(family, call.id, status, message))

        return on_progress

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(self._guarded(coro))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)

    async def _guarded(self, coro: Awaitable[None]) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("[%s] Tool task failed: %s", self.session_id, e, exc_info=True)

    async def wait_for_tools(self) -> None:
        """Wait for in-flight tool tasks (tests and graceful shutdown)."""
        while self._tool_tasks:
            await asyncio.gather(*list(self._tool_tasks), return_exceptions=True)

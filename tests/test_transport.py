"""Tests for WebSocketTransport — framing, limits, idle timeout, cleanup."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocketDisconnect

from apsara.core.config import ServerConfig
from apsara.relay.session import RelaySession
from apsara.tools.executor import ToolExecutor
from apsara.tools.registry import ToolRegistry
from apsara.transport.websocket import WebSocketTransport

from fakes import FakeAdapter


class FakeWebSocket:
    """Enough of starlette's WebSocket for the transport."""

    def __init__(self, frames=None, hang=False):
        self.frames = list(frames or [])
        self.hang = hang
        self.sent: list[dict] = []
        self.client_state = SimpleNamespace(name="CONNECTED")
        self.accept = AsyncMock()
        self.close = AsyncMock()

    async def receive_text(self):
        if self.frames:
            return self.frames.pop(0)
        if self.hang:
            await asyncio.Event().wait()
        raise WebSocketDisconnect(code=1000)

    async def send_text(self, data):
        self.sent.append(json.loads(data))


class RecordingSession:
    instances: list["RecordingSession"] = []

    def __init__(self, send, session_id):
        self.send = send
        self.session_id = session_id
        self.handled = []
        self.closed = False
        RecordingSession.instances.append(self)

    async def handle(self, msg):
        self.handled.append(msg)
        await self.send({"type": "ack", "n": len(self.handled)})

    async def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_sessions():
    RecordingSession.instances = []


def _transport(**settings):
    return WebSocketTransport("live", ServerConfig(**settings))


class TestHandleConnection:
    @pytest.mark.asyncio
    async def test_frames_are_dispatched_in_order(self):
        ws = FakeWebSocket(['{"type": "ping"}', '{"type": "get_state"}'])
        transport = _transport()
        await transport.handle_connection(ws, RecordingSession)

        ws.accept.assert_awaited_once()
        [session] = RecordingSession.instances
        assert session.handled == [{"type": "ping"}, {"type": "get_state"}]
        assert ws.sent == [{"type": "ack", "n": 1}, {"type": "ack", "n": 2}]
        assert len(session.session_id) == 8

    @pytest.mark.asyncio
    async def test_cleanup_on_disconnect(self):
        ws = FakeWebSocket([])
        transport = _transport()
        await transport.handle_connection(ws, RecordingSession)

        assert RecordingSession.instances[0].closed is True
        assert transport.get_status() == {"transport": "live", "connections": 0}

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        ws = FakeWebSocket(["{nope", '{"type": "ping"}'])
        await _transport().handle_connection(ws, RecordingSession)

        assert ws.sent[0] == {"type": "error", "message": "Invalid JSON"}
        assert RecordingSession.instances[0].handled == [{"type": "ping"}]

    @pytest.mark.asyncio
    async def test_oversize_frame_is_dropped(self):
        big = json.dumps({"type": "audio", "data": "A" * 200})
        ws = FakeWebSocket([big, '{"type": "ping"}'])
        await _transport(max_message_bytes=100).handle_connection(ws, RecordingSession)

        assert ws.sent[0] == {"type": "error", "message": "Message too large"}
        assert RecordingSession.instances[0].handled == [{"type": "ping"}]

    @pytest.mark.asyncio
    async def test_idle_timeout_closes(self):
        ws = FakeWebSocket(hang=True)
        await _transport(idle_timeout=0.01).handle_connection(ws, RecordingSession)

        ws.close.assert_awaited_once_with(code=1000, reason="idle timeout")
        assert RecordingSession.instances[0].closed is True

    @pytest.mark.asyncio
    async def test_session_errors_still_clean_up(self):
        class Exploding(RecordingSession):
            async def handle(self, msg):
                raise RuntimeError("bad session")

        ws = FakeWebSocket(['{"type": "ping"}'])
        transport = _transport()
        await transport.handle_connection(ws, Exploding)

        assert ws.sent == [{"type": "error", "message": "Internal error handling message"}]
        assert RecordingSession.instances[0].closed is True
        assert transport.get_status()["connections"] == 0

    @pytest.mark.asyncio
    async def test_handler_error_keeps_connection_open(self):
        class FailsOnce(RecordingSession):
            async def handle(self, msg):
                if msg["type"] == "boom":
                    raise TypeError("bad frame")
                await super().handle(msg)

        ws = FakeWebSocket(['{"type": "boom"}', '{"type": "ping"}'])
        await _transport().handle_connection(ws, FailsOnce)

        assert ws.sent[0]["type"] == "error"
        assert ws.sent[1] == {"type": "ack", "n": 1}
        assert RecordingSession.instances[0].handled == [{"type": "ping"}]
        ws.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_badly_typed_connect_config_gets_an_error_reply(self):
        def relay(send, session_id):
            return RelaySession(
                ToolExecutor(ToolRegistry()), send, FakeAdapter, session_id=session_id
            )

        frames = [
            json.dumps({"type": "connect", "config": {"responseModalities": 5}}),
            json.dumps({"type": "ping"}),
        ]
        ws = FakeWebSocket(frames)
        await _transport().handle_connection(ws, relay)

        assert ws.sent[0]["type"] == "error"
        assert ws.sent[0]["message"].startswith("Invalid config: ")
        assert ws.sent[1]["type"] == "pong"


class TestSend:
    @pytest.mark.asyncio
    async def test_skips_closed_socket(self):
        ws = FakeWebSocket()
        ws.client_state = SimpleNamespace(name="DISCONNECTED")
        await _transport()._send_ws(ws, {"type": "pong"})
        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_send_timeout_is_swallowed(self):
        ws = FakeWebSocket()

        async def stuck(data):
            await asyncio.Event().wait()

        ws.send_text = stuck
        await _transport(ws_send_timeout=0.01)._send_ws(ws, {"type": "pong"})

    @pytest.mark.asyncio
    async def test_stop_closes_connections(self):
        transport = _transport()
        ws = FakeWebSocket()
        transport._connections["abc"] = ws
        await transport.stop()
        ws.close.assert_awaited_once()
        assert transport.get_status()["connections"] == 0

"""
WebSocket transport shared by /live and /interactions.

Owns the socket, never the protocol: each accepted connection gets a short
session id and a session object built by the route's factory. Text frames
are size-checked and JSON-decoded here, then handed to ``session.handle``
one at a time; a frame the session fails on gets an error reply and the
loop keeps reading. Outbound dicts come back through a ``send`` callable that
times out on stuck sockets and goes quiet once the socket is closed. A
connection with no inbound frame for ``idle_timeout`` seconds is closed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Protocol

from fastapi import WebSocket, WebSocketDisconnect

from apsara.core.config import ServerConfig, config

logger = logging.getLogger(__name__)

SendFn = Callable[[dict], Awaitable[None]]


class Session(Protocol):
    async def handle(self, msg: Any) -> None: ...

    async def close(self) -> None: ...


SessionFactory = Callable[[SendFn, str], Session]


class WebSocketTransport:
    """One instance per route; tracks its live connections."""

    def __init__(self, name: str, settings: ServerConfig | None = None):
        self.name = name
        self.settings = settings or config.server
        # session_id → WebSocket
        self._connections: dict[str, WebSocket] = {}

    async def stop(self) -> None:
        """Close all connections."""
        for session_id, ws in list(self._connections.items()):
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Close error for {session_id}: {e}")
        self._connections.clear()
        logger.info(f"{self.name} transport stopped")

    def get_status(self) -> dict:
        return {"transport": self.name, "connections": len(self._connections)}

    # ─── Connection loop ─────────────────────────────────────────

    async def handle_connection(self, websocket: WebSocket, session_factory: SessionFactory) -> None:
        """
        Entry point for a FastAPI WebSocket route.

        1. Accepts the connection
        2. Creates the per-connection session
        3. Runs the message loop
        4. Cleans up on disconnect
        """
        await websocket.accept()

        session_id = uuid.uuid4().hex[:8]
        self._connections[session_id] = websocket

        async def send(msg: dict) -> None:
            await self._send_ws(websocket, msg)

        session = session_factory(send, session_id)
        logger.info(f"{self.name} connected: session={session_id}")

        try:
            await self._message_loop(websocket, session, session_id)
        except WebSocketDisconnect:
            logger.info(f"{self.name} disconnected: session={session_id}")
        except Exception as e:
            logger.error(f"{self.name} error: {e}", exc_info=True)
        finally:
            try:
                await session.close()
            except Exception as e:
                logger.error(f"Session close error ({session_id}): {e}", exc_info=True)
            self._connections.pop(session_id, None)
            logger.info(f"{self.name} cleaned up: session={session_id}")

    async def _message_loop(self, ws: WebSocket, session: Session, session_id: str) -> None:
        """Read frames and dispatch them, one at a time, to the session."""
        while True:
            try:
                raw = await asyncio.wait_for(
                    ws.receive_text(), timeout=self.settings.idle_timeout
                )
            except asyncio.TimeoutError:
                logger.info(f"{self.name} idle timeout: session={session_id}")
                await ws.close(code=1000, reason="idle timeout")
                return

            if len(raw.encode("utf-8")) > self.settings.max_message_bytes:
                logger.warning(f"Oversize frame dropped ({len(raw)} chars)")
                await self._send_ws(ws, {"type": "error", "message": "Message too large"})
                continue

            logger.debug(f"← WS IN ({session_id}): {raw[:200]}")

            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"{self.name} ({session_id}): frame is not JSON")
                await self._send_ws(ws, {"type": "error", "message": "Invalid JSON"})
                continue

            try:
                await session.handle(msg)
            except Exception as e:
                logger.error(f"{self.name} ({session_id}): handler failed: {e}", exc_info=True)
                await self._send_ws(ws, {"type": "error", "message": "Internal error handling message"})

    # ─── Outbound ────────────────────────────────────────────────

    async def _send_ws(self, ws: WebSocket, msg: dict) -> None:
        """Send one dict as JSON; drops it if the socket is closed or stuck."""
        try:
            if ws.client_state.name != "CONNECTED":
                return

            json_str = json.dumps(msg)
            logger.debug(f"→ WS OUT: {json_str[:200]}")

            await asyncio.wait_for(
                ws.send_text(json_str),
                timeout=self.settings.ws_send_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("WebSocket send timeout")
        except Exception as e:
            logger.debug(f"WebSocket send skipped: {e}")

    def __repr__(self) -> str:
        return f"<WebSocketTransport(name={self.name}, connections={len(self._connections)})>"

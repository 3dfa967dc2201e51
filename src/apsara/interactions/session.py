"""
Interactions WebSocket session — per-connection text chat state.

Client → Server:
    {type: "chat", input, config?, continuePrevious?}
    {type: "continue", input, config?}
    {type: "set_config", config}
    {type: "get_history"}
    {type: "reset"}
    {type: "ping"}

Server → Client:
    {type: "response", ...interaction}
    {type: "config_updated", config}
    {type: "history", interactions, lastInteractionId}
    {type: "reset_done"}
    {type: "error", message}
    {type: "pong"}
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from apsara.interactions.service import InteractionsService

logger = logging.getLogger(__name__)

SendFn = Callable[[dict], Awaitable[None]]


class InteractionsSession:
    def __init__(self, service: InteractionsService, send: SendFn, session_id: str = ""):
        self.service = service
        self._send = send
        self.session_id = session_id
        self.config: dict[str, Any] = service.default_session_config()
        self.last_interaction_id: str | None = None
        self.history: list[str] = []

    async def handle(self, msg: dict) -> None:
        msg_type = msg.get("type")

        if msg_type == "chat":
            previous = self.last_interaction_id if msg.get("continuePrevious") else None
            await self._chat(msg, previous)

        elif msg_type == "continue":
            if not self.last_interaction_id:
                await self._send(
                    {
                        "type": "error",
                        "message": 'No previous interaction to continue from. Send a "chat" message first.',
                    }
                )
                return
            await self._chat(msg, self.last_interaction_id)

        elif msg_type == "set_config":
            self.config = self._merge_config(msg.get("config") or {})
            await self._send({"type": "config_updated", "config": self.config})

        elif msg_type == "get_history":
            await self._send(
                {
                    "type": "history",
                    "interactions": list(self.history),
                    "lastInteractionId": self.last_interaction_id,
                }
            )

        elif msg_type == "reset":
            self.last_interaction_id = None
            self.history = []
            await self._send({"type": "reset_done"})

        elif msg_type == "ping":
            await self._send({"type": "pong"})

        else:
            await self._send({"type": "error", "message": f"Unknown message type: {msg_type}"})

    async def _chat(self, msg: dict, previous_id: str | None) -> None:
        if msg.get("input") is None:
            await self._send({"type": "error", "message": "input is required"})
            return

        cfg = {**self.config, **(msg.get("config") or {})}
        try:
            result = await self.service.create_interaction(
                msg["input"],
                model=cfg.get("model"),
                previous_interaction_id=previous_id,
                system_instruction=cfg.get("system_instruction"),
                generation_config=cfg.get("generation_config"),
                tools=cfg.get("tools"),
                response_format=msg.get("response_format"),
            )
        except Exception as e:
            logger.error("[%s] Chat error: %s", self.session_id, e, exc_info=True)
            await self._send({"type": "error", "message": str(e)})
            return

        if result.get("id"):
            self.last_interaction_id = result["id"]
            self.history.append(result["id"])
        await self._send({"type": "response", **result})

    def _merge_config(self, update: dict[str, Any]) -> dict[str, Any]:
        return {
            **self.config,
            **update,
            "generation_config": {
                **self.config.get("generation_config", {}),
                **(update.get("generation_config") or {}),
            },
            "tools": {**self.config.get("tools", {}), **(update.get("tools") or {})},
        }

    async def close(self) -> None:
        logger.info(
            "[%s] Interactions session closed (%d interactions)",
            self.session_id,
            len(self.history),
        )

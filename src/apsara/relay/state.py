"""
Relay state machine.

    IDLE ──connect──▶ CONNECTING ──ok──▶ ACTIVE ──go_away / drop──▶ RECONNECTING
     ▲                    │                 │                          │
     └──────failed────────┘◀────disconnect──┘◀──────────ok: ACTIVE─────┘
                                                  failed: IDLE, exhausted: ERROR

RECONNECTING doubles as the reconnect guard: upstream disconnect echoes are
swallowed while in it and a second reconnect is never scheduled from it.
Every path into RECONNECTING leaves it in a ``finally``.
"""

from __future__ import annotations

import logging
from enum import Enum

from apsara.core.errors import IllegalTransition

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    IDLE = "idle"  # no upstream adapter
    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    ERROR = "error"  # reconnects exhausted; client must send connect


# target → states it may be entered from
_LEGAL_PREDECESSORS: dict[RelayState, frozenset[RelayState]] = {
    RelayState.IDLE: frozenset(
        {RelayState.CONNECTING, RelayState.ACTIVE, RelayState.RECONNECTING, RelayState.ERROR}
    ),
    RelayState.CONNECTING: frozenset({RelayState.IDLE, RelayState.ERROR}),
    RelayState.ACTIVE: frozenset({RelayState.CONNECTING, RelayState.RECONNECTING}),
    RelayState.RECONNECTING: frozenset({RelayState.ACTIVE}),
    RelayState.ERROR: frozenset(
        {RelayState.CONNECTING, RelayState.ACTIVE, RelayState.RECONNECTING}
    ),
}


class RelayStateMachine:
    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self._state = RelayState.IDLE

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def reconnecting(self) -> bool:
        return self._state is RelayState.RECONNECTING

    def can_enter(self, target: RelayState) -> bool:
        return self._state in _LEGAL_PREDECESSORS[target]

    def to(self, target: RelayState) -> None:
        """Move to ``target``. Raises IllegalTransition from a disallowed state."""
        if not self.can_enter(target):
            raise IllegalTransition(self._state.value, target.value)
        logger.debug(
            "[%s] %s -> %s",
            self.session_id,
            self._state.value,
            target.value,
            extra={"session_id": self.session_id, "state": target.value},
        )
        self._state = target

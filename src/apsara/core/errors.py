"""Exception types shared across the relay, tools and HTTP layers."""

from __future__ import annotations


class ApsaraError(Exception):
    """Base class for all Apsara errors."""


class ProtocolError(ApsaraError):
    """A client envelope could not be decoded."""


class UnknownMessageType(ProtocolError):
    def __init__(self, msg_type: object):
        self.msg_type = msg_type
        super().__init__(f"Unknown message type: {msg_type}")


class MalformedMessage(ProtocolError):
    pass


class IllegalTransition(ApsaraError):
    """A relay state change was attempted from a state that does not allow it."""

    def __init__(self, current: object, target: object):
        self.current = current
        self.target = target
        super().__init__(f"Illegal relay transition: {current} -> {target}")


class ArtifactNotFound(ApsaraError):
    """A canvas app or code session id does not exist in its store."""

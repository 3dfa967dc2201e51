"""
Interpreter Store — in-memory code sessions, keyed by uuid.

Status changes are appended to the session's execution_log as they happen.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CodeStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class CodeSession:
    """One prompt's worth of generated code, its output and any images."""

    id: str
    title: str = "Untitled Code"
    prompt: str = ""
    original_prompt: str = ""
    code: str = ""
    output: str | None = None
    images: list[dict] = field(default_factory=list)  # {data: base64, mime_type}
    previous_code: str | None = None
    previous_output: str | None = None
    edit_instructions: str | None = None
    edit_count: int = 0
    status: str = CodeStatus.RUNNING.value
    error: str | None = None
    execution_log: list[dict] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "prompt": self.prompt,
            "status": self.status,
            "has_images": bool(self.images),
            "image_count": len(self.images),
            "edit_count": self.edit_count,
            "created_at": self.created_at,
        }

    def detail(self) -> dict[str, Any]:
        return asdict(self)


class InterpreterStore:
    def __init__(self):
        self._sessions: dict[str, CodeSession] = {}

    def create(self, title: str = "", prompt: str = "", code: str = "") -> CodeSession:
        now = _now()
        session = CodeSession(
            id=str(uuid.uuid4()),
            title=title or "Untitled Code",
            prompt=prompt,
            original_prompt=prompt,
            code=code,
            execution_log=[
                {"step": "created", "timestamp": now, "message": "Code session created"}
            ],
            created_at=now,
            updated_at=now,
        )
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> CodeSession | None:
        return self._sessions.get(session_id)

    def list_all(self) -> list[CodeSession]:
        """Newest first."""
        return sorted(
            self._sessions.values(), key=lambda s: s.created_at, reverse=True
        )

    def update(self, session_id: str, **changes: Any) -> CodeSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        now = _now()
        status = changes.get("status")
        if status and status != session.status:
            session.execution_log.append(
                {
                    "step": status,
                    "timestamp": now,
                    "message": changes.get("error") or f"Status changed to {status}",
                }
            )
        for key, value in changes.items():
            setattr(session, key, value)
        session.updated_at = now
        return session

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def summaries(self) -> list[dict[str, Any]]:
        return [s.summary() for s in self.list_all()]

    def detail(self, session_id: str) -> dict[str, Any] | None:
        session = self._sessions.get(session_id)
        return session.detail() if session else None

    def __len__(self) -> int:
        return len(self._sessions)

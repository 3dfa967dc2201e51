"""
Canvas Store — in-memory canvas apps, keyed by uuid.

One instance per process, built in apsara.main and handed to the canvas
service, its tools and the REST router.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from apsara.core.errors import ArtifactNotFound


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CanvasStatus(str, Enum):
    GENERATING = "generating"
    TESTING = "testing"
    FIXING = "fixing"
    READY = "ready"
    ERROR = "error"


@dataclass
class CanvasApp:
    """A generated single-file HTML app and its generation history."""

    id: str
    title: str = "Untitled App"
    description: str = ""
    prompt: str = ""
    original_prompt: str = ""
    html: str | None = None
    status: str = CanvasStatus.GENERATING.value
    error: str | None = None
    attempts: int = 0
    interaction_id: str | None = None
    config_used: dict[str, Any] = field(default_factory=dict)
    edit_history: list[dict] = field(default_factory=list)
    versions: list[dict] = field(default_factory=list)
    generation_log: list[dict] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def log(self, step: str, message: str) -> None:
        self.generation_log.append(
            {"step": step, "timestamp": _now(), "message": message}
        )

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def detail(self) -> dict[str, Any]:
        data = asdict(self)
        data["html_length"] = len(self.html) if self.html else 0
        data["edit_count"] = len(self.edit_history)
        return data


class CanvasStore:
    def __init__(self):
        self._apps: dict[str, CanvasApp] = {}

    def create(self, title: str = "", description: str = "", prompt: str = "") -> CanvasApp:
        app = CanvasApp(
            id=str(uuid.uuid4()),
            title=title or "Untitled App",
            description=description,
            prompt=prompt,
            original_prompt=prompt,
        )
        app.log("created", "Canvas app created")
        self._apps[app.id] = app
        return app

    def get(self, app_id: str) -> CanvasApp | None:
        return self._apps.get(app_id)

    def require(self, app_id: str) -> CanvasApp:
        app = self._apps.get(app_id)
        if app is None:
            raise ArtifactNotFound(f"Canvas not found: {app_id}")
        return app

    def list_all(self) -> list[CanvasApp]:
        """Newest first."""
        return sorted(self._apps.values(), key=lambda a: a.created_at, reverse=True)

    def update(self, app_id: str, **changes: Any) -> CanvasApp | None:
        app = self._apps.get(app_id)
        if app is None:
            return None
        status = changes.get("status")
        if status and status != app.status:
            app.log(status, changes.get("error") or f"Status changed to {status}")
        for key, value in changes.items():
            setattr(app, key, value)
        app.updated_at = _now()
        return app

    def delete(self, app_id: str) -> bool:
        return self._apps.pop(app_id, None) is not None

    def summaries(self) -> list[dict[str, Any]]:
        return [app.summary() for app in self.list_all()]

    def detail(self, app_id: str) -> dict[str, Any] | None:
        app = self._apps.get(app_id)
        return app.detail() if app else None

    def __len__(self) -> int:
        return len(self._apps)

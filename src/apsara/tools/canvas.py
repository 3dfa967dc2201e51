"""Canvas tools — build and edit web apps from voice requests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from apsara.canvas.store import CanvasApp, CanvasStatus
from apsara.core.config import config
from apsara.core.errors import ArtifactNotFound
from apsara.tools.base import ApsaraTool, ProgressCallback, ToolParam, ToolResult

if TYPE_CHECKING:
    from apsara.canvas.service import CanvasService


def render_url(canvas_id: str) -> str:
    return f"{config.server.public_url.rstrip('/')}/api/canvas/{canvas_id}/render"


def _app_result(app: CanvasApp, message: str) -> ToolResult:
    if app.status == CanvasStatus.ERROR.value:
        return ToolResult.fail(
            app.error or "Canvas generation failed",
            canvas_id=app.id,
            title=app.title,
            status=app.status,
        )
    fields = {
        "canvas_id": app.id,
        "title": app.title,
        "status": app.status,
        "render_url": render_url(app.id),
    }
    if app.error:
        fields["error"] = app.error
    return ToolResult.success(message, **fields)


class CanvasTool(ApsaraTool):
    """Generate a new single-file web app."""

    name = "apsara_canvas"
    description = (
        "Builds a complete interactive web app (HTML, CSS, JavaScript) from a "
        "description, e.g. a calculator, a game, a dashboard or a landing page. "
        "Takes a while; the user can open the app in the Canvas screen when it is ready."
    )
    parameters = [
        ToolParam(
            name="prompt",
            type="string",
            description="Detailed description of the app to build.",
        ),
        ToolParam(
            name="title",
            type="string",
            description="Short title for the app.",
            required=False,
        ),
    ]
    long_running = True
    family = "canvas"

    def __init__(self, service: "CanvasService"):
        self.service = service

    async def execute(
        self, prompt: str, on_progress: ProgressCallback, title: str | None = None, **_
    ) -> ToolResult:
        app = await self.service.generate_app(prompt, title=title, on_progress=on_progress)
        return _app_result(app, f'"{app.title}" is ready in Canvas.')


class EditCanvasTool(ApsaraTool):
    """Change an existing canvas app."""

    name = "edit_canvas"
    description = (
        "Edits an existing Canvas app given its canvas_id and a description of "
        "the changes. Use after apsara_canvas when the user asks for changes."
    )
    parameters = [
        ToolParam(
            name="canvas_id",
            type="string",
            description="The canvas_id returned when the app was created.",
        ),
        ToolParam(
            name="instructions",
            type="string",
            description="What to change, add or remove.",
        ),
    ]
    long_running = True
    family = "canvas"

    def __init__(self, service: "CanvasService"):
        self.service = service

    async def execute(
        self, canvas_id: str, instructions: str, on_progress: ProgressCallback, **_
    ) -> ToolResult:
        try:
            app = await self.service.edit_app(
                canvas_id, instructions, on_progress=on_progress
            )
        except ArtifactNotFound as e:
            return ToolResult.fail(str(e), canvas_id=canvas_id)
        return _app_result(app, f'"{app.title}" has been updated.')

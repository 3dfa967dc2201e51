"""
Canvas API — list, create, inspect, render and delete canvas apps.

Endpoints:
    GET    /api/canvas              → Summaries, newest first
    GET    /api/canvas/config       → Generation defaults and model choices
    POST   /api/canvas/create       → Generate an app (waits for completion)
    GET    /api/canvas/{id}         → Full detail incl. code and history
    GET    /api/canvas/{id}/render  → HTML for WebView / iframe embedding
    DELETE /api/canvas/{id}         → Delete
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse

from apsara.canvas.service import CANVAS_MODELS, THINKING_LEVELS
from apsara.canvas.store import CanvasApp, CanvasStatus

if TYPE_CHECKING:
    from apsara.canvas.service import CanvasService
    from apsara.canvas.store import CanvasStore

logger = logging.getLogger(__name__)

_HEAD_RE = re.compile(r"<head([^>]*)>", re.IGNORECASE)

VIEWPORT_META = (
    '<meta name="viewport" content="width=device-width, initial-scale=1.0, '
    'maximum-scale=5.0, user-scalable=yes">'
)
MOBILE_RESET_CSS = (
    "<style>*, *::before, *::after { box-sizing: border-box; } "
    "body { margin: 0; overflow-x: hidden; }</style>"
)

_STATUS_PAGE = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1">
<style>
  body {{ background: #0D0D0D; color: #9E9E9E; font-family: system-ui; display: flex; align-items: center; justify-content: center; height: 100vh; margin: 0; }}
  .status {{ text-align: center; }}
  .spinner {{ width: 32px; height: 32px; border: 3px solid #333; border-top-color: #B388FF; border-radius: 50%; animation: spin 1s linear infinite; margin: 0 auto 16px; }}
  @keyframes spin {{ to {{ transform: rotate(360deg); }} }}
  h2 {{ color: #E8E8E8; font-size: 18px; margin: 0 0 8px; }}
  p {{ font-size: 14px; margin: 0; }}
</style></head><body>
<div class="status">
  <div class="spinner"></div>
  <h2>{heading}</h2>
  <p>{message}</p>
</div></body></html>"""


def _inject_into_head(page: str, snippet: str) -> str:
    return _HEAD_RE.sub(lambda m: f"<head{m.group(1)}>\n{snippet}", page, count=1)


def render_app_html(app: CanvasApp) -> str:
    """HTML to serve for an app: a status page until code exists, then the
    app with a viewport meta and a mobile CSS reset added where missing."""
    if not app.html:
        if app.status == CanvasStatus.ERROR.value:
            heading, message = "Error", app.error or "Unknown error"
        else:
            heading, message = "Generating...", "Your app is being created by Apsara Canvas"
        return _STATUS_PAGE.format(
            heading=html_lib.escape(heading), message=html_lib.escape(message)
        )

    page = app.html
    if 'name="viewport"' not in page and "name='viewport'" not in page:
        page = _inject_into_head(page, VIEWPORT_META)
    if "overflow-x: hidden" not in page and "overflow-x:hidden" not in page:
        page = _inject_into_head(page, MOBILE_RESET_CSS)
    return page


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": True, "message": message}, status_code=status_code)


def create_canvas_router(service: "CanvasService", store: "CanvasStore") -> APIRouter:
    """Create the canvas router."""

    router = APIRouter(prefix="/api/canvas", tags=["canvas"])

    @router.get("/config")
    async def canvas_config() -> JSONResponse:
        return JSONResponse(
            {
                "defaults": service.settings.as_dict(),
                "models": CANVAS_MODELS,
                "thinking_levels": THINKING_LEVELS,
            }
        )

    @router.get("")
    @router.get("/")
    async def list_apps() -> JSONResponse:
        return JSONResponse({"apps": store.summaries()})

    @router.post("/create")
    async def create_app(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return _error("Invalid JSON body", 400)

        prompt = body.get("prompt") if isinstance(body, dict) else None
        if not prompt:
            return _error("prompt is required", 400)

        try:
            app = await service.generate_app(
                prompt, title=body.get("title"), overrides=body.get("config")
            )
        except Exception as e:
            logger.error("Canvas create error: %s", e, exc_info=True)
            return _error(str(e), 500)
        return JSONResponse({"success": True, "app": app.detail()})

    @router.get("/{app_id}")
    async def get_app(app_id: str) -> JSONResponse:
        detail = store.detail(app_id)
        if detail is None:
            return _error("Canvas not found", 404)
        return JSONResponse({"app": detail})

    @router.get("/{app_id}/render")
    async def render_app(app_id: str) -> HTMLResponse:
        app = store.get(app_id)
        if app is None:
            return HTMLResponse(
                "<html><body><h1>Canvas not found</h1></body></html>", status_code=404
            )
        return HTMLResponse(
            render_app_html(app),
            headers={"Content-Security-Policy": "frame-ancestors *"},
        )

    @router.delete("/{app_id}")
    async def delete_app(app_id: str) -> JSONResponse:
        if not store.delete(app_id):
            return _error("Canvas not found", 404)
        return JSONResponse({"success": True, "message": "Canvas deleted"})

    return router

"""
Interpreter API — code sessions and their images.

Endpoints:
    GET    /api/interpreter                    → Summaries
    POST   /api/interpreter                    → Run code for a prompt
    GET    /api/interpreter/{id}               → Full session detail
    DELETE /api/interpreter/{id}               → Delete
    GET    /api/interpreter/{id}/images        → Image index
    GET    /api/interpreter/{id}/images/{idx}  → Decoded image bytes
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

if TYPE_CHECKING:
    from apsara.interpreter.service import InterpreterService
    from apsara.interpreter.store import InterpreterStore

logger = logging.getLogger(__name__)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": True, "message": message}, status_code=status_code)


def create_interpreter_router(
    service: "InterpreterService", store: "InterpreterStore"
) -> APIRouter:
    """Create the interpreter router."""

    router = APIRouter(prefix="/api/interpreter", tags=["interpreter"])

    @router.get("")
    @router.get("/")
    async def list_sessions() -> JSONResponse:
        summaries = store.summaries()
        return JSONResponse({"count": len(summaries), "sessions": summaries})

    @router.post("")
    @router.post("/")
    async def run_code(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return _error("Invalid JSON body", 400)

        prompt = body.get("prompt") if isinstance(body, dict) else None
        if not prompt:
            return _error("prompt is required", 400)

        try:
            session = await service.run_code(prompt, title=body.get("title"))
        except Exception as e:
            logger.error("Interpreter run error: %s", e, exc_info=True)
            return _error(str(e), 500)
        return JSONResponse(session.detail())

    @router.get("/{session_id}")
    async def get_session(session_id: str) -> JSONResponse:
        detail = store.detail(session_id)
        if detail is None:
            return _error("Session not found", 404)
        return JSONResponse(detail)

    @router.delete("/{session_id}")
    async def delete_session(session_id: str) -> JSONResponse:
        if not store.delete(session_id):
            return _error("Session not found", 404)
        return JSONResponse({"success": True})

    @router.get("/{session_id}/images")
    async def list_images(session_id: str) -> JSONResponse:
        session = store.get(session_id)
        if session is None:
            return _error("Session not found", 404)
        return JSONResponse(
            {
                "count": len(session.images),
                "images": [
                    {
                        "index": i,
                        "mime_type": img.get("mime_type", "image/png"),
                        "url": f"/api/interpreter/{session_id}/images/{i}",
                    }
                    for i, img in enumerate(session.images)
                ],
            }
        )

    @router.get("/{session_id}/images/{idx}")
    async def get_image(session_id: str, idx: str) -> Response:
        session = store.get(session_id)
        if session is None:
            return _error("Session not found", 404)
        try:
            index = int(idx)
        except ValueError:
            return _error("Image not found", 404)
        if index < 0 or index >= len(session.images):
            return _error("Image not found", 404)

        img = session.images[index]
        try:
            data = base64.b64decode(img["data"])
        except (binascii.Error, ValueError):
            return _error("Image data is corrupt", 500)
        return Response(content=data, media_type=img.get("mime_type", "image/png"))

    return router

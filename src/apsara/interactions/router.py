"""
Interactions API — one-shot and chained text interactions over HTTP.

Endpoints:
    GET  /api/interactions/config         → Models, tools and defaults
    POST /api/interactions                → Create an interaction
    GET  /api/interactions/{id}           → Fetch a previous interaction
    POST /api/interactions/{id}/continue  → Continue from an interaction
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from apsara.interactions.service import InteractionsService

logger = logging.getLogger(__name__)


def _error(message: str, status_code: int, code: str) -> JSONResponse:
    return JSONResponse(
        {"error": True, "message": message, "code": code}, status_code=status_code
    )


def _create_kwargs(body: dict[str, Any]) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "model": body.get("model"),
        "previous_interaction_id": body.get("previous_interaction_id"),
        "generation_config": body.get("generation_config"),
        "tools": body.get("tools"),
        "response_format": body.get("response_format"),
        "auto_execute_tools": body.get("autoExecuteTools", True),
    }
    if "system_instruction" in body:
        kwargs["system_instruction"] = body["system_instruction"]
    return kwargs


async def _read_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def create_interactions_router(service: "InteractionsService") -> APIRouter:
    """Create the interactions router."""

    router = APIRouter(prefix="/api/interactions", tags=["interactions"])

    @router.get("/config")
    async def interactions_config() -> JSONResponse:
        return JSONResponse(service.config_options())

    @router.post("")
    @router.post("/")
    async def create_interaction(request: Request) -> JSONResponse:
        body = await _read_body(request)
        if body is None:
            return _error("Invalid JSON body", 400, "INVALID_REQUEST")
        if body.get("input") is None:
            return _error("input is required", 400, "INVALID_REQUEST")
        try:
            result = await service.create_interaction(body["input"], **_create_kwargs(body))
        except Exception as e:
            logger.error("Interaction error: %s", e, exc_info=True)
            return _error(str(e), 500, "INTERACTION_ERROR")
        return JSONResponse(result)

    @router.get("/{interaction_id}")
    async def get_interaction(interaction_id: str) -> JSONResponse:
        try:
            result = await service.get_interaction(interaction_id)
        except Exception as e:
            logger.error("Get interaction error: %s", e, exc_info=True)
            return _error(str(e), 500, "GET_INTERACTION_ERROR")
        if not result.get("id"):
            return _error("Interaction not found", 404, "NOT_FOUND")
        return JSONResponse(result)

    @router.post("/{interaction_id}/continue")
    async def continue_interaction(interaction_id: str, request: Request) -> JSONResponse:
        body = await _read_body(request)
        if body is None:
            return _error("Invalid JSON body", 400, "INVALID_REQUEST")
        if body.get("input") is None:
            return _error("input is required", 400, "INVALID_REQUEST")
        kwargs = _create_kwargs(body)
        kwargs["previous_interaction_id"] = interaction_id
        try:
            result = await service.create_interaction(body["input"], **kwargs)
        except Exception as e:
            logger.error("Continue interaction error: %s", e, exc_info=True)
            return _error(str(e), 500, "CONTINUE_INTERACTION_ERROR")
        return JSONResponse(result)

    return router

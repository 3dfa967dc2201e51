"""
Apsara — Gemini Live relay.

Bridges voice clients to the Gemini Live API over /live, runs server-side
tools (canvas apps, code interpreter, URL summaries, small utilities), and
serves a text chat on /interactions plus REST routes for the artifacts.

Run: uvicorn apsara.main:app --host 0.0.0.0 --port 3000
  or python -m apsara
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apsara import __version__
from apsara.canvas.router import create_canvas_router
from apsara.canvas.service import CanvasService
from apsara.canvas.store import CanvasStore
from apsara.core.config import config
from apsara.core.gemini import create_client
from apsara.core.logging import setup_logging
from apsara.interactions.router import create_interactions_router
from apsara.interactions.service import InteractionsService
from apsara.interactions.session import InteractionsSession
from apsara.interpreter.router import create_interpreter_router
from apsara.interpreter.service import InterpreterService
from apsara.interpreter.store import InterpreterStore
from apsara.live.adapter import LiveSessionAdapter
from apsara.live.session_config import SessionConfig, config_options
from apsara.relay.session import AdapterFactory, RelaySession
from apsara.tools.calculate import CalculateTool
from apsara.tools.canvas import CanvasTool, EditCanvasTool
from apsara.tools.executor import ToolExecutor
from apsara.tools.interpreter import EditCodeTool, RunCodeTool
from apsara.tools.random_fact import RandomFactTool
from apsara.tools.registry import ToolRegistry
from apsara.tools.server_info import CurrentTimeTool, ServerInfoTool
from apsara.tools.url_summary import UrlSummaryTool
from apsara.transport.websocket import WebSocketTransport
from apsara.web.summarizer import UrlSummarizer

# --- Setup ---
setup_logging()
logger = logging.getLogger("apsara")

SERVICE_NAME = "apsara-live-relay"


def _default_adapter_factory(session_config: SessionConfig) -> LiveSessionAdapter:
    return LiveSessionAdapter(config.gemini.api_key, session_config)


def build_registry(
    canvas: CanvasService,
    interpreter: InterpreterService,
    summarizer: UrlSummarizer,
) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(CurrentTimeTool())
    registry.register(ServerInfoTool())
    registry.register(RandomFactTool())
    registry.register(CalculateTool())
    registry.register(CanvasTool(canvas))
    registry.register(EditCanvasTool(canvas))
    registry.register(RunCodeTool(interpreter))
    registry.register(EditCodeTool(interpreter))
    registry.register(UrlSummaryTool(summarizer))
    return registry


def create_app(
    client: Any = None,
    adapter_factory: AdapterFactory | None = None,
) -> FastAPI:
    """Wire stores, services, tools and routes into one FastAPI app.

    ``client`` is the google-genai client shared by the Interactions-backed
    services; ``adapter_factory`` builds one Live adapter per relay
    connection. Both default to the real thing and are injected by tests.
    """
    if client is None:
        if config.gemini.has_api_key:
            client = create_client()
        else:
            logger.warning("GEMINI_API_KEY is not set; Gemini calls will fail")
    adapter_factory = adapter_factory or _default_adapter_factory

    app = FastAPI(title="Apsara", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Shared state ---
    canvas_store = CanvasStore()
    interpreter_store = InterpreterStore()

    canvas_service = CanvasService(canvas_store, client, config.canvas)
    interpreter_service = InterpreterService(interpreter_store, client, config.interpreter)
    summarizer = UrlSummarizer(client, config.interactions)
    interactions_service = InteractionsService(client, config.interactions)

    # --- Tools ---
    tool_registry = build_registry(canvas_service, interpreter_service, summarizer)
    executor = ToolExecutor(tool_registry)

    # --- Transports ---
    live_transport = WebSocketTransport("live", config.server)
    chat_transport = WebSocketTransport("interactions", config.server)

    app.include_router(create_canvas_router(canvas_service, canvas_store))
    app.include_router(create_interpreter_router(interpreter_service, interpreter_store))
    app.include_router(create_interactions_router(interactions_service))

    app.state.canvas_store = canvas_store
    app.state.interpreter_store = interpreter_store
    app.state.executor = executor
    app.state.transports = (live_transport, chat_transport)

    @app.on_event("startup")
    async def startup():
        logger.info(
            "Apsara v%s ready (model=%s, voice=%s, tools=%s)",
            __version__,
            config.gemini.live_model,
            config.gemini.live_voice,
            tool_registry.tool_names(),
        )

    @app.on_event("shutdown")
    async def shutdown():
        await live_transport.stop()
        await chat_transport.stop()
        logger.info("Apsara stopped")

    @app.get("/health")
    async def health():
        return JSONResponse(
            {
                "status": "ok",
                "service": SERVICE_NAME,
                "version": __version__,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "tools": tool_registry.tool_names(),
                "connections": {
                    t.name: t.get_status()["connections"]
                    for t in (live_transport, chat_transport)
                },
            }
        )

    @app.get("/config")
    async def get_config():
        """Voices, models and defaults for the Live settings panel."""
        return JSONResponse(config_options())

    @app.websocket("/live")
    async def live_endpoint(ws: WebSocket):
        """
        Gemini Live relay.

        Client sends connect{config}, audio/video/text/context frames,
        tool_response, update_config, reconnect, get_state/get_config/get_tools,
        ping, disconnect. See apsara.relay.protocol for the full set.
        """
        await live_transport.handle_connection(
            ws,
            lambda send, session_id: RelaySession(
                executor,
                send,
                adapter_factory,
                config.relay,
                session_id=session_id,
            ),
        )

    @app.websocket("/interactions")
    async def interactions_endpoint(ws: WebSocket):
        """Text chat over the Interactions API."""
        await chat_transport.handle_connection(
            ws,
            lambda send, session_id: InteractionsSession(
                interactions_service, send, session_id=session_id
            ),
        )

    return app


app = create_app()

"""FastAPI application entry point with lifespan management."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from support_chat.api.router import api_router
from support_chat.config import Settings, settings as default_settings
from support_chat.dependencies import ChatServices, build_services
from support_chat.errors import ChatError, error_payload
from support_chat.gateway.websocket import websocket_chat
from support_chat.services.agents import AgentDirectory
from support_chat.store.base import RecordStore
from support_chat.store.factory import open_store

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def start_services(settings: Settings) -> ChatServices:
    """Open the configured store and seed the agent directory.

    Failing to reach the durable backend here is fatal unless memory
    fallback is enabled.
    """

    async def seed_fallback(store: RecordStore) -> None:
        await AgentDirectory(store).seed(settings.seed_agents)

    store = await open_store(settings, on_switch=seed_fallback)
    services = build_services(store, settings)
    await services.agents.seed(settings.seed_agents)
    logger.info(
        "Chat services ready: storage=%s environment=%s",
        store.name,
        settings.environment,
    )
    return services


def create_app(
    services: Optional[ChatServices] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the application.

    Passing ``services`` skips store bootstrap and uses the given container,
    which is how tests run against an isolated in-memory store.
    """
    settings = settings or (services.settings if services else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application startup and shutdown lifecycle."""
        logger.info("Starting %s backend...", settings.app_name)
        owned = services is None
        app.state.services = services if services is not None else await start_services(settings)

        yield

        if owned:
            await app.state.services.store.close()
        logger.info("%s backend shut down cleanly", settings.app_name)

    app = FastAPI(
        title="Support Chat API",
        description="Routes end users to support agents and relays chat in real time",
        version=settings.version,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    )

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(
                exc.status_code, error=exc.code, message=exc.message, details=exc.details
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("Invalid request to %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=400,
            content=error_payload(
                400,
                error="validation_failed",
                message="Request validation failed",
                details={"errors": jsonable_errors(exc)},
            ),
        )

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {
            "message": "Chat Support System API",
            "version": settings.version,
            "documentation": f"{API_PREFIX}/health",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": {
                "health": f"GET {API_PREFIX}/health",
                "auth": f"POST {API_PREFIX}/auth/token",
                "startSession": f"POST {API_PREFIX}/chat/start-session",
                "getMessages": f"GET {API_PREFIX}/chat/messages/{{sessionId}}",
                "sendMessage": f"POST {API_PREFIX}/chat/send-message/{{sessionId}}",
                "endSession": f"POST {API_PREFIX}/chat/end-session/{{sessionId}}",
                "sessionDetails": f"GET {API_PREFIX}/chat/session/{{sessionId}}",
                "stats": f"GET {API_PREFIX}/chat/stats",
                "websocket": "WS /ws/chat",
            },
        }

    # Mount API routes
    app.include_router(api_router, prefix=API_PREFIX)

    # Mount WebSocket endpoint (outside /api prefix)
    app.websocket("/ws/chat")(websocket_chat)

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


configure_logging(default_settings)

app = create_app()

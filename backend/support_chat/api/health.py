"""Health check endpoint for infrastructure monitoring."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from support_chat.dependencies import ChatServices, get_services
from support_chat.errors import ChatError

logger = logging.getLogger(__name__)
router = APIRouter()


async def _check_database(services: ChatServices) -> str:
    """Ping the record store and describe its state."""
    if services.store.name == "memory":
        return "in-memory"
    return "connected" if await services.store.ping() else "disconnected"


@router.get("")
async def health_check(
    services: ChatServices = Depends(get_services),
) -> Any:
    """Return aggregate health of the backend; no authentication required."""
    settings = services.settings
    try:
        database = await _check_database(services)
        active = await services.sessions.active_count()
        total = await services.sessions.count()
    except ChatError as exc:
        logger.warning("Health check failed: %s", exc.message)
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "message": "Service temporarily unavailable",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    health: dict[str, Any] = {
        "status": "unhealthy" if database == "disconnected" else "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(services.uptime, 3),
        "environment": settings.environment,
        "version": settings.version,
        "services": {
            "database": database,
            "storage": services.store.name,
            "sessions": {"active": active, "total": total},
        },
    }
    logger.debug("Health check performed: %s (database=%s)", health["status"], database)
    return health

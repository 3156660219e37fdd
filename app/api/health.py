from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from app.config import get_settings
from app.db.connection import get_connection_manager
from app.errors import StoreConnectionError
from app.models.schemas import PingResponse

router = APIRouter(tags=["health"])

logger = structlog.get_logger(__name__)


@router.get("/ping")
async def ping() -> JSONResponse:
    settings = get_settings()
    manager = get_connection_manager()
    try:
        client = await manager.acquire()
        await asyncio.wait_for(
            client.admin.command("ping"),
            timeout=settings.mongodb_connect_timeout_ms / 1000.0,
        )
    except (StoreConnectionError, PyMongoError, asyncio.TimeoutError) as exc:
        logger.error("ping_failed", error_type=type(exc).__name__)
        if isinstance(exc, asyncio.TimeoutError):
            details = "Document store did not answer in time"
        else:
            details = "Document store is unreachable"
        body = PingResponse(success=False, error="Database connection failed", details=details)
        return JSONResponse(status_code=500, content=body.model_dump(mode="json", by_alias=True, exclude_none=True))

    body = PingResponse(
        success=True,
        timestamp=datetime.now(timezone.utc),
        connection_state=manager.state.value,
    )
    return JSONResponse(content=body.model_dump(mode="json", by_alias=True, exclude_none=True))

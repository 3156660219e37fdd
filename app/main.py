from fastapi import FastAPI

from app.api.health import router as health_router
from app.api.metrics import router as metrics_router
from app.api.tracking import router as tracking_router
from app.config import get_settings
from app.db.connection import get_connection_manager
from app.observability.logging import configure_logging
from app.observability.middleware import RequestContextMiddleware
from app.services.open_recorder import drain_pending


app = FastAPI(title="Email Open Tracker", version="0.1.0")
app.add_middleware(RequestContextMiddleware)
app.include_router(tracking_router)
app.include_router(health_router)
app.include_router(metrics_router)


@app.on_event("startup")
async def _startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)


@app.on_event("shutdown")
async def _shutdown() -> None:
    settings = get_settings()
    await drain_pending(timeout=settings.record_open_timeout_seconds)
    await get_connection_manager().close()

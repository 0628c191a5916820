"""safety-engine FastAPI application."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from safety_engine import models  # noqa: F401  (register tables)
from safety_engine.api import anomaly, evidence, geofence, health, sos, ws
from safety_engine.core.config import settings
from safety_engine.core.deps import build_engine
from safety_engine.core.errors import ConflictingActiveEvent, RateLimitExceeded, SafetyEngineError
from safety_engine.core.ws_manager import ws_publisher
from safety_engine.db.base import Base
from safety_engine.db.session import SessionLocal, engine
from safety_engine.services.collaborators import StaticIdentity

logger = logging.getLogger(__name__)


def run_escalation_sweep() -> int:
    """One sweep over every active event, on its own session."""
    db = SessionLocal()
    try:
        return len(build_engine(db, StaticIdentity(None)).sweep_escalations())
    finally:
        db.close()


async def _sweep_forever(interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(run_escalation_sweep)
        except SafetyEngineError as e:
            logger.error("Escalation sweep failed: %s", e.message)
        except Exception:
            logger.exception("Escalation sweep crashed; retrying next interval")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    Base.metadata.create_all(bind=engine)
    ws_publisher.bind(asyncio.get_running_loop())

    sweeper: asyncio.Task | None = None
    if settings.escalation_auto_advance:
        logger.info("Escalation auto-advance on (every %ss)", settings.escalation_sweep_seconds)
        sweeper = asyncio.create_task(_sweep_forever(settings.escalation_sweep_seconds))
    yield
    if sweeper is not None:
        sweeper.cancel()
    ws_publisher.bind(None)


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@app.exception_handler(SafetyEngineError)
async def engine_error_handler(request: Request, exc: SafetyEngineError) -> JSONResponse:
    detail: dict[str, object] = {"code": exc.code, "message": exc.message}
    headers = None
    if isinstance(exc, RateLimitExceeded) and exc.retry_after_seconds is not None:
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    if isinstance(exc, ConflictingActiveEvent) and exc.active_event_id is not None:
        detail["active_event_id"] = exc.active_event_id
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail},
        headers=headers,
    )


app.include_router(health.router)
app.include_router(sos.router)
app.include_router(evidence.router)
app.include_router(geofence.router)
app.include_router(anomaly.router)
app.include_router(ws.router)

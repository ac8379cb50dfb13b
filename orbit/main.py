"""
Orbit — FastAPI Application Entry Point

- Async lifespan management (DB pool warm-up, request drain, disposal)
- Request context middleware (see ``orbit.middleware``) and CORS
- Typed core errors mapped to JSON responses
- Health-check endpoints (liveness + deep readiness)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from orbit.config import get_settings
from orbit.database import async_session_factory, engine
from orbit.errors import OrbitError
from orbit.middleware import RequestContextMiddleware, RequestTracker

# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("orbit")

settings = get_settings()
request_tracker = RequestTracker()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Check the database on the way up; let requests finish on the way down."""
    logger.info("startup_begin", environment=settings.ENVIRONMENT)
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("startup_complete")

    yield

    drained = await request_tracker.drain(settings.SHUTDOWN_DRAIN_SECONDS)
    await engine.dispose()
    logger.info("shutdown_complete", drained=drained)


app = FastAPI(
    title="Orbit",
    description="Sponsor-brokered introductions core",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

app.add_middleware(
    RequestContextMiddleware,
    tracker=request_tracker,
    timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(OrbitError)
async def handle_orbit_error(request: Request, exc: OrbitError) -> JSONResponse:
    logger.info(
        "orbit_error_handled",
        code=exc.code,
        status=exc.status_code,
        **{k: str(v) for k, v in exc.context.items()},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# -- Health-check endpoints ------------------------------------------------ #


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    return {"status": "healthy"}


@app.get("/health/deep", tags=["health"])
async def health_deep() -> dict:
    """Readiness: the process is up and the database answers."""
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_db_failure", error=str(exc))
        return {"status": "degraded", "database": f"error: {exc}"}
    return {"status": "healthy", "database": "connected"}


from orbit.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")

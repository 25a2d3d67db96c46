"""FastAPI application for the leadflow backend.

Endpoints (all under ``/api`` except ``/health``):
- /users/me, /companies - identity sync and company management
- /leads - lead CRUD; creating a lead queues its scrape
- /chat-links, /chat-sessions - outreach links and their chats
- /public/... - visitor-facing chat link and session routes
- /usage - usage tracking, limit checks and reporting

The caller is identified by the ``X-User-Id`` header set by the auth proxy.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import config
from ..errors import LeadflowError
from ..integrations.polar import PolarAuthError, PolarError
from ..logging_utils import get_logger
from ..models import close_database, get_db_session, init_database
from ..services import usage_rules
from ..utils import utc_iso_now
from ..worker import JobWorker
from .routes import routers

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and default usage rules, optionally run the job worker in-process."""
    logger.info("Leadflow API starting...")
    await init_database()
    async with get_db_session() as session:
        await usage_rules.seed_default_rules(session)

    worker = None
    worker_task = None
    if config.RUN_WORKER_IN_API:
        worker = JobWorker()
        worker_task = asyncio.create_task(worker.run_forever())
        logger.info("In-process job worker started")

    logger.info("Leadflow API ready")

    yield

    logger.info("Leadflow API shutting down...")
    if worker is not None:
        worker.stop()
        await worker_task
    await close_database()
    logger.info("Leadflow API shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Leadflow API",
        description="Leads, chat outreach and usage metering",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for router in routers:
        app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        return {
            "status": "healthy",
            "service": "leadflow-api",
            "version": __version__,
            "timestamp": utc_iso_now(),
        }

    @app.exception_handler(LeadflowError)
    async def leadflow_error_handler(request: Request, exc: LeadflowError) -> JSONResponse:
        """Domain errors carry their own status code."""
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error, "message": str(exc)},
        )

    @app.exception_handler(PolarError)
    async def polar_error_handler(request: Request, exc: PolarError) -> JSONResponse:
        logger.error(
            "Polar request failed during %s %s: %s",
            request.method,
            request.url.path,
            exc,
        )
        if isinstance(exc, PolarAuthError) and exc.status_code is None:
            # No access token configured
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        else:
            code = status.HTTP_502_BAD_GATEWAY
        return JSONResponse(
            status_code=code,
            content={"error": "Billing provider error", "message": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error(
            "Unhandled error: %s %s - %s",
            request.method,
            request.url.path,
            str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": str(exc) if config.DEBUG else "An unexpected error occurred",
            },
        )

    return app


app = create_app()

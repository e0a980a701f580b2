"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown of the transport (Redis or
in-memory) and the database engine used for membership lookups.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskboard import __version__
from taskboard.api import api_router
from taskboard.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. A transport that fails to come up is logged, not fatal:
    mutations still get accepted (and reported undelivered) so the main
    application never sees the gateway as a hard dependency.
    """
    logger.info(
        "taskboard.starting",
        version=__version__,
        environment=settings.environment,
        transport=settings.transport,
        port=settings.port,
    )

    from taskboard.realtime.transport import close_transport, init_transport
    try:
        await init_transport()
        logger.info("taskboard.transport_connected", transport=settings.transport)
    except Exception as e:
        logger.warning("taskboard.transport_unavailable", error=str(e))

    yield

    logger.info("taskboard.shutdown")
    await close_transport()

    from taskboard.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Taskboard Realtime",
        description="Real-time fan-out gateway for Taskboard projects, boards and chat",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    from taskboard.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from taskboard.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: taskboard.main:app)
app = create_app()

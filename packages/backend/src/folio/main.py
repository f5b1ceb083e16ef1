"""FastAPI application factory.

Learn: App factory pattern — create_app() builds the process-wide services
once (DataClient, RealtimePipeline), wires the realtime interceptor into
the DataClient, and hangs both on app.state for routes to use. Lifespan
only handles startup checks and shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from folio import __version__
from folio.api import api_router
from folio.config import Settings
from folio.config import settings as default_settings
from folio.db.client import DataClient
from folio.db.engine import build_engine, build_session_factory
from folio.middleware.request_id import RequestIdMiddleware
from folio.realtime.endpoint import RealtimeEndpointMiddleware
from folio.realtime.pipeline import RealtimePipeline

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. The worker and socket server start lazily, so startup only
    checks that Redis answers.
    """
    settings: Settings = app.state.settings
    realtime: RealtimePipeline = app.state.realtime

    logger.info(
        "folio.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    try:
        await realtime.connections.queue_connection().ping()
        logger.info("folio.redis_connected", **realtime.describe())
    except Exception as e:
        logger.warning("folio.redis_unavailable", error=str(e))
        # Redis is optional: the app works without realtime refresh

    yield

    logger.info("folio.shutdown")
    await realtime.close()

    engine = app.state.engine
    if engine is not None:
        await engine.dispose()


def create_app(
    settings: Optional[Settings] = None,
    *,
    data: Optional[DataClient] = None,
    realtime: Optional[RealtimePipeline] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or default_settings

    engine = None
    if data is None:
        engine = build_engine(settings.database_url, echo=settings.debug)
        data = DataClient(build_session_factory(engine))
    if realtime is None:
        realtime = RealtimePipeline(settings)
    realtime.install(data)

    app = FastAPI(
        title="Folio",
        description="Portfolio backend with realtime dashboard refresh",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.data = data
    app.state.realtime = realtime

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RealtimeEndpoint → CORS → RequestId → handler

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        RealtimeEndpointMiddleware,
        registry=realtime.registry,
        path=settings.realtime_socket_path,
    )

    # Mount API routes
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: folio.main:app)
app = create_app()

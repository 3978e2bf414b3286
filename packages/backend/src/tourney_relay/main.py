"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown of the TransportSupervisor
(dispatcher, Redis subscriber, spool poller).

If the supervisor refuses to start (strict profile, broker unreachable),
the exception escapes the lifespan and uvicorn exits with a non-zero
status.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from tourney_relay import __version__
from tourney_relay.api import api_router
from tourney_relay.config import Settings, get_settings
from tourney_relay.logs import configure_logging
from tourney_relay.realtime.supervisor import TransportSupervisor
from tourney_relay.realtime.websocket import create_router

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    supervisor: Optional[TransportSupervisor] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_json)
        logger.info(
            "relay.starting",
            version=__version__,
            port=settings.websocket_port,
            path=settings.websocket_path,
        )

        relay = app.state.supervisor
        await relay.start()
        logger.info("relay.ready", transport=relay.status()["transport"])

        yield

        logger.info("relay.shutdown")
        await relay.stop()

    app = FastAPI(
        title="Tourney Relay",
        description="Real-time fan-out of tournament events to live-view clients",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.supervisor = supervisor or TransportSupervisor(settings)

    app.include_router(api_router)
    app.include_router(create_router(settings.websocket_path))

    return app

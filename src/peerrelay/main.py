"""FastAPI application factory.

Learn: create_app() builds the FastAPI instance. Its lifespan wires the
process-wide components onto app.state:

    bootstrap  — lazy single-flight Redis connection (not connected yet!)
    registry   — connected WebSocket sessions
    relay      — fans each Redis message out to the registry
    discovery  — peer discovery chain, environment captured once

The Redis connection is NOT opened at startup. The first WebSocket
client (or the first publish) opens it.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from peerrelay import __version__
from peerrelay.api import api_router
from peerrelay.config import Settings, settings as default_settings
from peerrelay.discovery.chain import DiscoveryChain, build_discovery_chain
from peerrelay.middleware.request_id import RequestIdMiddleware
from peerrelay.realtime.bootstrap import ConnectionBootstrap
from peerrelay.realtime.fanout import FanoutRelay
from peerrelay.realtime.pubsub import PubSubBackend, RedisBackend
from peerrelay.realtime.sessions import SessionRegistry
from peerrelay.realtime.websocket import router as ws_router

logger = structlog.get_logger()


def create_app(
    app_settings: Optional[Settings] = None,
    backend: Optional[PubSubBackend] = None,
    discovery: Optional[DiscoveryChain] = None,
) -> FastAPI:
    """Build and return the FastAPI application.

    backend and discovery can be injected (tests, embedding); by default
    they come from Redis and the live process environment.
    """
    cfg = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle."""
        logger.info(
            "peerrelay.starting",
            version=__version__,
            environment=cfg.environment,
            channel=cfg.relay_channel,
        )

        registry = SessionRegistry()
        relay = FanoutRelay(registry)
        bootstrap = ConnectionBootstrap(
            backend=backend or RedisBackend(),
            connection_string=cfg.redis_url,
            channel=cfg.relay_channel,
            handler=relay.handle,
        )

        app.state.settings = cfg
        app.state.registry = registry
        app.state.relay = relay
        app.state.bootstrap = bootstrap
        app.state.discovery = discovery or build_discovery_chain(cfg)

        yield

        logger.info("peerrelay.shutdown", sessions=len(registry))
        await bootstrap.close()

    app = FastAPI(
        title="PeerRelay",
        description="Live pub/sub fanout to WebSocket clients, plus peer discovery",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(RequestIdMiddleware)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: peerrelay.main:app)
app = create_app()

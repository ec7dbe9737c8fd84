"""Application lifecycle management for the collaboration server.

Startup builds the relay, identity verifier and frame validator from
configuration, publishes them on ``app.state`` and starts the idle monitor.
Shutdown stops the monitor and closes every remaining connection.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..auth.jwt_strategy import JWTIdentityVerifier
from ..config import get_config
from ..logging.enhanced_logging_config import get_logger
from ..realtime.event_relay import EventRelay
from ..realtime.idle_monitor import IdleMonitor
from ..realtime.message_validator import WebSocketMessageValidator

logger = get_logger("collab.lifespan")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    config = getattr(app.state, "config", None) or get_config()
    relay_config = config.relay

    logger.info("Starting collaboration server")
    relay = EventRelay.from_config(relay_config)
    monitor = IdleMonitor(relay, relay_config.sweep_interval_seconds)

    app.state.relay = relay
    app.state.idle_monitor = monitor
    if getattr(app.state, "identity_verifier", None) is None:
        app.state.identity_verifier = JWTIdentityVerifier.from_config(config.security)
    app.state.message_validator = WebSocketMessageValidator(
        max_message_size=relay_config.max_message_size,
        max_json_depth=relay_config.max_json_depth,
        max_document_id_length=relay_config.max_document_id_length,
    )

    monitor.start()
    logger.info(
        "Collaboration server started",
        idle_timeout=relay_config.idle_timeout_seconds,
        max_message_size=relay_config.max_message_size,
    )
    try:
        yield
    finally:
        logger.info("Shutting down collaboration server")
        try:
            await monitor.stop()
        except asyncio.CancelledError:
            logger.warning("Shutdown interrupted while stopping idle monitor")
            raise
        finally:
            closed = relay.close_all()
            app.state.relay = None
            logger.info("Collaboration server stopped", closed_connections=closed)

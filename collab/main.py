"""
Collaboration server entry point.

Sets up logging from configuration, builds the FastAPI application and serves
it with uvicorn. Run with ``collab-server`` or ``python -m collab.main``.
"""

import sys

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from .app.factory import create_app
from .config import get_config
from .logging.enhanced_logging_config import get_logger, setup_enhanced_logging


def build_app() -> FastAPI:
    """Application factory used by uvicorn; logging is configured before any app logger runs."""
    config = get_config()
    setup_enhanced_logging(config.to_logging_dict())
    get_logger(__name__).info("Logging setup completed", environment=config.logging.environment)
    return create_app(config)


def main() -> None:
    """Start the collaboration server with uvicorn."""
    try:
        config = get_config()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    server = uvicorn.Server(
        uvicorn.Config(
            "collab.main:build_app",
            factory=True,
            host=config.server.host,
            port=config.server.port,
            log_level=config.logging.level.lower(),
            access_log=True,
        )
    )
    try:
        server.run()
    except KeyboardInterrupt:
        print("\nServer shutdown requested by user")
        sys.exit(0)


if __name__ == "__main__":
    main()

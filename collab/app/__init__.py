"""Application assembly: factory and lifespan."""

from .factory import create_app

__all__ = ["create_app"]

"""HTTP and websocket routes of the collaboration server."""

from .real_time import realtime_router

__all__ = ["realtime_router"]

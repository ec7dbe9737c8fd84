"""
Real-time collaboration layer: presence tracking and event relay for
collaborative document editing, plus the client-side connection lifecycle
manager and presence reconciler.
"""

__version__ = "0.1.0"

"""Asyncio client for the collaboration relay."""

from .backoff import ReconnectPolicy
from .lifecycle import ConnectionLifecycleManager
from .presence import COLORS, Collaborator, PresenceReconciler

__all__ = ["COLORS", "Collaborator", "ConnectionLifecycleManager", "PresenceReconciler", "ReconnectPolicy"]

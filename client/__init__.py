"""
Realtime chat client core.

Connection lifecycle, chat timeline and presence reconciliation against
the chat backend's /ws, /api/users and /healthz endpoints.
"""

from .config import ClientConfig
from .liveness import LivenessProbe
from .presence import PresenceReconciler
from .state import ChatContext, ChatView, ConnectionState, LivenessStatus, PresenceEntry
from .timeline import ChatTimeline
from .ws_client import ConnectionManager

__all__ = [
    "ChatContext",
    "ChatTimeline",
    "ChatView",
    "ClientConfig",
    "ConnectionManager",
    "ConnectionState",
    "LivenessProbe",
    "LivenessStatus",
    "PresenceEntry",
    "PresenceReconciler",
]

"""
Spelltale - reading client for an endlessly generated, page-by-page story.

Components:
- ContentClient: cached, coalescing, fallback-safe page access
- PrefetchScheduler: warms the cache with the next page
- RevealEngine: typewriter reveal and "need more content" signal
- RealtimeChannel: websocket to the world simulation backend
- ReaderSession: the reading loop tying them together
"""

from .cache import PageCache
from .client import ContentClient
from .config import ClientConfig
from .errors import ContentServiceError, SpelltaleError, WorldServiceError
from .events import StoryEventLog
from .identity import InMemoryStore, SessionIdentity
from .models import *
from .prefetch import PrefetchScheduler
from .reader import ReaderSession
from .realtime import ConnectionState, RealtimeChannel
from .reveal import RevealEngine, RevealState
from .scheduler import AsyncioScheduler, VirtualScheduler
from .world import AutoSimulator, WorldClient

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("spelltale")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = [
    "ClientConfig",
    "ContentClient",
    "PageCache",
    "PrefetchScheduler",
    "RevealEngine",
    "RevealState",
    "RealtimeChannel",
    "ConnectionState",
    "StoryEventLog",
    "ReaderSession",
    "WorldClient",
    "AutoSimulator",
    "SessionIdentity",
    "InMemoryStore",
    "AsyncioScheduler",
    "VirtualScheduler",
    "SpelltaleError",
    "ContentServiceError",
    "WorldServiceError",
]

"""
Story event log fed by the realtime channel.
"""

from __future__ import annotations

import logging
from typing import Any

from .models import EventType, StoryEvent

logger = logging.getLogger("spelltale.realtime")

# Inbound realtime message types that become log entries.
INBOUND_EVENT_TYPES = {
    "character_action": EventType.ACTION,
    "scene_change": EventType.SCENE,
}


class StoryEventLog:
    """Newest-first list of story events.

    Args:
        max_events: Keep at most this many events (oldest dropped). None keeps all.
    """

    def __init__(self, max_events: int | None = None) -> None:
        if max_events is not None and max_events < 1:
            raise ValueError("max_events must be at least 1")
        self.max_events = max_events
        self._events: list[StoryEvent] = []

    def record(
        self,
        type: EventType | str,
        content: str,
        character: str | None = None,
    ) -> StoryEvent:
        """Add an event at the top of the log and return it."""
        event = StoryEvent(type=EventType(type), character=character, content=content)
        self._events.insert(0, event)
        if self.max_events is not None:
            del self._events[self.max_events:]
        return event

    def handle_message(self, data: dict[str, Any]) -> StoryEvent | None:
        """Realtime message handler; logs recognized events and ignores the rest."""
        message_type = data.get("type")
        event_type = (
            INBOUND_EVENT_TYPES.get(message_type) if isinstance(message_type, str) else None
        )
        if event_type is None:
            logger.debug(f"Event log ignoring message type {message_type!r}")
            return None

        character = data.get("character") if event_type is EventType.ACTION else None
        return self.record(event_type, str(data.get("content", "")), character=character)

    @property
    def events(self) -> list[StoryEvent]:
        """Events, newest first."""
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

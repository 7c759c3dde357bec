"""
Data models for the Spelltale reading client.

Wire records mirror the JSON bodies of the story service; field names are the
service's snake_case names so responses validate directly.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from shortuuid import random


class PageRecord(BaseModel):
    """One page of narrative as delivered by ``GET /page/{user_id}/{n}``.

    Frozen: a cached record is never edited in place, only replaced.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    page_number: int = Field(ge=1)
    content: str
    chapter_id: int = Field(ge=1)
    is_generated: bool = True
    next_page_ready: bool = False


class StoryState(BaseModel):
    """Server-authoritative reading counters for a user."""
    model_config = ConfigDict(extra="ignore")

    user_id: str
    current_chapter: int = 1
    current_page: int = 1
    total_pages: int = 0
    pages_generated: int = 0


class NewChapterResponse(BaseModel):
    """Body of ``POST /chapter/new/{user_id}``: the first page plus chapter metadata."""
    model_config = ConfigDict(extra="allow")

    page_number: int = Field(default=1, ge=1)
    content: str
    chapter_id: int = Field(ge=1)
    title: str | None = None

    def to_page(self) -> PageRecord:
        """Return the first page of the new chapter as a cacheable record."""
        return PageRecord(
            page_number=self.page_number,
            content=self.content,
            chapter_id=self.chapter_id,
            is_generated=True,
            next_page_ready=False,
        )


class PageListing(BaseModel):
    """Diagnostic listing returned by ``GET /pages/{user_id}``."""
    model_config = ConfigDict(extra="allow")

    pages: list[Any] = Field(default_factory=list)
    total_pages: int = 0
    chapters: dict[str, Any] = Field(default_factory=dict)


WORDS_PER_MINUTE = 200


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())


def read_time(text: str) -> str:
    """Estimated reading time, e.g. ``"2 min read"``."""
    minutes = math.ceil(count_words(text) / WORDS_PER_MINUTE)
    return f"{minutes} min read"


class Chapter(BaseModel):
    """Display summary of a page, used for headers and chapter menus."""

    id: int
    title: str
    content: str
    word_count: int
    time_read: str

    @classmethod
    def from_page(cls, page: PageRecord, title: str | None = None) -> "Chapter":
        if title is None:
            title = "The Beginning" if page.chapter_id == 1 else f"Chapter {page.chapter_id}"
        return cls(
            id=page.chapter_id,
            title=title,
            content=page.content,
            word_count=count_words(page.content),
            time_read=read_time(page.content),
        )


# ---------------------------------------------------------------------------
# Story events (realtime log)
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """Kinds of entries shown in the story event log."""
    DIALOGUE = "dialogue"
    ACTION = "action"
    NARRATION = "narration"
    SCENE = "scene"
    GM_EVENT = "gm_event"
    SPEAK = "speak"
    MOVE = "move"
    INTERACT = "interact"
    THINK = "think"
    OBSERVE = "observe"


class StoryEvent(BaseModel):
    """A single entry of the story event log."""

    id: str = Field(default_factory=lambda: random(length=12))
    type: EventType
    character: str | None = None
    content: str
    timestamp: str = "Just now"


# ---------------------------------------------------------------------------
# World simulation request bodies
# ---------------------------------------------------------------------------


class WorldData(BaseModel):
    """Body of ``POST /world/create``."""
    name: str
    description: str
    genre: str
    atmosphere: str | None = None
    key_locations: list[str] | None = None
    rules: str | None = None
    historical_events: list[str] | None = None


class CharacterData(BaseModel):
    """Body of ``POST /character/create/{world_id}``."""
    name: str
    role: str
    personality: str
    backstory: str
    goals: list[str] = Field(default_factory=list)
    traits: list[str] = Field(default_factory=list)
    appearance: str
    voice_style: str | None = None
    relationships: dict[str, str] | None = None


class CharacterAction(BaseModel):
    """Body of ``POST /character/action``."""
    character_id: str
    action_type: str
    target: str | None = None
    content: str
    context: dict[str, Any] = Field(default_factory=dict)


class GMCommand(BaseModel):
    """Body of ``POST /gm/command``."""
    command: str
    parameters: dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "PageRecord",
    "StoryState",
    "NewChapterResponse",
    "PageListing",
    "Chapter",
    "EventType",
    "StoryEvent",
    "WorldData",
    "CharacterData",
    "CharacterAction",
    "GMCommand",
    "count_words",
    "read_time",
]

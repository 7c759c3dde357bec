"""
Shared test doubles for spelltale tests.

Provides a story service stub for httpx.MockTransport, a fake realtime
connection/connector pair and an event-loop settling helper.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx

USER_ID = "user_test"
BASE_URL = "http://story.test"


async def settle(predicate: Callable[[], bool] | None = None, rounds: int = 100) -> None:
    """Yield to the event loop until ``predicate`` holds (or ``rounds`` passes)."""
    for _ in range(rounds):
        if predicate is not None and predicate():
            return
        await asyncio.sleep(0)
    if predicate is not None:
        assert predicate(), "condition not reached while settling the event loop"


# ---------------------------------------------------------------------------
# Story service stub (httpx.MockTransport handler)
# ---------------------------------------------------------------------------


class StoryServiceStub:
    """In-process stand-in for the story service.

    Page bodies are computed when the request arrives, so a held request
    still reflects the chapter it was issued under.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.chapter = 1
        self.next_page_ready = False
        self.state: dict[str, Any] = {
            "user_id": USER_ID,
            "current_chapter": 1,
            "current_page": 1,
            "total_pages": 3,
            "pages_generated": 3,
        }
        self.status_code = 200
        self.unreachable = False
        self.raw_body: str | None = None
        self.hold: dict[str, asyncio.Event] = {}

    def paths(self, prefix: str = "") -> list[str]:
        return [r.url.path for r in self.requests if r.url.path.startswith(prefix)]

    def page_requests(self, page_number: int) -> int:
        return self.paths().count(f"/page/{USER_ID}/{page_number}")

    def held(self, path: str) -> asyncio.Event:
        event = asyncio.Event()
        self.hold[path] = event
        return event

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        parts = path.strip("/").split("/")
        body = self._body_for(request.method, parts)

        if path in self.hold:
            await self.hold[path].wait()

        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"detail": "service error"})
        if self.raw_body is not None:
            return httpx.Response(200, text=self.raw_body)
        if body is None:
            return httpx.Response(404, json={"detail": "not found"})
        return httpx.Response(200, json=body)

    def _body_for(self, method: str, parts: list[str]) -> Any:
        if parts[0] == "page":
            number = int(parts[2])
            return {
                "page_number": number,
                "content": f"Chapter {self.chapter}, page {number}.",
                "chapter_id": self.chapter,
                "is_generated": True,
                "next_page_ready": self.next_page_ready,
            }
        if parts[:2] == ["story", "state"]:
            return dict(self.state)
        if parts[:2] == ["chapter", "new"] and method == "POST":
            if self.unreachable or self.status_code != 200:
                return None
            self.chapter += 1
            self.state.update(current_chapter=self.chapter, current_page=1)
            return {
                "page_number": 1,
                "content": f"Chapter {self.chapter} begins.",
                "chapter_id": self.chapter,
                "title": f"The {self.chapter}nd Gate",
            }
        if parts[0] == "pages":
            return {
                "pages": [{"page_number": 1}],
                "total_pages": 1,
                "chapters": {"1": {"pages": 1}},
            }
        return None


# ---------------------------------------------------------------------------
# Fake realtime transport
# ---------------------------------------------------------------------------


class FakeConnection:
    """In-memory Connection: ``feed()`` delivers inbound frames, ``sent`` records outbound."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.open = True
        self.close_calls = 0
        self._inbound: asyncio.Queue = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, message: str) -> None:
        if not self.open:
            raise ConnectionError("connection is closed")
        self.sent.append(json.loads(message))

    def feed(self, raw: str | bytes) -> None:
        self._inbound.put_nowait(raw)

    def drop(self) -> None:
        """Simulate the remote side closing the connection."""
        self.open = False
        self._inbound.put_nowait(None)

    async def __aiter__(self):
        while True:
            raw = await self._inbound.get()
            if raw is None:
                return
            yield raw

    async def close(self) -> None:
        self.close_calls += 1
        self.open = False
        self._inbound.put_nowait(None)


class FakeConnector:
    def __init__(self) -> None:
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []
        self.error: Exception | None = None

    async def __call__(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        connection = FakeConnection()
        self.connections.append(connection)
        return connection



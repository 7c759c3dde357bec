"""
Command-line entry point for the Spelltale reading client.

Usage:
    spelltale read --pages 3
    spelltale pages
    spelltale health
    spelltale listen WORLD_ID --seconds 60
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .client import ContentClient
from .config import ClientConfig
from .events import StoryEventLog
from .reader import ReaderSession
from .realtime import ConnectionState, Connector, RealtimeChannel
from .world import WorldClient

logger = logging.getLogger("spelltale")


class _PagePrinter:
    """Writes the reveal engine's progress to a stream, one page after another."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout
        self.printed = 0
        self.pages_shown = 0

    def __call__(self, text: str) -> None:
        if len(text) < self.printed or self.printed == 0:
            self.pages_shown += 1
            if self.pages_shown > 1:
                self.stream.write("\n\n")
            self.printed = 0
        self.stream.write(text[self.printed:])
        self.stream.flush()
        self.printed = len(text)


async def read_story(config: ClientConfig, pages: int) -> int:
    printer = _PagePrinter()
    async with ContentClient(config) as client:
        session = ReaderSession(client, on_reveal=printer)
        try:
            await session.start()
            if session.connection_error:
                print("Unable to connect to the story service.", file=sys.stderr)
                return 1
            last_page = session.current_page + pages - 1
            while not (session.current_page >= last_page and session.engine.is_complete):
                await asyncio.sleep(config.reveal_tick)
            print()
        finally:
            session.close()
    return 0


async def list_pages(config: ClientConfig) -> int:
    async with ContentClient(config) as client:
        listing = await client.get_all_pages()
    print(json.dumps(listing.model_dump(), indent=2))
    return 0


async def check_health(config: ClientConfig) -> int:
    async with WorldClient(config) as world:
        health = await world.check_health()
    print(json.dumps(health, indent=2))
    return 0 if health.get("status") != "error" else 1


async def listen(
    config: ClientConfig,
    world_id: str,
    seconds: float,
    connector: Connector | None = None,
) -> int:
    """Print realtime events for ``seconds``; exit code 1 if the connection failed or dropped."""
    event_log = StoryEventLog()

    def on_message(data: dict) -> None:
        event = event_log.handle_message(data)
        if event is not None:
            who = f"{event.character}: " if event.character else ""
            print(f"[{event.type.value}] {who}{event.content}")
        else:
            print(json.dumps(data))

    channel = RealtimeChannel(config, connector=connector)
    handle = await channel.connect(world_id, on_message)
    try:
        elapsed = 0.0
        while handle.state is ConnectionState.OPEN and elapsed < seconds:
            step = min(0.5, seconds - elapsed)
            await asyncio.sleep(step)
            elapsed += step
    finally:
        # disconnect() resets the state, so read it first
        failed = handle.state is ConnectionState.CLOSED
        await channel.disconnect()

    if failed:
        print(f"Connection to world {world_id} failed or was closed.", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spelltale",
        description="Read an endlessly generated story from a Spelltale service.",
    )
    parser.add_argument("--api-url", help="Story service URL (default: $SPELLTALE_API_URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    read = subparsers.add_parser("read", help="Read the story with a typewriter effect")
    read.add_argument("--pages", type=int, default=1, help="Number of pages to read")

    subparsers.add_parser("pages", help="Print the page listing for this session")
    subparsers.add_parser("health", help="Check the service health")

    listen_cmd = subparsers.add_parser("listen", help="Print realtime events of a world")
    listen_cmd.add_argument("world_id")
    listen_cmd.add_argument("--seconds", type=float, default=60.0)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    overrides = {"base_url": args.api_url} if args.api_url else {}
    config = ClientConfig.from_env(**overrides)

    if args.command == "read":
        coro = read_story(config, max(args.pages, 1))
    elif args.command == "pages":
        coro = list_pages(config)
    elif args.command == "health":
        coro = check_health(config)
    else:
        coro = listen(config, args.world_id, args.seconds)

    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())

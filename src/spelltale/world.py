"""
HTTP client for the world simulation endpoints.

Unlike the reading core, these calls surface failures to the caller as
``WorldServiceError`` with an actionable message. Only the health check
degrades to a status dictionary.

``AutoSimulator`` steps a world on a fixed interval; its failures are logged
and the loop keeps running.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import httpx

from .config import ClientConfig
from .errors import WorldServiceError
from .identity import SessionIdentity
from .models import CharacterAction, CharacterData, GMCommand, WorldData
from .scheduler import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger("spelltale")


class WorldClient:
    """Worlds, characters, GM commands and saved sessions.

    Args:
        config: Client configuration.
        identity: Identity of the game master. Defaults to a ``gm_`` prefixed id.
        http_client: Pre-built httpx client. Not closed by ``aclose()``.
        transport: httpx transport for the internally built client.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        identity: SessionIdentity | None = None,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.identity = identity or SessionIdentity(key="gm_user_id", prefix="gm_")
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.request_timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        logger.info(f"World client initialized: {self.config.base_url}")

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        **kwargs: Any,
    ) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException:
            raise WorldServiceError(
                f"Failed to {action}: the simulation service is not responding"
            ) from None
        except httpx.HTTPStatusError as e:
            raise WorldServiceError(
                f"Failed to {action}: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from None
        except httpx.RequestError as e:
            raise WorldServiceError(f"Failed to {action}: {e}") from None
        except ValueError as e:
            raise WorldServiceError(f"Failed to {action}: malformed response ({e})") from None

    # -- Worlds --------------------------------------------------------------

    async def create_world(self, world: WorldData) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/world/create",
            "create world",
            params={"user_id": self.identity.id()},
            json=world.model_dump(exclude_none=True),
        )

    async def get_worlds(self) -> dict[str, Any]:
        return await self._request("GET", f"/worlds/{self.identity.id()}", "get worlds")

    async def simulate_world(self, world_id: str) -> dict[str, Any]:
        """Advance the simulation of a world by one step."""
        return await self._request("POST", f"/world/{world_id}/simulate", "simulate world")

    # -- Characters ----------------------------------------------------------

    async def create_character(self, world_id: str, character: CharacterData) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/character/create/{world_id}",
            "create character",
            json=character.model_dump(exclude_none=True),
        )

    async def get_characters(self, world_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/characters/{world_id}", "get characters")

    async def perform_action(self, action: CharacterAction) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/character/action",
            "perform character action",
            json=action.model_dump(exclude_none=True),
        )

    # -- Game master ---------------------------------------------------------

    async def execute_command(self, world_id: str, command: GMCommand) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/gm/command",
            "execute GM command",
            params={"world_id": world_id},
            json=command.model_dump(),
        )

    async def save_session(self, world_id: str, session_name: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/session/save",
            "save session",
            json={"world_id": world_id, "session_name": session_name},
        )

    async def get_sessions(self, world_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/sessions/{world_id}", "get sessions")

    async def check_health(self) -> dict[str, Any]:
        """Service health; never raises.

        Returns:
            The service's health body, or ``{"status": "error", "message": ...}``.
        """
        try:
            return await self._request("GET", "/health", "check health")
        except WorldServiceError as e:
            logger.error(f"Health check failed: {e}")
            return {"status": "error", "message": str(e)}

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "WorldClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class AutoSimulator:
    """Steps a world's simulation every ``interval`` seconds until stopped.

    A failed step is logged and counted; the next one is still scheduled.
    A tick that arrives while the previous step is still running is skipped.

    Args:
        world: Client used to call ``simulate_world``.
        world_id: World to simulate.
        scheduler: Timer capability. Defaults to the running event loop.
        interval: Seconds between steps. Defaults to ``config.simulation_interval``.
        on_step: Called with each successful step's response body.

    Usage:
        simulator = AutoSimulator(world, "world-1")
        simulator.start()
        ...
        simulator.stop()
    """

    def __init__(
        self,
        world: WorldClient,
        world_id: str,
        scheduler: Scheduler | None = None,
        interval: float | None = None,
        on_step: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.world = world
        self.world_id = world_id
        self.scheduler = scheduler or AsyncioScheduler()
        self.interval = interval if interval is not None else world.config.simulation_interval
        if self.interval <= 0:
            raise ValueError("interval must be positive")
        self.on_step = on_step
        self.steps = 0
        self.failures = 0
        self._timer: TimerHandle | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    def start(self) -> bool:
        """Start stepping; the first step runs one interval from now.

        Returns:
            False if the simulator was already running.
        """
        if self.is_running:
            return False
        logger.info(f"Auto simulation of world {self.world_id} every {self.interval}s")
        self._arm()
        return True

    def _arm(self) -> None:
        self._timer = self.scheduler.call_later(self.interval, self._tick)

    def _tick(self) -> None:
        if self._timer is None:
            return
        self._arm()
        if self._task is not None and not self._task.done():
            logger.debug(f"Simulation step of world {self.world_id} still running, skipping")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, skipping simulation step")
            return
        self._task = loop.create_task(self._step())

    async def _step(self) -> None:
        try:
            result = await self.world.simulate_world(self.world_id)
        except WorldServiceError as e:
            self.failures += 1
            logger.error(f"Simulation step failed: {e}")
            return
        self.steps += 1
        if self.on_step is not None:
            self.on_step(result)

    async def drain(self) -> None:
        """Wait for the step in flight, if any."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    def stop(self) -> None:
        """Cancel the next step and any step in flight."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug(f"Auto simulation of world {self.world_id} stopped")

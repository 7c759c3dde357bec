"""
Client configuration for the Spelltale reading client.

Configuration is an explicit value handed to every component at construction.
``ClientConfig.from_env()`` is the only place that looks at the process
environment (and an optional ``.env`` file).
"""

from __future__ import annotations

import logging
import os

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("spelltale")

DEFAULT_API_URL = "http://localhost:8000"

# Checked in order; the first non-empty value wins.
API_URL_ENV_VARS = ("SPELLTALE_API_URL", "VITE_API_URL")


class ClientConfig(BaseModel):
    """Construction-time settings shared by the content, world and realtime clients.

    Attributes:
        base_url: Root URL of the story service (no trailing slash).
        request_timeout: Timeout in seconds for every HTTP request.
        prefetch_delay: Seconds to wait before warming the cache with page n+1.
        reveal_tick: Seconds between two revealed characters.
        continuation_delay: Seconds a fully revealed page stays on screen before
            more content is requested.
        keepalive_interval: Seconds between two realtime keepalive pings.
        simulation_interval: Seconds between two automatic world simulation steps.
    """

    base_url: str = DEFAULT_API_URL
    request_timeout: float = Field(default=10.0, gt=0)
    prefetch_delay: float = Field(default=1.0, ge=0)
    reveal_tick: float = Field(default=0.02, gt=0)
    continuation_delay: float = Field(default=4.0, ge=0)
    keepalive_interval: float = Field(default=30.0, gt=0)
    simulation_interval: float = Field(default=5.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value:
            return DEFAULT_API_URL
        return value.rstrip("/")

    @property
    def ws_url(self) -> str:
        """Websocket root derived from the HTTP base URL."""
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):]
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):]
        return self.base_url

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """Build a config from environment variables and an optional ``.env`` file.

        Args:
            **overrides: Explicit values that take precedence over the environment.

        Returns:
            A resolved ClientConfig.
        """
        if not load_dotenv(find_dotenv(usecwd=True)):
            logger.debug("No .env file found, using process environment")

        values: dict = {}
        for name in API_URL_ENV_VARS:
            url = os.getenv(name, "").strip()
            if url:
                values["base_url"] = url
                break

        timeout = os.getenv("SPELLTALE_REQUEST_TIMEOUT", "").strip()
        if timeout:
            try:
                values["request_timeout"] = float(timeout)
            except ValueError:
                logger.warning(
                    f"Ignoring invalid SPELLTALE_REQUEST_TIMEOUT value '{timeout}'"
                )

        values.update(overrides)
        config = cls(**values)
        logger.debug(f"Resolved API URL: {config.base_url}")
        return config

"""
Per-session user identity.

The identity is an opaque string computed once, lazily, and persisted in an
injectable key-value store so a session keeps the same id across clients.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

from shortuuid import ShortUUID

logger = logging.getLogger("spelltale")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_random_source = ShortUUID(alphabet=_BASE36)


class KeyValueStore(Protocol):
    """Minimal session-scoped key-value capability."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class InMemoryStore:
    """Key-value store that lives as long as the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base 36."""
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_session_id(prefix: str = "user_") -> str:
    """Build ``prefix + 9 random base36 chars + base36(epoch milliseconds)``."""
    stamp = to_base36(int(time.time() * 1000))
    return f"{prefix}{_random_source.random(length=9)}{stamp}"


class SessionIdentity:
    """Stable opaque identifier for the lifetime of a session.

    Args:
        store: Where the identifier is persisted. Defaults to an in-memory store.
        key: Store key holding the identifier.
        prefix: Prefix of newly generated identifiers.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        key: str = "spelltale_user_id",
        prefix: str = "user_",
    ) -> None:
        self.store = store if store is not None else InMemoryStore()
        self.key = key
        self.prefix = prefix
        self._value: str | None = None

    def id(self) -> str:
        """Return the session identifier, generating and persisting it on first use."""
        if self._value is None:
            stored = self.store.get(self.key)
            if not stored:
                stored = generate_session_id(self.prefix)
                self.store.set(self.key, stored)
                logger.info(f"Generated session id {stored}")
            self._value = stored
        return self._value

    def __str__(self) -> str:
        return self.id()

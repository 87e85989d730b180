"""In-memory TTL caches.

`TTLCache` is the generic store. `ResultCache` keys command results by
(command, OS, intent) so repeated commands inside one run are served from
memory instead of the shell.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

if TYPE_CHECKING:
    from terminal_assistant.graph.state import CommandResult


class TTLCache:
    """In-memory cache with time-based expiration."""

    def __init__(self, ttl_sec: float, clock: Callable[[], float] = time.time) -> None:
        """Initialize the cache with a TTL in seconds."""

        self._ttl_sec = ttl_sec
        self._clock = clock
        self._store: Dict[Any, Any] = {}
        self._expires: Dict[Any, float] = {}

    def get(self, key: Any) -> Optional[Any]:
        """Return a cached value if it is not expired."""

        expires_at = self._expires.get(key)
        if expires_at is None:
            return None
        if self._clock() > expires_at:
            self._store.pop(key, None)
            self._expires.pop(key, None)
            return None
        return self._store.get(key)

    def set(self, key: Any, value: Any) -> None:
        """Store a value with a TTL."""

        self._store[key] = value
        self._expires[key] = self._clock() + self._ttl_sec

    def clear(self) -> None:
        self._store.clear()
        self._expires.clear()

    def __len__(self) -> int:
        return len(self._store)


def result_cache_key(command: str, os_name: str, intent: str) -> Tuple[str, str, str]:
    """Return the cache key for a command result."""

    return (command.strip(), (os_name or "").lower(), (intent or "").lower())


class ResultCache:
    """Command result memo keyed by (command, OS, intent).

    Only successful results (exit code 0) are stored. Hits come back as a copy
    with ``from_cache=True``; the stored result is never mutated.
    """

    def __init__(self, ttl_sec: float, clock: Callable[[], float] = time.time) -> None:
        self._cache = TTLCache(ttl_sec, clock=clock)

    def get(self, command: str, os_name: str, intent: str) -> Optional[CommandResult]:
        cached = self._cache.get(result_cache_key(command, os_name, intent))
        if cached is None:
            return None
        return cached.model_copy(update={"from_cache": True})

    def put(self, result: CommandResult, os_name: str, intent: str) -> bool:
        """Store a result when it is cacheable. Return True when stored."""

        if result.exit_code != 0 or result.skipped or result.error:
            return False
        self._cache.set(result_cache_key(result.command, os_name, intent), result)
        return True

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

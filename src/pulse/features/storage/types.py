from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from pulse.core.types import Clock


class Store(str, Enum):
    # client-local, survives across sessions (localStorage)
    DURABLE = "durable"
    # short-lived, resettable, sent with requests (cookies)
    PAIRED = "paired"


class StorageUnavailable(Exception):
    """Raised by a backend when it refuses access (privacy mode, quota, disabled)."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...
    def delete(self, key: str) -> None: ...


@dataclass
class MemoryStore:
    """
    Durable store kept in memory for the lifetime of a profile. TTL is ignored.
    """

    data: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


@dataclass
class CookieJar:
    """
    Paired store with cookie expiry semantics:
      - ttl None: no expiry (lives as long as the jar)
      - ttl <= 0: delete
      - expired entries read as absent and are dropped
    """

    clock: Clock
    _cookies: dict[str, tuple[str, datetime | None]] = field(default_factory=dict, init=False, repr=False)

    def get(self, key: str) -> str | None:
        entry = self._cookies.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock.now():
            del self._cookies[key]
            return None
        return value

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            self.delete(key)
            return
        expires_at = None if ttl_seconds is None else self.clock.now() + timedelta(seconds=ttl_seconds)
        self._cookies[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        self._cookies.pop(key, None)

    def evict_all(self) -> None:
        # browser "clear cookies"
        self._cookies.clear()


@dataclass
class DeniedStore:
    """Backend that refuses every operation."""

    reason: str = "storage disabled"

    def get(self, key: str) -> str | None:
        raise StorageUnavailable(self.reason)

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        raise StorageUnavailable(self.reason)

    def delete(self, key: str) -> None:
        raise StorageUnavailable(self.reason)


ANON_KEY = "pulse_anon"
SESSION_KEY = "pulse_sess"
SESSION_AT_KEY = "pulse_sess_at"
SEEN_MARKER_KEY = "pulse_seen"
SESSION_MARKER_KEY = "pulse_sess_started"

# every key the client writes, per store; reset() clears all of them
DURABLE_KEYS = (ANON_KEY, SEEN_MARKER_KEY)
PAIRED_KEYS = (ANON_KEY, SESSION_KEY, SESSION_AT_KEY, SEEN_MARKER_KEY, SESSION_MARKER_KEY)

YEAR_S = 365 * 86400
DAY_S = 86400

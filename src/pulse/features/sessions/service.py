from __future__ import annotations

import logging
from dataclasses import dataclass

from pulse.core.config import parse_session_timeout
from pulse.core.ids import SESSION_PREFIX, TokenFactory
from pulse.core.types import Clock, epoch_ms
from pulse.features.storage.markers import EmissionMarkers, Marker
from pulse.features.storage.service import StorageAdapter
from pulse.features.storage.types import DAY_S, SESSION_AT_KEY, SESSION_KEY, Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionResolution:
    session_id: str
    is_new: bool
    last_activity_ms: int
    # cookie lifetime for session-scoped keys
    ttl_seconds: int = DAY_S


class SessionResolver:
    """
    Session token with a sliding inactivity window, kept in the paired store.

    Expired if no token exists or (now - last_activity) > timeout.
    Every call rewrites last_activity, so each page view extends the session.
    """

    def __init__(
        self,
        *,
        storage: StorageAdapter,
        tokens: TokenFactory,
        clock: Clock,
    ) -> None:
        self._storage = storage
        self._tokens = tokens
        self._clock = clock
        self._markers = EmissionMarkers(storage)

    def resolve(self, timeout_seconds: int | str | None) -> SessionResolution:
        timeout_s = parse_session_timeout(timeout_seconds)
        now_ms = epoch_ms(self._clock.now())

        last_ms = _parse_ms(self._storage.read(Store.PAIRED, SESSION_AT_KEY))
        session_id = self._storage.read(Store.PAIRED, SESSION_KEY)

        ttl_s = session_ttl_s(timeout_s)

        expired = not session_id or (now_ms - last_ms) > timeout_s * 1000
        if expired:
            session_id = self._tokens.new_token(SESSION_PREFIX)
            self._markers.clear(Marker.SESSION_START)
            logger.info("new session started", extra={"session_id": session_id})
        else:
            logger.debug("existing session_id", extra={"session_id": session_id})

        # both refreshed on every resolution
        self._storage.write(Store.PAIRED, SESSION_KEY, session_id, ttl_s)
        self._storage.write(Store.PAIRED, SESSION_AT_KEY, str(now_ms), ttl_s)
        return SessionResolution(
            session_id=session_id, is_new=expired, last_activity_ms=now_ms, ttl_seconds=ttl_s
        )


def session_ttl_s(timeout_s: int) -> int:
    """Cookie lifetime for session keys: at least a day, never shorter than the timeout."""
    return max(DAY_S, timeout_s)


def _parse_ms(raw: str | None) -> int:
    try:
        return int(raw or 0)
    except ValueError:
        return 0


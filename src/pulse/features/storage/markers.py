from __future__ import annotations

from enum import Enum

from .service import StorageAdapter
from .types import DAY_S, SEEN_MARKER_KEY, SESSION_MARKER_KEY, YEAR_S, Store


class Marker(str, Enum):
    # fires once per identity
    FIRST_SEEN = SEEN_MARKER_KEY
    # fires once per session
    SESSION_START = SESSION_MARKER_KEY


_MARKER_TTL_S = {Marker.FIRST_SEEN: YEAR_S, Marker.SESSION_START: DAY_S}

# first_seen lives with the identity (durable, mirrored); session_start with the session
_MARKER_STORES = {
    Marker.FIRST_SEEN: (Store.DURABLE, Store.PAIRED),
    Marker.SESSION_START: (Store.PAIRED,),
}


class EmissionMarkers:
    """
    Persisted "already fired" flags. Read before each attempt, set after the
    event is handed to transport.
    """

    def __init__(self, storage: StorageAdapter) -> None:
        self._storage = storage

    def is_set(self, marker: Marker) -> bool:
        return any(self._storage.read(store, marker.value) == "1" for store in _MARKER_STORES[marker])

    def mark(self, marker: Marker, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds or _MARKER_TTL_S[marker]
        for store in _MARKER_STORES[marker]:
            self._storage.write(store, marker.value, "1", ttl)

    def clear(self, marker: Marker) -> None:
        for store in _MARKER_STORES[marker]:
            self._storage.remove(store, marker.value)

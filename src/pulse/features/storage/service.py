from __future__ import annotations

import logging

from .types import KeyValueStore, Store

logger = logging.getLogger(__name__)


class StorageAdapter:
    """
    Best-effort read/write over the durable and paired stores of one profile.

    Nothing here raises to the caller:
    - a failed write keeps the value in a volatile map for this page's lifetime
    - a read that fails or finds nothing falls back to that map, else is "not found"

    One adapter per page load; the volatile map is never shared between pages.
    """

    def __init__(self, *, durable: KeyValueStore, paired: KeyValueStore) -> None:
        self._backends: dict[Store, KeyValueStore] = {Store.DURABLE: durable, Store.PAIRED: paired}
        self._volatile: dict[tuple[Store, str], str] = {}

    def read(self, store: Store, key: str) -> str | None:
        try:
            value = self._backends[store].get(key)
        except Exception as e:
            logger.warning(
                "storage read failed, using volatile value",
                extra={"store": store.value, "key": key},
                exc_info=e,
            )
            return self._volatile.get((store, key))
        return value or self._volatile.get((store, key))

    def write(self, store: Store, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        """
        Returns True if the value reached the real store.
        """
        try:
            self._backends[store].set(key, value, ttl_seconds)
        except Exception as e:
            logger.warning(
                "storage write failed, keeping volatile value",
                extra={"store": store.value, "key": key},
                exc_info=e,
            )
            self._volatile[(store, key)] = value
            return False
        self._volatile.pop((store, key), None)
        return True

    def remove(self, store: Store, key: str) -> None:
        try:
            self._backends[store].delete(key)
        except Exception as e:
            logger.warning("storage remove failed", extra={"store": store.value, "key": key}, exc_info=e)

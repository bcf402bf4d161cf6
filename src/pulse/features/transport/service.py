from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

import httpx
import simpy

from pulse.core.config import PulseConfig
from pulse.features.events.schema import EventEnvelope, json_dumps

logger = logging.getLogger(__name__)

BEACON_QUOTA_BYTES = 64 * 1024
BEACON_CONTENT_TYPE = "text/plain;charset=UTF-8"

FETCH_HEADERS = {
    "Content-Type": "application/json",
    "Cache-Control": "no-store",
}


class HttpPoster(Protocol):
    def post(self, url: str, body: str, headers: Mapping[str, str]) -> None: ...


class HttpxPoster:
    """
    POST without credentials: no cookies are sent and none are kept from the
    response. The response is never inspected.

    The client is opened on first use; close() releases its connection pool.
    """

    def __init__(self, *, timeout_seconds: float = 5.0, client: httpx.Client | None = None) -> None:
        self._timeout_seconds = timeout_seconds
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout_seconds, follow_redirects=False)
        return self._client

    @property
    def closed(self) -> bool:
        return self._client is None or self._client.is_closed

    def post(self, url: str, body: str, headers: Mapping[str, str]) -> None:
        client = self.client
        try:
            client.post(url, content=body.encode("utf-8"), headers=dict(headers))
        finally:
            client.cookies.clear()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


class BeaconQueue:
    """
    Unload-safe hand-off: send_beacon() only enqueues and answers at once;
    delivery happens in a SimPy process owned by the browser side, so it
    completes even if the page goes away. Rejects bodies over the quota or
    when the queue is full.
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        poster: HttpPoster,
        quota_bytes: int = BEACON_QUOTA_BYTES,
        capacity: int = 32,
    ) -> None:
        self._env = env
        self._poster = poster
        self.quota_bytes = int(quota_bytes)
        self._store = simpy.Store(env, capacity=capacity)
        self._proc_started = False

    def send_beacon(self, url: str, body: str) -> bool:
        if len(body.encode("utf-8")) > self.quota_bytes:
            return False
        if len(self._store.items) >= self._store.capacity:
            return False
        self._store.put((url, body))
        self._start()
        return True

    def pending(self) -> int:
        return len(self._store.items)

    def _start(self) -> None:
        if self._proc_started:
            return
        self._proc_started = True
        self._env.process(self._deliver_proc())

    def _deliver_proc(self):
        while True:
            url, body = yield self._store.get()
            try:
                self._poster.post(url, body, {"Content-Type": BEACON_CONTENT_TYPE})
            except Exception as e:
                logger.warning("beacon delivery failed", extra={"url": url}, exc_info=e)


class Transport:
    """
    Fire-and-forget delivery. send() returns nothing, never raises and never
    waits on the network:
      1. beacon hand-off
      2. if missing or rejected: a fallback request scheduled on the page loop
    No retry, no queue of its own.
    """

    def __init__(
        self,
        *,
        cfg: PulseConfig,
        env: simpy.Environment,
        poster: HttpPoster | None,
        beacon: BeaconQueue | None = None,
        debug: bool = False,
    ) -> None:
        self._cfg = cfg
        self._env = env
        self._poster = poster
        self._beacon = beacon
        self._debug = debug

    def send(self, endpoint: str, envelope: EventEnvelope) -> None:
        if not self._cfg.base:
            logger.debug("no data-base configured, not sending", extra={"event_type": envelope.kind.value})
            return

        url = self._cfg.url_for(endpoint)
        try:
            body = json_dumps(envelope.to_wire(), pretty=self._debug)
        except Exception as e:
            logger.warning("payload serialization failed", extra={"url": url}, exc_info=e)
            return

        logger.debug("sending", extra={"url": url, "event_type": envelope.kind.value})

        try:
            if self._beacon is not None and self._beacon.send_beacon(url, body):
                logger.info("beacon sent", extra={"url": url, "event_type": envelope.kind.value})
                return
        except Exception as e:
            logger.warning("beacon failed, falling back", extra={"url": url}, exc_info=e)

        try:
            if self._poster is None:
                logger.warning("no fallback transport available, event dropped", extra={"url": url})
                return
            self._env.process(self._fetch_proc(url, body))
            logger.debug("fetch fallback scheduled", extra={"url": url})
        except Exception as e:
            logger.warning("fetch failed silently", extra={"url": url}, exc_info=e)

    def _fetch_proc(self, url: str, body: str):
        yield self._env.timeout(0)
        try:
            self._poster.post(url, body, FETCH_HEADERS)
        except Exception as e:
            logger.warning("fetch failed silently", extra={"url": url}, exc_info=e)


class EventSender(Protocol):
    def send(self, endpoint: str, envelope: EventEnvelope) -> None: ...

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

import simpy

from pulse.core.config import TransportConfig
from pulse.core.types import SimClock
from pulse.features.storage.types import CookieJar, KeyValueStore, MemoryStore
from pulse.features.transport.service import BeaconQueue, HttpPoster, HttpxPoster

from .types import Form, SubmitEvent

logger = logging.getLogger(__name__)

CONSENT_SIGNAL = "pulse:consent"
REVOKE_SIGNAL = "pulse:revoke"
SUBMIT_SIGNAL = "submit"

Listener = Callable[[Any], None]


@dataclass
class _Registration:
    fn: Listener
    once: bool
    capture: bool


class SignalBus:
    """
    Synchronous event dispatch, like window/document.dispatchEvent:
    capture listeners run first, `once` listeners are removed before they run,
    a failing listener is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[_Registration]] = {}

    def add_listener(self, name: str, fn: Listener, *, once: bool = False, capture: bool = False) -> None:
        regs = self._listeners.setdefault(name, [])
        if any(r.fn is fn and r.capture == capture for r in regs):
            return
        regs.append(_Registration(fn=fn, once=once, capture=capture))

    def remove_listener(self, name: str, fn: Listener) -> None:
        self._listeners[name] = [r for r in self._listeners.get(name, []) if r.fn is not fn]

    def _is_registered(self, name: str, reg: _Registration) -> bool:
        return any(r is reg for r in self._listeners.get(name, []))

    def _discard(self, name: str, reg: _Registration) -> None:
        self._listeners[name] = [r for r in self._listeners.get(name, []) if r is not reg]

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, []))

    def dispatch(self, name: str, event: Any = None) -> None:
        regs = sorted(self._listeners.get(name, []), key=lambda r: not r.capture)
        for reg in regs:
            # removed by an earlier listener in this dispatch
            if not self._is_registered(name, reg):
                continue
            if reg.once:
                self._discard(name, reg)
            try:
                reg.fn(event)
            except Exception:
                logger.exception("listener failed", extra={"key": name})


class BrowserProfile:
    """
    One browser profile: the durable and paired stores shared by every page
    (and tab) opened in it, on one event loop / timeline. The network side
    (HTTP poster, beacon queue) is also per profile, not per page.

    A poster passed in belongs to the caller; one the profile creates is
    closed by close().
    """

    def __init__(
        self,
        *,
        env: simpy.Environment | None = None,
        start_dt: datetime | None = None,
        durable: KeyValueStore | None = None,
        paired: KeyValueStore | None = None,
        poster: HttpPoster | None = None,
        transport_cfg: TransportConfig | None = None,
    ) -> None:
        self.env = env or simpy.Environment()
        self.clock = SimClock(self.env, start_dt)
        self.durable: KeyValueStore = durable if durable is not None else MemoryStore()
        self.paired: KeyValueStore = paired if paired is not None else CookieJar(self.clock)
        self.transport_cfg = transport_cfg or TransportConfig()

        self._own_poster: HttpxPoster | None = None
        if poster is None:
            self._own_poster = poster = HttpxPoster(timeout_seconds=self.transport_cfg.timeout_seconds)
        self.poster: HttpPoster = poster
        self._beacon: BeaconQueue | None = None

    @property
    def beacon(self) -> BeaconQueue:
        if self._beacon is None:
            self._beacon = BeaconQueue(
                env=self.env, poster=self.poster, quota_bytes=self.transport_cfg.beacon_quota_bytes
            )
        return self._beacon

    def close(self) -> None:
        if self._own_poster is not None:
            self._own_poster.close()

    def open_page(self, url: str, **kwargs: Any) -> Page:
        return Page(profile=self, url=url, **kwargs)


@dataclass
class Page:
    """
    One load of a document. Window globals, signals, forms and the native
    submissions that actually went through.
    """

    profile: BrowserProfile
    url: str
    title: str = ""
    referrer: str = ""
    user_agent: str = ""
    language: str = "en-US"
    viewport: tuple[int, int] = (1280, 800)
    consent: bool = False

    globals: dict[str, Any] = field(default_factory=dict)
    window: SignalBus = field(default_factory=SignalBus)
    document: SignalBus = field(default_factory=SignalBus)
    submitted: list[Form] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.globals.setdefault("PulseConsent", self.consent)

    @property
    def env(self) -> simpy.Environment:
        return self.profile.env

    @property
    def hostname(self) -> str:
        return urlsplit(self.url).hostname or ""

    def grant_consent(self) -> None:
        self.window.dispatch(CONSENT_SIGNAL)

    def revoke_consent(self) -> None:
        self.window.dispatch(REVOKE_SIGNAL)

    def submit(self, form: Form) -> SubmitEvent:
        """
        Dispatch a submit event; the native submission proceeds unless a
        listener prevented it.
        """
        ev = SubmitEvent(form=form)
        self.document.dispatch(SUBMIT_SIGNAL, ev)
        if not ev.default_prevented:
            self.submitted.append(form)
        return ev

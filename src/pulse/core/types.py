from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

import simpy

if TYPE_CHECKING:
    from pulse.core.config import PulseConfig
    from pulse.core.ids import TokenFactory
    from pulse.features.storage.service import StorageAdapter


class Clock(Protocol):
    def now(self) -> datetime: ...


class SimClock:
    """
    Wall clock derived from the page event loop: start_dt + env.now seconds.
    Profiles and pages built on the same env share one timeline.
    """

    def __init__(self, env: simpy.Environment, start_dt: datetime | None = None) -> None:
        self.env = env
        self.start_dt = start_dt or datetime.now(UTC)

    def now(self) -> datetime:
        return self.start_dt + timedelta(seconds=float(self.env.now))


def epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def iso_utc(dt: datetime) -> str:
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class PulseContext:
    """
    Everything one script instance needs, built once per page load and
    threaded through resolvers, assembler and transport.
    """

    cfg: PulseConfig
    storage: StorageAdapter
    clock: Clock
    tokens: TokenFactory

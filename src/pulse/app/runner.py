from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

import simpy

from pulse.core.config import AppConfig, PageLoadConfig, load_config, parse_attributes
from pulse.core.logging import get_logger
from pulse.features.bootstrap.service import build_transport, install_pulse
from pulse.features.events.schema import EventEnvelope
from pulse.features.lifecycle.service import reset
from pulse.features.page.service import BrowserProfile, Page
from pulse.features.page.types import Form
from pulse.features.storage.duckdb_adapter import DuckDBProfileAdapter
from pulse.features.storage.service import StorageAdapter
from pulse.features.storage.types import ANON_KEY, Store
from pulse.features.transport.service import EventSender


@dataclass
class CountingSender:
    inner: EventSender
    counts: Counter = field(default_factory=Counter)

    def send(self, endpoint: str, envelope: EventEnvelope) -> None:
        self.counts[envelope.kind.value] += 1
        self.inner.send(endpoint, envelope)


@dataclass(frozen=True)
class RunResult:
    anon_id: str | None
    pages: int
    events: dict[str, int]


def _open_page(profile: BrowserProfile, cfg: AppConfig, load: PageLoadConfig) -> Page:
    return profile.open_page(
        load.url,
        title=load.title,
        referrer=load.referrer,
        user_agent=cfg.visit.user_agent,
        consent=cfg.visit.consent == "flag",
    )


def run_visit(cfg: AppConfig) -> RunResult:
    logger = get_logger("pulse", cfg.logging.level)

    adapter = DuckDBProfileAdapter(cfg.storage.duckdb_path, clean_slate=cfg.storage.clean_slate)
    adapter.open()
    counts: Counter = Counter()
    env = simpy.Environment()
    profile = BrowserProfile(env=env, durable=adapter.durable_store(), transport_cfg=cfg.transport)
    try:
        profile.paired = adapter.cookie_jar(profile.clock)

        for load in cfg.visit.pages:
            if load.after_seconds > 0:
                env.run(until=env.now + load.after_seconds)

            page = _open_page(profile, cfg, load)
            pulse_cfg = parse_attributes(cfg.attributes, hostname=page.hostname)
            sender = CountingSender(build_transport(cfg=pulse_cfg, page=page, debug=cfg.logging.debug))
            install_pulse(page, pulse_cfg, transport=sender)

            if cfg.visit.consent == "signal":
                page.grant_consent()
            if load.submit:
                page.submit(Form.from_fields(load.submit))

            # let deliveries run before the next navigation
            env.run()
            counts.update(sender.counts)

        anon_id = StorageAdapter(durable=profile.durable, paired=profile.paired).read(Store.DURABLE, ANON_KEY)
        logger.info("visit finished", extra={"anon_id": anon_id})
        return RunResult(anon_id=anon_id, pages=len(cfg.visit.pages), events=dict(counts))
    finally:
        profile.close()
        adapter.close()


def run(config_path: str) -> RunResult:
    cfg = load_config(config_path)
    return run_visit(cfg)


def reset_profile(config_path: str) -> None:
    cfg = load_config(config_path)
    get_logger("pulse", cfg.logging.level)

    adapter = DuckDBProfileAdapter(cfg.storage.duckdb_path)
    adapter.open()
    try:
        profile = BrowserProfile(durable=adapter.durable_store())
        profile.paired = adapter.cookie_jar(profile.clock)
        reset(StorageAdapter(durable=profile.durable, paired=profile.paired))
    finally:
        adapter.close()

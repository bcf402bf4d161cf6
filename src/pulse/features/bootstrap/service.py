from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any

from pulse.core.config import PulseConfig, parse_attributes
from pulse.core.ids import RandomTokens, TokenFactory
from pulse.core.types import PulseContext
from pulse.features.consent.service import ConsentGate
from pulse.features.lifecycle.service import LifecycleOrchestrator, PulseHandle, reset
from pulse.features.page.service import Page
from pulse.features.storage.service import StorageAdapter
from pulse.features.transport.service import EventSender, Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PulseInstance:
    ctx: PulseContext
    gate: ConsentGate
    orchestrator: LifecycleOrchestrator
    handle: PulseHandle


def build_transport(*, cfg: PulseConfig, page: Page, debug: bool = False) -> Transport:
    # poster and beacon queue are the profile's, shared by all its pages
    profile = page.profile
    return Transport(cfg=cfg, env=page.env, poster=profile.poster, beacon=profile.beacon, debug=debug)


def install_pulse(
    page: Page,
    config: PulseConfig | Mapping[str, Any] | None = None,
    *,
    transport: EventSender | None = None,
    tokens: TokenFactory | None = None,
    debug: bool = False,
) -> PulseInstance:
    """
    What the script does when a page loads it: build the per-page context,
    expose `Pulse.reset`, arm the consent gate. With PulseConsent already true
    the orchestrator runs before this returns.
    """
    cfg = config if isinstance(config, PulseConfig) else parse_attributes(config, hostname=page.hostname)

    storage = StorageAdapter(durable=page.profile.durable, paired=page.profile.paired)
    ctx = PulseContext(
        cfg=cfg,
        storage=storage,
        clock=page.profile.clock,
        tokens=tokens or RandomTokens(),
    )

    sender = transport or build_transport(cfg=cfg, page=page, debug=debug)
    orchestrator = LifecycleOrchestrator(ctx=ctx, page=page, transport=sender)

    def on_grant() -> None:
        try:
            orchestrator.start()
        except Exception:
            # a broken pipeline must never break the host page
            logger.exception("initialisation failed")

    handle = PulseHandle(reset=partial(reset, storage))
    page.globals["Pulse"] = handle

    gate = ConsentGate(page=page, on_grant=on_grant, on_revoke=handle.reset)
    gate.arm()

    return PulseInstance(ctx=ctx, gate=gate, orchestrator=orchestrator, handle=handle)

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pulse.core.config import PulseConfig
from pulse.core.types import Clock, iso_utc

from .schema import SCHEMA_VERSION, EventEnvelope, EventKind, KindPayload

logger = logging.getLogger(__name__)


class EventAssembler:
    """
    Builds immutable envelopes. Identity and common fields always win over
    enrichment keys of the same name.
    """

    def __init__(self, *, cfg: PulseConfig, clock: Clock, schema_version: str = SCHEMA_VERSION) -> None:
        self._cfg = cfg
        self._clock = clock
        self._schema_version = schema_version

    def build(
        self,
        kind: EventKind,
        *,
        anon_id: str,
        session_id: str,
        payload: KindPayload,
        enrichment: Mapping[str, Any] | None = None,
    ) -> EventEnvelope:
        if not anon_id or not session_id:
            raise ValueError(f"{kind.value} requires anon_id and session_id")

        envelope = EventEnvelope(
            kind=kind,
            created_at=iso_utc(self._clock.now()),
            schema_version=self._schema_version,
            anon_id=anon_id,
            session_id=session_id,
            mode=self._cfg.mode,
            domain=self._cfg.site,
            payload=payload,
            enrichment=enrichment or {},
        )

        logger.debug(
            "event assembled",
            extra={"event_type": kind.value, "anon_id": anon_id, "session_id": session_id},
        )
        return envelope

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any

SCHEMA_VERSION = "1.5.0"


class EventKind(str, Enum):
    FIRST_SEEN = "first_seen"
    SESSION_START = "session_start"
    PAGE_VIEW = "page_view"
    LEAD = "lead"


@dataclass(frozen=True, slots=True)
class FirstSeenPayload:
    first_seen_ts: str
    user_agent: str = ""


@dataclass(frozen=True, slots=True)
class SessionStartPayload:
    user_agent: str = ""


@dataclass(frozen=True, slots=True)
class PageViewPayload:
    pageview_id: str


@dataclass(frozen=True, slots=True)
class LeadPayload:
    lead_id: str
    form_data: Mapping[str, Any] = field(default_factory=dict)
    # last page_view of the current session, if one was emitted
    pageview_id: str | None = None


KindPayload = FirstSeenPayload | SessionStartPayload | PageViewPayload | LeadPayload

PAYLOAD_TYPES: dict[EventKind, type] = {
    EventKind.FIRST_SEEN: FirstSeenPayload,
    EventKind.SESSION_START: SessionStartPayload,
    EventKind.PAGE_VIEW: PageViewPayload,
    EventKind.LEAD: LeadPayload,
}


@dataclass(frozen=True, slots=True)
class EventEnvelope:
    """
    One emitted record: fixed common fields, a payload typed by `kind`, and
    opaque enrichment. Wire precedence: enrichment < payload < common fields.
    """

    kind: EventKind
    created_at: str
    schema_version: str
    anon_id: str
    session_id: str
    mode: str
    domain: str
    payload: KindPayload
    enrichment: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} requires {expected.__name__}, got {type(self.payload).__name__}"
            )
        object.__setattr__(self, "enrichment", MappingProxyType(dict(self.enrichment)))

    def common_fields(self) -> dict[str, Any]:
        return {
            "event_type": self.kind.value,
            "created_at": self.created_at,
            "schema_version": self.schema_version,
            "anon_id": self.anon_id,
            "session_id": self.session_id,
            "mode": self.mode,
            "domain": self.domain,
        }

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.enrichment)
        for f in fields(self.payload):
            value = getattr(self.payload, f.name)
            if value is None:
                continue
            out[f.name] = dict(value) if isinstance(value, Mapping) else value
        out.update(self.common_fields())
        return out


def json_dumps(wire: dict[str, Any], *, pretty: bool = False) -> str:
    if pretty:
        return json.dumps(wire, indent=2, default=str)
    return json.dumps(wire, separators=(",", ":"), default=str)

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pulse.core.ids import LEAD_PREFIX, PAGEVIEW_PREFIX
from pulse.core.types import PulseContext, iso_utc
from pulse.features.enrichment.service import page_enrichment, serialize_form
from pulse.features.events.schema import (
    EventEnvelope,
    EventKind,
    FirstSeenPayload,
    KindPayload,
    LeadPayload,
    PageViewPayload,
    SessionStartPayload,
)
from pulse.features.events.service import EventAssembler
from pulse.features.identity.service import IdentityResolver
from pulse.features.page.service import SUBMIT_SIGNAL, Page
from pulse.features.page.types import Form
from pulse.features.sessions.service import SessionResolver
from pulse.features.storage.markers import EmissionMarkers, Marker
from pulse.features.storage.service import StorageAdapter
from pulse.features.storage.types import DURABLE_KEYS, PAIRED_KEYS, Store
from pulse.features.transport.service import EventSender

logger = logging.getLogger(__name__)

EnrichmentSource = Callable[[Page], Mapping[str, Any]]
FormSerializer = Callable[[Form], dict[str, Any]]


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    RESOLVING = "resolving"
    ACTIVE = "active"


@dataclass(frozen=True, slots=True)
class ResolvedIds:
    anon_id: str
    session_id: str


class LifecycleOrchestrator:
    """
    Per page load, once consent is granted:
      - resolve identity and session
      - session_start once per session, first_seen once per identity
      - page_view every load
      - lead on every form submission (capture listener, never blocks submit)

    Leads re-resolve identity/session at submission time, so they carry the
    identifiers current then, not the ones from page load.
    """

    def __init__(
        self,
        *,
        ctx: PulseContext,
        page: Page,
        transport: EventSender,
        enrichment: EnrichmentSource = page_enrichment,
        form_serializer: FormSerializer = serialize_form,
    ) -> None:
        self._ctx = ctx
        self._page = page
        self._transport = transport
        self._enrichment = enrichment
        self._form_serializer = form_serializer

        self.identity = IdentityResolver(storage=ctx.storage, tokens=ctx.tokens)
        self.sessions = SessionResolver(storage=ctx.storage, tokens=ctx.tokens, clock=ctx.clock)
        self.markers = EmissionMarkers(ctx.storage)
        self.assembler = EventAssembler(cfg=ctx.cfg, clock=ctx.clock)

        self.state = LifecycleState.UNINITIALIZED
        # (session_id, pageview_id) of the latest page_view
        self._last_pageview: tuple[str, str] | None = None

    # ----------------------------
    # Public API
    # ----------------------------
    def start(self) -> bool:
        """
        Runs at most once per page load. Returns False if already started.
        """
        if self.state is not LifecycleState.UNINITIALIZED:
            return False

        self.state = LifecycleState.RESOLVING
        logger.info("initialising...", extra={"state": self.state.value})

        ids = self._resolve()
        self._emit_page_view(ids)

        self._page.document.add_listener(SUBMIT_SIGNAL, self._on_submit, capture=True)
        self.state = LifecycleState.ACTIVE
        logger.info("active", extra={"state": self.state.value, **_ids_extra(ids)})
        return True

    # ----------------------------
    # Internal helpers
    # ----------------------------
    def _resolve(self) -> ResolvedIds:
        identity = self.identity.resolve()
        session = self.sessions.resolve(self._ctx.cfg.session_timeout_s)
        ids = ResolvedIds(anon_id=identity.anon_id, session_id=session.session_id)

        if session.is_new and not self.markers.is_set(Marker.SESSION_START):
            self._emit(
                EventKind.SESSION_START,
                ids,
                SessionStartPayload(user_agent=self._page.user_agent),
                enrichment=self._enrichment(self._page),
            )
            self.markers.mark(Marker.SESSION_START, ttl_seconds=session.ttl_seconds)

        if not self.markers.is_set(Marker.FIRST_SEEN):
            self._emit(
                EventKind.FIRST_SEEN,
                ids,
                FirstSeenPayload(first_seen_ts=iso_utc(self._ctx.clock.now()), user_agent=self._page.user_agent),
            )
            self.markers.mark(Marker.FIRST_SEEN)

        return ids

    def _emit_page_view(self, ids: ResolvedIds) -> None:
        pageview_id = self._ctx.tokens.new_token(PAGEVIEW_PREFIX)
        self._emit(
            EventKind.PAGE_VIEW,
            ids,
            PageViewPayload(pageview_id=pageview_id),
            enrichment=self._enrichment(self._page),
        )
        self._last_pageview = (ids.session_id, pageview_id)

    def _on_submit(self, event: Any) -> None:
        form = getattr(event, "form", None)
        if not isinstance(form, Form):
            return

        ids = self._resolve()

        # hidden ids for server-side visibility
        form.ensure_hidden("anon_id", ids.anon_id)
        form.ensure_hidden("session_id", ids.session_id)

        pageview_id = None
        if self._last_pageview is not None and self._last_pageview[0] == ids.session_id:
            pageview_id = self._last_pageview[1]

        logger.info("form submission detected", extra={"event_type": EventKind.LEAD.value, **_ids_extra(ids)})
        self._emit(
            EventKind.LEAD,
            ids,
            LeadPayload(
                lead_id=self._ctx.tokens.new_token(LEAD_PREFIX),
                form_data=self._form_serializer(form),
                pageview_id=pageview_id,
            ),
            enrichment=self._enrichment(self._page),
        )
        # no prevent_default(): the native submit always proceeds

    def _emit(
        self,
        kind: EventKind,
        ids: ResolvedIds,
        payload: KindPayload,
        *,
        enrichment: Mapping[str, Any] | None = None,
    ) -> EventEnvelope:
        envelope = self.assembler.build(
            kind,
            anon_id=ids.anon_id,
            session_id=ids.session_id,
            payload=payload,
            enrichment=enrichment,
        )
        logger.info("firing event", extra={"event_type": kind.value, **_ids_extra(ids)})
        self._transport.send(_endpoint_for(self._ctx, kind), envelope)
        return envelope


def _endpoint_for(ctx: PulseContext, kind: EventKind) -> str:
    endpoints = ctx.cfg.endpoints
    return {
        EventKind.FIRST_SEEN: endpoints.first_seen,
        EventKind.SESSION_START: endpoints.session_start,
        EventKind.PAGE_VIEW: endpoints.page_view,
        EventKind.LEAD: endpoints.lead,
    }[kind]


def _ids_extra(ids: ResolvedIds) -> dict[str, str]:
    return {"anon_id": ids.anon_id, "session_id": ids.session_id}


def reset(storage: StorageAdapter) -> None:
    """
    Clear stored identifiers and markers. Volatile values already held by
    this page stay; a full refresh needs a reload.

    Tracking is not switched off. On a page that already has consent, the next
    form submission resolves a fresh identity, writes it back to storage and
    sends first_seen for it. Stopping collection after a revoke is the host
    page's job (do not load the script again).
    """
    for key in DURABLE_KEYS:
        storage.remove(Store.DURABLE, key)
    for key in PAIRED_KEYS:
        storage.remove(Store.PAIRED, key)
    logger.info("identifiers cleared")


@dataclass(frozen=True)
class PulseHandle:
    """What the host page sees as `Pulse`."""

    reset: Callable[[], None]

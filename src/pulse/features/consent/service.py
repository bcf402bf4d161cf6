from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from pulse.features.page.service import CONSENT_SIGNAL, REVOKE_SIGNAL, Page

logger = logging.getLogger(__name__)


class ConsentState(str, Enum):
    PENDING = "pending"
    GRANTED = "granted"


class ConsentGate:
    """
    One-shot latch: PENDING -> GRANTED, never back.

    arm():
      - PulseConsent already true: grant now (initializer runs synchronously)
      - else: one-time listener for "pulse:consent"
      - always: independent "pulse:revoke" listener calling on_revoke
    """

    def __init__(
        self,
        *,
        page: Page,
        on_grant: Callable[[], None],
        on_revoke: Callable[[], None],
    ) -> None:
        self._page = page
        self._on_grant = on_grant
        self._on_revoke = on_revoke
        self.state = ConsentState.PENDING
        self._armed = False

    @property
    def granted(self) -> bool:
        return self.state is ConsentState.GRANTED

    def arm(self) -> None:
        if self._armed:
            return
        self._armed = True

        self._page.window.add_listener(REVOKE_SIGNAL, self._handle_revoke)

        if self._page.globals.get("PulseConsent") is True:
            self.grant()
            return

        logger.info("waiting for consent...", extra={"state": self.state.value})
        self._page.window.add_listener(CONSENT_SIGNAL, self._handle_consent, once=True)

    def grant(self) -> bool:
        """
        Returns True only on the PENDING -> GRANTED transition.
        """
        if self.state is ConsentState.GRANTED:
            return False
        self.state = ConsentState.GRANTED
        self._page.window.remove_listener(CONSENT_SIGNAL, self._handle_consent)
        logger.info("consent granted", extra={"state": self.state.value})
        self._on_grant()
        return True

    def _handle_consent(self, _event: object) -> None:
        self.grant()

    def _handle_revoke(self, _event: object) -> None:
        logger.info("revoke event received, clearing identifiers", extra={"state": self.state.value})
        self._on_revoke()

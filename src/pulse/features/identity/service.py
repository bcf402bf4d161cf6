from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from pulse.core.ids import ANON_PREFIX, TokenFactory
from pulse.features.storage.markers import EmissionMarkers, Marker
from pulse.features.storage.service import StorageAdapter
from pulse.features.storage.types import ANON_KEY, YEAR_S, Store

logger = logging.getLogger(__name__)


class Provenance(str, Enum):
    DURABLE = "durable"
    PAIRED = "paired"
    GENERATED = "generated"
    # neither store accepted the new token; valid for this page load only
    VOLATILE = "volatile"


@dataclass(frozen=True, slots=True)
class VisitorIdentity:
    anon_id: str
    provenance: Provenance


class IdentityResolver:
    """
    Long-lived visitor identifier across the durable and paired stores.

    Policy:
      1. durable value wins; re-mirror it into the paired store when missing/divergent
      2. durable empty, paired present: adopt the paired value into the durable store
      3. neither: new token into both stores, first-seen marker cleared
    """

    def __init__(self, *, storage: StorageAdapter, tokens: TokenFactory) -> None:
        self._storage = storage
        self._tokens = tokens

    def resolve(self) -> VisitorIdentity:
        durable_id = self._storage.read(Store.DURABLE, ANON_KEY)
        paired_id = self._storage.read(Store.PAIRED, ANON_KEY)

        if durable_id:
            if paired_id != durable_id:
                logger.info("re-mirroring anon_id into paired store", extra={"anon_id": durable_id})
                self._storage.write(Store.PAIRED, ANON_KEY, durable_id, YEAR_S)
            else:
                logger.debug("existing anon_id", extra={"anon_id": durable_id})
            return VisitorIdentity(anon_id=durable_id, provenance=Provenance.DURABLE)

        if paired_id:
            logger.info("adopting anon_id from paired store", extra={"anon_id": paired_id})
            self._storage.write(Store.DURABLE, ANON_KEY, paired_id, YEAR_S)
            return VisitorIdentity(anon_id=paired_id, provenance=Provenance.PAIRED)

        return self._create()

    def _create(self) -> VisitorIdentity:
        anon_id = self._tokens.new_token(ANON_PREFIX)

        # a new identity never starts with the first-seen marker set
        EmissionMarkers(self._storage).clear(Marker.FIRST_SEEN)
        durable_ok = self._storage.write(Store.DURABLE, ANON_KEY, anon_id, YEAR_S)
        paired_ok = self._storage.write(Store.PAIRED, ANON_KEY, anon_id, YEAR_S)

        if not (durable_ok or paired_ok):
            logger.warning("anon_id storage failed, using volatile fallback", extra={"anon_id": anon_id})
            return VisitorIdentity(anon_id=anon_id, provenance=Provenance.VOLATILE)

        logger.info("new anon_id created", extra={"anon_id": anon_id})
        return VisitorIdentity(anon_id=anon_id, provenance=Provenance.GENERATED)

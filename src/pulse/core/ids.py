from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Protocol

ANON_PREFIX = "anon"
SESSION_PREFIX = "sess"
PAGEVIEW_PREFIX = "pv"
LEAD_PREFIX = "lead"


class TokenFactory(Protocol):
    def new_token(self, prefix: str) -> str: ...


@dataclass(frozen=True, slots=True)
class RandomTokens:
    """
    Opaque tokens: fixed prefix + uuid4. uuid4 draws from os.urandom,
    so tokens are unpredictable across profiles.
    """

    def new_token(self, prefix: str) -> str:
        return f"{prefix}_{uuid.uuid4()}"


@dataclass(slots=True)
class CounterTokens:
    """
    Deterministic, monotonic tokens per prefix. For tests and replays only.
    """

    scope: str = "t"
    _counters: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def new_token(self, prefix: str) -> str:
        n = self._counters.get(prefix, 0) + 1
        self._counters[prefix] = n
        return f"{prefix}_{self.scope}_{n:08d}"

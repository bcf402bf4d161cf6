from __future__ import annotations

from datetime import UTC, datetime

import pytest
import simpy

from pulse.core.ids import CounterTokens
from pulse.core.types import SimClock, epoch_ms
from pulse.features.sessions.service import SessionResolver
from pulse.features.storage.markers import EmissionMarkers, Marker
from pulse.features.storage.service import StorageAdapter
from pulse.features.storage.types import SESSION_AT_KEY, SESSION_MARKER_KEY, CookieJar, MemoryStore, Store

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def make_env():
    env = simpy.Environment()
    clock = SimClock(env, T0)
    storage = StorageAdapter(durable=MemoryStore(), paired=CookieJar(clock))
    resolver = SessionResolver(storage=storage, tokens=CounterTokens(), clock=clock)
    return env, storage, resolver


def test_first_resolution_starts_a_session():
    _, storage, resolver = make_env()

    res = resolver.resolve(1800)

    assert res.is_new is True
    assert res.session_id == "sess_t_00000001"
    assert storage.read(Store.PAIRED, SESSION_AT_KEY) == str(epoch_ms(T0))


def test_sliding_window_keeps_and_then_expires_session():
    env, _, resolver = make_env()
    timeout = 1800

    r0 = resolver.resolve(timeout)

    env.run(until=timeout - 1)
    r1 = resolver.resolve(timeout)
    assert r1.session_id == r0.session_id
    assert r1.is_new is False

    # each resolution renewed the window, so measure from r1
    env.run(until=env.now + timeout + 1)
    r2 = resolver.resolve(timeout)
    assert r2.session_id != r1.session_id
    assert r2.is_new is True


def test_every_resolution_extends_the_session():
    env, _, resolver = make_env()
    first = resolver.resolve(60)

    for _ in range(10):
        env.run(until=env.now + 50)
        assert resolver.resolve(60).session_id == first.session_id


def test_exactly_timeout_is_not_expired():
    env, _, resolver = make_env()
    first = resolver.resolve(60)

    env.run(until=60)
    assert resolver.resolve(60).session_id == first.session_id


@pytest.mark.parametrize("bad", [0, -5, "abc", "", None, True, 1.5])
def test_invalid_timeout_falls_back_to_default(bad):
    env, _, resolver = make_env()
    first = resolver.resolve(bad)

    env.run(until=1799)
    assert resolver.resolve(bad).session_id == first.session_id

    env.run(until=env.now + 1801)
    assert resolver.resolve(bad).is_new is True


def test_new_session_clears_session_marker():
    env, storage, resolver = make_env()
    markers = EmissionMarkers(storage)

    resolver.resolve(60)
    markers.mark(Marker.SESSION_START)
    assert markers.is_set(Marker.SESSION_START)

    env.run(until=61)
    assert resolver.resolve(60).is_new is True
    assert storage.read(Store.PAIRED, SESSION_MARKER_KEY) is None
    assert not markers.is_set(Marker.SESSION_START)


def test_first_seen_marker_outlives_sessions():
    env, storage, resolver = make_env()
    markers = EmissionMarkers(storage)
    markers.mark(Marker.FIRST_SEEN)

    resolver.resolve(60)
    env.run(until=3 * 86400)
    resolver.resolve(60)

    assert markers.is_set(Marker.FIRST_SEEN)


def test_continuously_active_session_outlives_cookie_day():
    env, _, resolver = make_env()
    first = resolver.resolve(1800)

    ids = set()
    # every 20 minutes for 30 hours
    for _ in range(90):
        env.run(until=env.now + 1200)
        res = resolver.resolve(1800)
        ids.add(res.session_id)
        assert res.is_new is False

    assert ids == {first.session_id}


def test_timeout_longer_than_a_day_is_honoured():
    env, _, resolver = make_env()
    timeout = 2 * 86400
    first = resolver.resolve(timeout)
    assert first.ttl_seconds == timeout

    env.run(until=timeout - 1)
    again = resolver.resolve(timeout)
    assert again.session_id == first.session_id
    assert again.is_new is False

    env.run(until=env.now + timeout + 1)
    assert resolver.resolve(timeout).is_new is True


def test_session_marker_lifetime_follows_timeout():
    env, storage, resolver = make_env()
    timeout = 2 * 86400
    markers = EmissionMarkers(storage)

    res = resolver.resolve(timeout)
    markers.mark(Marker.SESSION_START, ttl_seconds=res.ttl_seconds)

    env.run(until=86400 + 60)
    assert markers.is_set(Marker.SESSION_START)

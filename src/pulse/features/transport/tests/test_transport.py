from __future__ import annotations

import json
from datetime import UTC, datetime

import httpx
import simpy

from pulse.core.config import PulseConfig
from pulse.core.types import SimClock
from pulse.features.events.schema import EventKind, LeadPayload, PageViewPayload
from pulse.features.events.service import EventAssembler
from pulse.features.transport.service import BeaconQueue, HttpxPoster, Transport

T0 = datetime(2026, 1, 1, tzinfo=UTC)
CFG = PulseConfig(site="example.com", base="https://collector.example.com")


class RecordingPoster:
    def __init__(self) -> None:
        self.posts: list[tuple[str, str, dict]] = []

    def post(self, url, body, headers) -> None:
        self.posts.append((url, body, dict(headers)))


class FailingPoster:
    def __init__(self) -> None:
        self.attempts = 0

    def post(self, url, body, headers) -> None:
        self.attempts += 1
        raise httpx.ConnectError("collector unreachable")


class RejectingBeacon:
    def send_beacon(self, url, body) -> bool:
        return False


class ExplodingBeacon:
    def send_beacon(self, url, body) -> bool:
        raise RuntimeError("beacon not allowed")


class BrokenEnv:
    def process(self, gen):
        gen.close()
        raise RuntimeError("event loop gone")


def envelope(env, kind=EventKind.PAGE_VIEW, payload=None):
    asm = EventAssembler(cfg=CFG, clock=SimClock(env, T0))
    return asm.build(
        kind,
        anon_id="anon_1",
        session_id="sess_1",
        payload=payload or PageViewPayload(pageview_id="pv_1"),
    )


def test_send_without_base_is_a_noop():
    env = simpy.Environment()
    poster = RecordingPoster()
    beacon = BeaconQueue(env=env, poster=poster)
    t = Transport(cfg=PulseConfig(site="example.com"), env=env, poster=poster, beacon=beacon)

    assert t.send("/pulse/page_view", envelope(env)) is None
    env.run()

    assert poster.posts == []
    assert beacon.pending() == 0


def test_beacon_is_preferred_and_delivered_later():
    env = simpy.Environment()
    poster = RecordingPoster()
    t = Transport(cfg=CFG, env=env, poster=poster, beacon=BeaconQueue(env=env, poster=poster))

    t.send("/pulse/page_view", envelope(env))
    # nothing goes out until the loop runs
    assert poster.posts == []

    env.run()
    assert len(poster.posts) == 1
    url, body, headers = poster.posts[0]
    assert url == "https://collector.example.com/pulse/page_view"
    assert headers["Content-Type"].startswith("text/plain")
    assert json.loads(body)["pageview_id"] == "pv_1"


def test_rejected_beacon_falls_back_to_request():
    env = simpy.Environment()
    poster = RecordingPoster()
    t = Transport(cfg=CFG, env=env, poster=poster, beacon=RejectingBeacon())

    t.send("/pulse/page_view", envelope(env))
    env.run()

    assert len(poster.posts) == 1
    _, _, headers = poster.posts[0]
    assert headers == {"Content-Type": "application/json", "Cache-Control": "no-store"}


def test_beacon_over_quota_falls_back():
    env = simpy.Environment()
    beacon_poster = RecordingPoster()
    fetch_poster = RecordingPoster()
    beacon = BeaconQueue(env=env, poster=beacon_poster, quota_bytes=100)
    t = Transport(cfg=CFG, env=env, poster=fetch_poster, beacon=beacon)

    big = LeadPayload(lead_id="lead_1", form_data={"message": "x" * 500})
    t.send("/pulse/lead", envelope(env, EventKind.LEAD, big))
    env.run()

    assert beacon_poster.posts == []
    assert len(fetch_poster.posts) == 1


def test_missing_or_throwing_beacon_still_attempts_fallback():
    env = simpy.Environment()
    poster = RecordingPoster()

    Transport(cfg=CFG, env=env, poster=poster, beacon=None).send("/a", envelope(env))
    Transport(cfg=CFG, env=env, poster=poster, beacon=ExplodingBeacon()).send("/b", envelope(env))
    env.run()

    assert [p[0] for p in poster.posts] == [
        "https://collector.example.com/a",
        "https://collector.example.com/b",
    ]


def test_both_paths_unavailable_never_raises():
    env = simpy.Environment()

    Transport(cfg=CFG, env=env, poster=None, beacon=RejectingBeacon()).send("/a", envelope(env))
    Transport(cfg=CFG, env=BrokenEnv(), poster=RecordingPoster(), beacon=ExplodingBeacon()).send(
        "/b", envelope(env)
    )


def test_delivery_failures_are_swallowed_without_retry():
    env = simpy.Environment()
    poster = FailingPoster()
    beacon = BeaconQueue(env=env, poster=poster)
    t = Transport(cfg=CFG, env=env, poster=poster, beacon=beacon)

    t.send("/a", envelope(env))
    t.send("/b", envelope(env))
    Transport(cfg=CFG, env=env, poster=poster, beacon=RejectingBeacon()).send("/c", envelope(env))
    env.run()

    assert poster.attempts == 3


def test_full_beacon_queue_rejects():
    env = simpy.Environment()
    beacon = BeaconQueue(env=env, poster=RecordingPoster(), capacity=1)

    assert beacon.send_beacon("https://c/a", "{}") is True
    assert beacon.send_beacon("https://c/b", "{}") is False


def test_httpx_poster_sends_no_cookies():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204, headers={"Set-Cookie": "tracking=1; Path=/"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    poster = HttpxPoster(client=client)

    poster.post("https://collector.example.com/pulse/lead", '{"a":1}', {"Content-Type": "application/json"})
    poster.post("https://collector.example.com/pulse/lead", '{"a":2}', {"Content-Type": "application/json"})
    poster.close()

    assert len(seen) == 2
    assert "cookie" not in seen[1].headers
    assert seen[1].content == b'{"a":2}'

from __future__ import annotations

from pulse.features.page.service import BrowserProfile, SignalBus
from pulse.features.page.types import Form


def test_once_listener_runs_a_single_time():
    bus = SignalBus()
    calls = []
    bus.add_listener("x", lambda ev: calls.append(ev), once=True)

    bus.dispatch("x", 1)
    bus.dispatch("x", 2)

    assert calls == [1]
    assert bus.listener_count("x") == 0


def test_capture_listeners_run_first_and_duplicates_are_ignored():
    bus = SignalBus()
    order = []

    def bubble(ev):
        order.append("bubble")

    def capture(ev):
        order.append("capture")

    bus.add_listener("submit", bubble)
    bus.add_listener("submit", capture, capture=True)
    bus.add_listener("submit", capture, capture=True)

    bus.dispatch("submit")
    assert order == ["capture", "bubble"]


def test_failing_listener_does_not_stop_others():
    bus = SignalBus()
    calls = []

    def boom(ev):
        raise RuntimeError("boom")

    bus.add_listener("x", boom)
    bus.add_listener("x", lambda ev: calls.append("ok"))

    bus.dispatch("x")
    assert calls == ["ok"]


def test_native_submit_proceeds_unless_prevented():
    page = BrowserProfile().open_page("https://example.com/contact")
    form = Form.from_fields({"email": "a@b.c"})

    ev = page.submit(form)
    assert ev.default_prevented is False
    assert page.submitted == [form]

    page.document.add_listener("submit", lambda e: e.prevent_default())
    page.submit(form)
    assert page.submitted == [form]


def test_ensure_hidden_adds_then_updates():
    form = Form.from_fields({"email": "a@b.c"})

    form.ensure_hidden("anon_id", "anon_1")
    form.ensure_hidden("anon_id", "anon_2")

    hidden = [i for i in form.inputs if i.name == "anon_id"]
    assert len(hidden) == 1
    assert hidden[0].type == "hidden"
    assert hidden[0].value == "anon_2"


def test_pages_of_one_profile_share_stores():
    profile = BrowserProfile()
    a = profile.open_page("https://example.com/a")
    b = profile.open_page("https://example.com/b")

    a.profile.durable.set("k", "v")
    assert b.profile.durable.get("k") == "v"
    assert a.hostname == "example.com"
    assert a.globals["PulseConsent"] is False


def test_once_listener_leaves_other_phase_registration_in_place():
    bus = SignalBus()
    calls = []

    def listener(ev):
        calls.append(ev)

    bus.add_listener("submit", listener, capture=True)
    bus.add_listener("submit", listener, once=True)

    bus.dispatch("submit", 1)
    bus.dispatch("submit", 2)

    # capture runs twice, the once registration only on the first dispatch
    assert calls == [1, 1, 2]
    assert bus.listener_count("submit") == 1


def test_listener_removed_mid_dispatch_is_skipped():
    bus = SignalBus()
    calls = []

    def late(ev):
        calls.append("late")

    bus.add_listener("x", lambda ev: bus.remove_listener("x", late))
    bus.add_listener("x", late)

    bus.dispatch("x")
    assert calls == []

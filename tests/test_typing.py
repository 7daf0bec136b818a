import threading

import pytest

from conftest import FakeMonotonic
from services.typing import TypingPresence


@pytest.fixture
def presence(typing_clock):
    return TypingPresence(expiry_seconds=5.0, clock=typing_clock)


def test_signal_expires_without_refresh(presence, typing_clock):
    presence.signal_typing("conv-1", "user-a")
    assert presence.is_typing("conv-1", "user-a")

    typing_clock.advance(4.9)
    assert presence.is_typing("conv-1", "user-a")

    typing_clock.advance(0.2)
    assert not presence.is_typing("conv-1", "user-a")


def test_refresh_extends_the_window(presence, typing_clock):
    presence.signal_typing("conv-1", "user-a")
    typing_clock.advance(4)
    presence.signal_typing("conv-1", "user-a")
    typing_clock.advance(4)

    assert presence.is_typing("conv-1", "user-a")


def test_stop_clears_immediately(presence):
    presence.signal_typing("conv-1", "user-a")
    presence.signal_stopped_typing("conv-1", "user-a")

    assert not presence.is_typing("conv-1", "user-a")


def test_signals_are_scoped_per_conversation(presence):
    presence.signal_typing("conv-1", "user-a")

    assert not presence.is_typing("conv-2", "user-a")
    assert presence.is_anyone_else_typing("conv-1", "user-b")
    assert not presence.is_anyone_else_typing("conv-1", "user-a")
    assert not presence.is_anyone_else_typing("conv-2", "user-b")


def test_subscribers_see_start_and_expiry(presence, typing_clock):
    events = []
    presence.subscribe("conv-1", lambda *change: events.append(change))

    presence.signal_typing("conv-1", "user-a")
    presence.signal_typing("conv-1", "user-a")
    typing_clock.advance(6)
    expired = presence.sweep()

    assert expired == 1
    assert events == [("conv-1", "user-a", True), ("conv-1", "user-a", False)]


def test_unsubscribe_stops_callbacks(presence):
    events = []
    unsubscribe = presence.subscribe("conv-1", lambda *change: events.append(change))

    presence.signal_typing("conv-1", "user-a")
    unsubscribe()
    presence.signal_stopped_typing("conv-1", "user-a")

    assert events == [("conv-1", "user-a", True)]


def test_broken_subscriber_does_not_break_signalling(presence):
    def broken(*change):
        raise RuntimeError("socket closed")

    events = []
    presence.subscribe("conv-1", broken)
    presence.subscribe("conv-1", lambda *change: events.append(change))

    presence.signal_typing("conv-1", "user-a")

    assert presence.is_typing("conv-1", "user-a")
    assert events == [("conv-1", "user-a", True)]


def test_stopping_unknown_signal_is_silent():
    events = []
    presence = TypingPresence(expiry_seconds=1.0, clock=FakeMonotonic())
    presence.subscribe("conv-1", lambda *change: events.append(change))

    presence.signal_stopped_typing("conv-1", "user-a")

    assert events == []


def test_background_sweeper_publishes_expiry_without_reads(presence, typing_clock):
    expired = threading.Event()

    def on_change(conversation_id, participant_id, is_typing):
        if not is_typing:
            expired.set()

    presence.subscribe("conv-1", on_change)
    presence.signal_typing("conv-1", "user-a")
    typing_clock.advance(6)

    presence.start_sweeper(0.01)
    try:
        assert expired.wait(timeout=2)
    finally:
        presence.stop_sweeper()

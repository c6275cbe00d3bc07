"""Tests for signals, joins and the debouncer."""
import asyncio

import pytest

from connected_notes.reactive import Debouncer, Signal, combine_latest


class TestSignal:
    def test_subscribe_replays_latest_value(self):
        signal = Signal(1)
        signal.next(2)
        received = []
        signal.subscribe(received.append)
        assert received == [2]

    def test_unset_signal_does_not_replay(self):
        signal = Signal()
        received = []
        signal.subscribe(received.append)
        assert received == []
        assert signal.value is None
        assert not signal.has_value
        signal.next("x")
        assert received == ["x"]

    def test_unsubscribe(self):
        signal = Signal(0)
        received = []
        subscription = signal.subscribe(received.append)
        subscription.unsubscribe()
        subscription.unsubscribe()
        signal.next(1)
        assert received == [0]
        assert subscription.closed
        assert signal.subscriber_count == 0


class TestCombineLatest:
    def test_waits_for_every_signal(self):
        a, b = Signal(), Signal()
        received = []
        combine_latest([a, b], received.append)
        a.next(1)
        assert received == []
        b.next("x")
        a.next(2)
        assert received == [(1, "x"), (2, "x")]

    def test_unsubscribe_stops_all(self):
        a, b = Signal(1), Signal(2)
        received = []
        subscription = combine_latest([a, b], received.append)
        subscription.unsubscribe()
        a.next(3)
        assert received == [(1, 2)]
        assert a.subscriber_count == 0 and b.subscriber_count == 0


class TestDebouncer:
    def test_zero_delay_fires_immediately(self):
        received = []
        debouncer = Debouncer(0, received.append)
        debouncer.trigger(1)
        assert received == [1]

    def test_without_loop_fires_immediately(self):
        received = []
        Debouncer(10, received.append).trigger("now")
        assert received == ["now"]

    @pytest.mark.anyio
    async def test_burst_delivers_latest_once(self):
        received = []
        debouncer = Debouncer(0.02, received.append)
        for value in range(5):
            debouncer.trigger(value)
        assert received == []
        assert debouncer.pending
        await asyncio.sleep(0.06)
        assert received == [4]
        assert not debouncer.pending

    @pytest.mark.anyio
    async def test_flush_and_cancel(self):
        received = []
        debouncer = Debouncer(10, received.append)
        debouncer.trigger("a")
        debouncer.flush()
        assert received == ["a"]
        debouncer.trigger("b")
        debouncer.cancel()
        debouncer.flush()
        assert received == ["a"]

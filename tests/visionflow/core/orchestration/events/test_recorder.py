"""Tests for event records and the EventRecorder."""

import asyncio

import pytest

from visionflow.core.orchestration.events import (
    ALL_EXECUTION_EVENTS,
    FLOW_EVENTS,
    EventRecorder,
    FlowCompleted,
    FlowStarted,
    NodeFailed,
    NodeStarted,
    ObserverRegistration,
    WaveStarted,
    event_fields,
)


class TestEvents:
    """Test event records."""

    def test_events_are_frozen(self):
        event = WaveStarted("r1", 0, ("a",))
        with pytest.raises(AttributeError):
            event.wave_index = 1  # type: ignore[misc]

    def test_event_fields(self):
        data = event_fields(NodeFailed("r1", "n1", "blur", "boom", critical=False))
        assert data["event_type"] == "NodeFailed"
        assert data["error"] == "boom"
        assert data["critical"] is False
        assert "timestamp" in data

    def test_log_messages(self):
        failed = NodeFailed("r1", "n1", "blur", "boom", critical=False)
        assert "non-critical" in failed.log_message()
        assert "deps: a, b" in NodeStarted("r1", "c", "c", "t", 1, ("a", "b")).log_message()
        assert FlowCompleted("r1", "f", False, 1500.0, "bad").log_message().endswith(
            "failed after 1.50s: bad"
        )

    def test_event_groups(self):
        assert FlowStarted in FLOW_EVENTS
        assert len(set(ALL_EXECUTION_EVENTS)) == 10


class TestEventRecorder:
    """Test recording and observer fan-out."""

    @pytest.mark.asyncio
    async def test_records_in_emission_order(self):
        recorder = EventRecorder()
        first = WaveStarted("r1", 0, ("a",))
        second = WaveStarted("r1", 1, ("b",))

        await recorder.emit(first)
        await recorder.emit(second)

        assert recorder.events == [first, second]

    @pytest.mark.asyncio
    async def test_observers_receive_events(self):
        seen = []

        async def async_observer(event):
            seen.append(("async", event.wave_index))

        recorder = EventRecorder(
            [
                ObserverRegistration.create(lambda e: seen.append(("sync", e.wave_index))),
                ObserverRegistration.create(async_observer),
            ]
        )

        await recorder.emit(WaveStarted("r1", 3, ()))

        assert sorted(seen) == [("async", 3), ("sync", 3)]

    @pytest.mark.asyncio
    async def test_event_type_filter(self):
        seen = []
        recorder = EventRecorder([ObserverRegistration.create(seen.append, NodeFailed)])

        await recorder.emit(WaveStarted("r1", 0, ()))
        await recorder.emit(NodeFailed("r1", "n1", "blur", "boom"))

        assert [type(e) for e in seen] == [NodeFailed]
        assert recorder.of_type(WaveStarted)[0].wave_index == 0

    @pytest.mark.asyncio
    async def test_failing_observer_is_isolated(self):
        seen = []

        def broken(event):
            raise RuntimeError("observer bug")

        recorder = EventRecorder(
            [ObserverRegistration.create(broken), ObserverRegistration.create(seen.append)]
        )

        await recorder.emit(WaveStarted("r1", 0, ()))

        assert len(seen) == 1
        assert len(recorder.events) == 1

    @pytest.mark.asyncio
    async def test_slow_observer_times_out(self):
        async def slow(event):
            await asyncio.sleep(5)

        recorder = EventRecorder([ObserverRegistration.create(slow, timeout=0.01)])

        await asyncio.wait_for(recorder.emit(WaveStarted("r1", 0, ())), 1.0)

        assert len(recorder.events) == 1

    def test_registration_ids_are_unique(self):
        a = ObserverRegistration.create(print)
        b = ObserverRegistration.create(print)
        assert a.observer_id != b.observer_id
        assert ObserverRegistration.create(print, observer_id="fixed").observer_id == "fixed"

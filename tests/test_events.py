"""
Tests for the event channel.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-EV-N-01 | Two subscribers | Equivalence – normal | Both receive every event in order | - |
| TC-EV-N-02 | Async callback | Equivalence – normal | Called per event | - |
| TC-EV-N-03 | Event.to_dict | Equivalence – normal | {type, payload, timestamp} | Wire format |
| TC-EV-N-04 | Unsubscribe | Equivalence – normal | No further events | - |
| TC-EV-B-01 | publish() without drain task | Boundary – not started | Never blocks, delivered after start | - |
| TC-EV-B-02 | Bounded subscriber queue full | Boundary – full | Event dropped for that subscriber only | - |
| TC-EV-A-01 | Callback raises | Abnormal | Other subscribers still served | - |
"""

import pytest

from pagelens.events.broadcaster import EventBroadcaster, EventType

pytestmark = pytest.mark.unit


def _drain(queue) -> list:
    return [queue.get_nowait() for _ in range(queue.qsize())]


class TestFanOut:
    @pytest.mark.asyncio
    async def test_every_subscriber_gets_every_event(self, broadcaster):
        """TC-EV-N-01: Events reach all subscribers in publish order."""
        first = broadcaster.subscribe()
        second = broadcaster.subscribe()
        broadcaster.start()

        broadcaster.status_update("job-1", "running", 0)
        broadcaster.log_entry("info", "Visited page", {"job_id": "job-1"})
        await broadcaster.flush()

        for queue in (first, second):
            events = _drain(queue)
            assert [e.type for e in events] == [EventType.STATUS_UPDATE, EventType.LOG_ENTRY]
        await broadcaster.stop()

    @pytest.mark.asyncio
    async def test_callback_receives_events(self, broadcaster):
        """TC-EV-N-02: Async callbacks are awaited for each event."""
        received = []

        async def on_event(event):
            received.append(event.payload["url"])

        broadcaster.add_callback(on_event)
        broadcaster.start()

        broadcaster.screenshot_update("job-1", "https://example.com/", "/tmp/shot.png")
        await broadcaster.stop()

        assert received == ["https://example.com/"]
        assert broadcaster.subscriber_count == 1

        broadcaster.remove_callback(on_event)
        assert broadcaster.subscriber_count == 0

    def test_wire_format(self, broadcaster):
        """TC-EV-N-03: Events serialise to type, payload and timestamp."""
        event = broadcaster.status_update("job-1", "paused", 3, error_count=1)

        data = event.to_dict()

        assert data["type"] == "status_update"
        assert data["payload"]["job_id"] == "job-1"
        assert data["payload"]["pages_processed"] == 3
        assert data["payload"]["error_count"] == 1
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_unsubscribe(self, broadcaster):
        """TC-EV-N-04: An unsubscribed queue stops receiving."""
        queue = broadcaster.subscribe()
        broadcaster.start()
        broadcaster.unsubscribe(queue)

        broadcaster.log_entry("info", "ignored")
        await broadcaster.stop()

        assert queue.empty()
        assert broadcaster.subscriber_count == 0


class TestDelivery:
    @pytest.mark.asyncio
    async def test_publish_before_start(self, broadcaster):
        """TC-EV-B-01: Publishing never waits for consumers."""
        queue = broadcaster.subscribe()
        for i in range(100):
            broadcaster.log_entry("debug", f"message {i}")
        assert queue.empty()

        broadcaster.start()
        await broadcaster.flush()

        assert queue.qsize() == 100
        await broadcaster.stop()

    @pytest.mark.asyncio
    async def test_full_subscriber_queue_drops(self):
        """TC-EV-B-02: A slow consumer loses events without affecting others."""
        broadcaster = EventBroadcaster(subscriber_queue_size=1)
        slow = broadcaster.subscribe()
        received = []

        async def on_event(event):
            received.append(event)

        broadcaster.add_callback(on_event)
        broadcaster.start()

        broadcaster.log_entry("info", "one")
        broadcaster.log_entry("info", "two")
        await broadcaster.stop()

        assert slow.qsize() == 1
        assert slow.get_nowait().payload["message"] == "one"
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_failing_callback_isolated(self, broadcaster):
        """TC-EV-A-01: A raising callback does not affect queue subscribers."""

        async def broken(event):
            raise RuntimeError("socket closed")

        queue = broadcaster.subscribe()
        broadcaster.add_callback(broken)
        broadcaster.start()

        broadcaster.log_entry("info", "first")
        broadcaster.log_entry("info", "second")
        await broadcaster.stop()

        assert [e.payload["message"] for e in _drain(queue)] == ["first", "second"]

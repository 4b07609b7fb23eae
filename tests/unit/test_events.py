"""Tests for the event bus."""

import dataclasses
import logging

import pytest

from mediashrink.events import (
    Event,
    EventBus,
    JobAdded,
    JobCancelled,
    JobCompleted,
    JobPhaseProgress,
)


class TestEvents:
    """Tests for event value objects."""

    def test_name_is_class_name(self) -> None:
        """Event.name reports the event class."""
        assert JobCancelled(job_id="a").name == "JobCancelled"

    def test_events_are_frozen(self) -> None:
        """Events cannot be mutated after publication."""
        event = JobCompleted(job_id="a", result_count=1)
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.result_count = 2

    def test_phase_progress_defaults(self) -> None:
        """Optional fields default to empty values."""
        event = JobPhaseProgress(job_id="a", phase="transcoding", raw_progress=10)
        assert event.message is None
        assert event.metrics == {}


class TestEventBus:
    """Tests for EventBus."""

    def test_publish_to_all_subscribers(self, event_bus: EventBus) -> None:
        """Handlers without a filter receive every event."""
        received: list[Event] = []
        event_bus.subscribe(received.append)
        event_bus.publish(JobCancelled(job_id="a"))
        event_bus.publish(JobCompleted(job_id="a", result_count=0))
        assert [e.name for e in received] == ["JobCancelled", "JobCompleted"]

    def test_type_filter(self, event_bus: EventBus) -> None:
        """Filtered handlers receive only matching event types."""
        received: list[Event] = []
        event_bus.subscribe(received.append, [JobCompleted])
        event_bus.publish(JobCancelled(job_id="a"))
        event_bus.publish(JobCompleted(job_id="a", result_count=2))
        assert received == [JobCompleted(job_id="a", result_count=2)]

    def test_base_class_filter_matches_subclasses(self, event_bus: EventBus) -> None:
        """Filtering on Event receives every event."""
        received: list[Event] = []
        event_bus.subscribe(received.append, [Event])
        event_bus.publish(JobAdded("a", "/a.mkv", 0, ("720p",)))
        assert len(received) == 1

    def test_unsubscribe(self, event_bus: EventBus) -> None:
        """The returned callable removes the subscription."""
        received: list[Event] = []
        unsubscribe = event_bus.subscribe(received.append)
        assert event_bus.subscriber_count == 1
        unsubscribe()
        unsubscribe()
        event_bus.publish(JobCancelled(job_id="a"))
        assert received == []
        assert event_bus.subscriber_count == 0

    def test_failing_handler_does_not_block_others(
        self, event_bus: EventBus, caplog
    ) -> None:
        """A raising handler is logged and later handlers still run."""
        received: list[Event] = []

        def broken(event: Event) -> None:
            raise RuntimeError("handler bug")

        event_bus.subscribe(broken)
        event_bus.subscribe(received.append)
        with caplog.at_level(logging.ERROR):
            event_bus.publish(JobCancelled(job_id="a"))

        assert len(received) == 1
        assert "Event handler failed for JobCancelled" in caplog.text

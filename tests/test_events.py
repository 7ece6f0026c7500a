"""Tests for the event pub/sub system."""

from novel_translator.services.events import EventBus, PipelineEvent


def test_subscribers_receive_events_in_order():
    received = []
    bus = EventBus()
    bus.subscribe(received.append)
    bus.emit(PipelineEvent(type="batch_progress", data={"current": 1}))
    bus.emit(PipelineEvent(type="batch_progress", data={"current": 2}))
    assert [e.data["current"] for e in received] == [1, 2]


def test_unsubscribe_stops_delivery():
    received = []
    bus = EventBus()
    sub_id = bus.subscribe(received.append)
    bus.emit(PipelineEvent(type="first"))
    bus.unsubscribe(sub_id)
    bus.emit(PipelineEvent(type="second"))
    assert [e.type for e in received] == ["first"]


def test_failing_subscriber_does_not_block_others():
    received = []
    bus = EventBus()

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    bus.emit(PipelineEvent(type="scan_progress"))
    assert len(received) == 1


def test_event_to_dict():
    event = PipelineEvent(type="batch_item_failed", data={"current": 3, "error": "timeout"}, job_id="abc")
    d = event.to_dict()
    assert d["type"] == "batch_item_failed"
    assert d["job_id"] == "abc"
    assert d["data"]["error"] == "timeout"
    assert "timestamp" in d


def test_job_subscription_filters_other_jobs():
    received = []
    bus = EventBus()
    bus.subscribe(received.append, job_id="job-a")
    bus.emit(PipelineEvent(type="batch_progress", job_id="job-b"))
    bus.emit(PipelineEvent(type="batch_progress", job_id="job-a"))
    bus.emit(PipelineEvent(type="job_completed", job_id="job-a"))
    assert [e.job_id for e in received] == ["job-a", "job-a"]
    assert received[-1].is_final
    assert not received[0].is_final

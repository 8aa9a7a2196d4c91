from core.bus import EventBus
from core.events import PipelineStopped


def test_handlers_called_in_subscription_order():
    bus = EventBus()
    calls = []
    bus.subscribe(PipelineStopped, lambda e: calls.append("first"), topic="p/Det")
    bus.subscribe(PipelineStopped, lambda e: calls.append("second"), topic="p/Det")

    bus.publish(PipelineStopped(pipeline="p"), topic="p/Det")
    assert calls == ["first", "second"]


def test_topics_are_isolated():
    bus = EventBus()
    calls = []
    bus.subscribe(PipelineStopped, calls.append, topic="a/Det")

    bus.publish(PipelineStopped(pipeline="b"), topic="b/Det")
    bus.publish(PipelineStopped(pipeline="b"))
    assert calls == []


def test_failing_handler_does_not_block_others():
    bus = EventBus()
    calls = []

    def explode(event):
        raise RuntimeError("boom")

    bus.subscribe(PipelineStopped, explode)
    bus.subscribe(PipelineStopped, calls.append)

    event = PipelineStopped(pipeline="p")
    bus.publish(event)
    assert calls == [event]


def test_unsubscribe_and_count():
    bus = EventBus()
    handler = lambda e: None  # noqa: E731
    bus.subscribe(PipelineStopped, handler, topic="p/Video")
    assert bus.subscriber_count(PipelineStopped, "p/Video") == 1

    bus.unsubscribe(PipelineStopped, handler, topic="p/Video")
    assert bus.subscriber_count(PipelineStopped, "p/Video") == 0

"""
Lightweight in-process Event Bus for the Perception Node.

Carries both the data plane (frames and inference results fanned out
from a producer to every consumer wired to it) and the control plane
(stage failures, pipeline shutdown).

Subscriptions are keyed by event type and an optional topic. Pipelines
publish frames and results on "<pipeline>/<producer>" topics, so one bus
can serve several pipelines whose stages share names.

Thread-safe. Handlers are invoked synchronously on the publisher's
thread, in subscription order.
"""
import threading
from collections import defaultdict
from typing import Callable, Any, Dict, List, Optional, Tuple, Type
from utils.logger import Logger

Key = Tuple[Type, Optional[str]]


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__qualname__", repr(handler))


class EventBus:
    """
    Simple publish/subscribe event bus.

    Usage:
        bus = EventBus()
        bus.subscribe(InferenceResults, sink.consume, topic="object/ObjectDetection")
        bus.publish(InferenceResults(...), topic="object/ObjectDetection")
    """

    def __init__(self):
        self._subscribers: Dict[Key, List[Callable]] = defaultdict(list)
        self._lock = threading.Lock()
        self.logger = Logger("EventBus")

    def subscribe(self, event_type: Type, handler: Callable[[Any], None],
                  topic: Optional[str] = None) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: The class of the event to listen for.
            handler: A callable that receives the event instance.
            topic: Only receive events published on this topic (None = untopiced events).
        """
        with self._lock:
            self._subscribers[(event_type, topic)].append(handler)
        where = f" on '{topic}'" if topic else ""
        self.logger.debug(f"Subscribed {_handler_name(handler)} to {event_type.__name__}{where}")

    def unsubscribe(self, event_type: Type, handler: Callable[[Any], None],
                    topic: Optional[str] = None) -> None:
        """Remove a handler from a specific event type/topic."""
        with self._lock:
            handlers = self._subscribers.get((event_type, topic), [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: Any, topic: Optional[str] = None) -> None:
        """
        Publish an event to all registered handlers.

        Handlers are called synchronously on the caller's thread.
        Exceptions in one handler do not prevent other handlers from running.
        """
        event_type = type(event)
        with self._lock:
            handlers = list(self._subscribers.get((event_type, topic), []))

        if not handlers:
            self.logger.debug(f"No subscribers for {event_type.__name__} on '{topic}'")
            return

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    f"Error in handler {_handler_name(handler)} for "
                    f"{event_type.__name__}: {e}"
                )

    def clear(self) -> None:
        """Remove all subscriptions."""
        with self._lock:
            self._subscribers.clear()

    def subscriber_count(self, event_type: Type, topic: Optional[str] = None) -> int:
        """Return the number of subscribers for a given event type/topic."""
        with self._lock:
            return len(self._subscribers.get((event_type, topic), []))

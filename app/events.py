"""Event bus for internal service communication.

Provides a publish/subscribe mechanism so the scheduler and alert engine can
announce what happened without knowing who listens: the notification
dispatcher, the metrics exporter, realtime viewers.

Usage:
    from app.events import EventBus, EventType

    bus = EventBus()

    # Subscribe to events
    bus.subscribe(EventType.ALERT_CREATED, lambda e: print(e.data["alert"]))

    # Publish events
    bus.publish(EventType.ALERT_CREATED, {"alert": alert})
"""
import queue
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from config import get_logger, log_exception

logger = get_logger(__name__)


class EventType(Enum):
    """Types of events that can be published/subscribed."""

    # Polling events
    POLL_COMPLETED = auto()
    DEVICE_STATE_CHANGED = auto()
    REALTIME_SAMPLES = auto()

    # Alert events
    ALERT_CREATED = auto()
    ALERT_ACKNOWLEDGED = auto()

    # Persistence events
    FLUSH_COMPLETED = auto()

    # Service lifecycle events
    SERVICE_STARTING = auto()
    SERVICE_STOPPING = auto()


@dataclass
class Event:
    """One published event; ``source`` names the publishing component."""
    event_type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    source: Optional[str] = None

    def __str__(self) -> str:
        return f"Event({self.event_type.name}, data={self.data})"


# Type alias for event handlers
EventHandler = Callable[[Event], None]


class EventBus:
    """Thread-safe publish/subscribe event bus.

    By default events are handled on one worker thread in publish order, so
    a slow handler (an SMTP send) never blocks the poll cycle that published.
    ``async_mode=False`` delivers inline, which tests rely on.

    Attributes:
        dropped: Events refused because the bus was already shut down.
        handler_errors: Exceptions raised by handlers, by event type name.
    """

    _STOP = object()

    def __init__(self, async_mode: bool = True):
        self._handlers: Dict[EventType, List[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._async_mode = async_mode
        self._pending: queue.Queue = queue.Queue()
        self._closed = False
        self._worker: Optional[threading.Thread] = None
        self.dropped = 0
        self.handler_errors: Dict[str, int] = defaultdict(int)

        if async_mode:
            self._worker = threading.Thread(target=self._drain, daemon=True,
                                            name="EventBus-Worker")
            self._worker.start()

    def _drain(self) -> None:
        while True:
            event = self._pending.get()
            try:
                if event is self._STOP:
                    return
                self._deliver(event)
            finally:
                self._pending.task_done()

    def _deliver(self, event: Event) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, ()))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.handler_errors[event.event_type.name] += 1
                name = getattr(handler, '__qualname__', repr(handler))
                log_exception(logger, f"{name} failed on {event.event_type.name}", e)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)
        logger.debug(f"Subscribed to {event_type.name}")

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> bool:
        """Remove a handler; False if it was not subscribed."""
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)
        logger.debug(f"Unsubscribed from {event_type.name}")
        return True

    def publish(self, event_type: EventType, data: Dict[str, Any] = None,
                source: str = None) -> bool:
        """Publish an event.

        Events published after ``shutdown`` (a poll task finishing late,
        a timer tick racing the stop) are dropped and counted.

        Returns:
            True if the event was queued or delivered.
        """
        if self._closed:
            self.dropped += 1
            logger.debug(f"Bus closed, dropping {event_type.name} from {source or '?'}")
            return False

        event = Event(event_type=event_type, data=data or {}, source=source)
        if self._async_mode:
            self._pending.put(event)
        else:
            self._deliver(event)
        logger.debug(f"Published {event_type.name}")
        return True

    def wait_until_idle(self, timeout: float = 5.0) -> bool:
        """Block until queued events are handled (used on shutdown and in tests).

        Returns:
            True if the queue drained before the timeout.
        """
        deadline = time.monotonic() + timeout
        while self._pending.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def get_subscriber_count(self, event_type: EventType) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, ()))

    def shutdown(self) -> None:
        """Stop accepting events; the worker exits after what is already queued."""
        if self._closed:
            return
        self._closed = True
        if self._worker:
            self._pending.put(self._STOP)
            self._worker.join(timeout=1.0)
        logger.debug("EventBus shut down")

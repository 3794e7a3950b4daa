"""
workflow_core/engine/event_bus.py

Workflow event bus - in-process publish/subscribe with at-least-once delivery.

Two delivery modes:
- inline: handlers run inside publish() (tests, scripts); events published
  by a handler are delivered after the current event, never recursively
- asynchronous: publish() enqueues and returns; a background worker thread
  runs the handlers in FIFO order so the publishing request is never blocked

A handler that raises is re-delivered up to max_deliveries times. Handlers
must therefore be idempotent.
"""
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from dataclasses import dataclass, field
from datetime import datetime
from collections import deque
import logging
import queue
import threading
import uuid

logger = logging.getLogger(__name__)

# Type aliases
EventId = str
CorrelationId = str

WILDCARD = "*"


def _generate_event_id() -> EventId:
    return f"{datetime.now().strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:8]}"


class EventHandler(Protocol):
    """Event handler protocol"""

    def __call__(self, event: "Event") -> None:
        ...


@dataclass
class Event:
    """
    Bus event.

    Attributes:
        event_type: Event name (e.g. "probability_updated")
        timestamp: When the event was produced
        data: Event payload
        source: Producing service
        tenant: Tenant the event belongs to
        event_id: Unique event id
        correlation_id: Parent event id for event chains
    """

    event_type: str
    timestamp: datetime
    data: Dict[str, Any]
    source: str = ""
    tenant: Optional[str] = None
    event_id: EventId = field(default_factory=_generate_event_id)
    correlation_id: Optional[CorrelationId] = None

    def with_correlation(self, parent_id: EventId) -> "Event":
        self.correlation_id = parent_id
        return self


@dataclass
class PublishResult:
    """
    Publish outcome.

    In asynchronous mode only subscriber_count and queued are meaningful at
    return time; handler outcomes show up in the statistics.
    """

    event_type: str
    subscriber_count: int
    success_count: int = 0
    failure_count: int = 0
    queued: bool = False
    errors: List[Tuple[Callable, Exception]] = field(default_factory=list)


@dataclass
class EventBusStatistics:
    total_published: int = 0
    total_processed: int = 0
    total_failed: int = 0
    total_redelivered: int = 0
    subscriber_count: Dict[str, int] = field(default_factory=dict)


@dataclass
class _Delivery:
    event: Event
    handler: EventHandler
    attempt: int = 1


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", type(handler).__name__)


class EventBus:
    """
    Event bus with error isolation between handlers.

    Example:
        >>> bus = EventBus(asynchronous=True)
        >>> bus.subscribe("probability_updated", evaluator.handle_event)
        >>> bus.start()
        >>> bus.publish(Event(event_type="probability_updated", timestamp=datetime.now(), data={}))
        >>> bus.drain(timeout=5)
        >>> bus.stop()

    Thread Safety:
        All public methods are thread safe.
    """

    def __init__(self, history_size: int = 100, asynchronous: bool = False, max_deliveries: int = 3):
        if max_deliveries < 1:
            raise ValueError("max_deliveries must be >= 1")

        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._event_history: deque = deque(maxlen=history_size)
        self._subscriber_lock = threading.RLock()

        self._stats = EventBusStatistics()
        self._stats_lock = threading.Lock()

        self._asynchronous = asynchronous
        self._max_deliveries = max_deliveries
        self._queue: "queue.Queue[Optional[_Delivery]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()
        self._local = threading.local()
        logger.info(f"EventBus initialized (asynchronous={asynchronous}, max_deliveries={max_deliveries})")

    @property
    def asynchronous(self) -> bool:
        return self._asynchronous

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """
        Subscribe a handler.

        Args:
            event_type: Event name, or "*" for every event
            handler: Callable receiving the Event
        """
        with self._subscriber_lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
                logger.info(f"Handler {_handler_name(handler)} subscribed to {event_type}")

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        with self._subscriber_lock:
            if event_type in self._subscribers and handler in self._subscribers[event_type]:
                self._subscribers[event_type].remove(handler)
                logger.info(f"Handler {_handler_name(handler)} unsubscribed from {event_type}")

    def publish(self, event: Event) -> PublishResult:
        """
        Publish an event.

        Inline mode runs every handler before returning; asynchronous mode
        only enqueues. A failing handler never affects the other handlers.
        """
        self._event_history.append(event)

        with self._subscriber_lock:
            handlers = list(self._subscribers.get(event.event_type, []))
            handlers += [h for h in self._subscribers.get(WILDCARD, []) if h not in handlers]

        with self._stats_lock:
            self._stats.total_published += 1

        result = PublishResult(event_type=event.event_type, subscriber_count=len(handlers))
        if not handlers:
            return result

        logger.info(f"Publishing {event.event_type} ({event.event_id}) to {len(handlers)} handlers")

        if self._asynchronous:
            self.start()
            for handler in handlers:
                self._queue.put(_Delivery(event=event, handler=handler))
            result.queued = True
            return result

        # Publishing from inside a handler: run after the current dispatch finishes
        pending = getattr(self._local, "pending", None)
        if pending is not None:
            pending.append((event, handlers))
            result.queued = True
            return result

        self._local.pending = deque()
        try:
            for handler in handlers:
                error = self._deliver_inline(event, handler)
                if error is None:
                    result.success_count += 1
                else:
                    result.failure_count += 1
                    result.errors.append((handler, error))
            while self._local.pending:
                nested_event, nested_handlers = self._local.pending.popleft()
                for handler in nested_handlers:
                    self._deliver_inline(nested_event, handler)
        finally:
            self._local.pending = None
        return result

    def _deliver_inline(self, event: Event, handler: EventHandler) -> Optional[Exception]:
        error: Optional[Exception] = None
        for attempt in range(1, self._max_deliveries + 1):
            error = self._run_handler(_Delivery(event, handler, attempt))
            if error is None:
                return None
        return error

    def _run_handler(self, delivery: _Delivery) -> Optional[Exception]:
        """Run one delivery; returns the raised exception, or None on success."""
        try:
            delivery.handler(delivery.event)
        except Exception as e:
            logger.error(
                f"Event handler {_handler_name(delivery.handler)} error for {delivery.event.event_type} "
                f"(attempt {delivery.attempt}/{self._max_deliveries}): {e}",
                exc_info=True,
            )
            with self._stats_lock:
                if delivery.attempt < self._max_deliveries:
                    self._stats.total_redelivered += 1
                else:
                    self._stats.total_failed += 1
            return e
        with self._stats_lock:
            self._stats.total_processed += 1
        return None

    # ============== Background worker ==============

    def start(self) -> None:
        """Start the worker thread (idempotent)."""
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._worker_loop, name="workflow-event-bus", daemon=True)
            self._worker.start()
            logger.info("EventBus worker started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Finish queued deliveries, then stop the worker."""
        with self._worker_lock:
            worker = self._worker
            if worker is None:
                return
            self._queue.put(None)
            worker.join(timeout)
            self._worker = None
            logger.info("EventBus worker stopped")

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every queued delivery (including re-deliveries) is done.

        Returns:
            False if the timeout expired first
        """
        if self._worker is None:
            return self._queue.unfinished_tasks == 0
        done = threading.Event()

        def _join() -> None:
            self._queue.join()
            done.set()

        threading.Thread(target=_join, daemon=True).start()
        return done.wait(timeout)

    def _worker_loop(self) -> None:
        while True:
            delivery = self._queue.get()
            try:
                if delivery is None:
                    return
                if self._run_handler(delivery) is not None and delivery.attempt < self._max_deliveries:
                    self._queue.put(_Delivery(delivery.event, delivery.handler, delivery.attempt + 1))
            finally:
                self._queue.task_done()

    # ============== Introspection ==============

    def get_history(self, event_type: Optional[str] = None, limit: int = 50) -> List[Event]:
        """Recent events, newest first."""
        history = list(self._event_history)
        if event_type:
            history = [e for e in history if e.event_type == event_type]
        return list(reversed(history))[:limit]

    def get_subscribers(self, event_type: Optional[str] = None) -> Dict[str, List[str]]:
        with self._subscriber_lock:
            if event_type:
                return {event_type: [_handler_name(h) for h in self._subscribers.get(event_type, [])]}
            return {et: [_handler_name(h) for h in handlers] for et, handlers in self._subscribers.items()}

    def get_statistics(self) -> EventBusStatistics:
        with self._stats_lock:
            stats = EventBusStatistics(
                total_published=self._stats.total_published,
                total_processed=self._stats.total_processed,
                total_failed=self._stats.total_failed,
                total_redelivered=self._stats.total_redelivered,
            )
        with self._subscriber_lock:
            stats.subscriber_count = {et: len(handlers) for et, handlers in self._subscribers.items()}
        return stats

    def clear(self) -> None:
        """Drop subscribers, history and statistics (tests)."""
        with self._subscriber_lock:
            self._subscribers.clear()
        self._event_history.clear()
        with self._stats_lock:
            self._stats = EventBusStatistics()


__all__ = [
    "EventId",
    "CorrelationId",
    "EventHandler",
    "Event",
    "PublishResult",
    "EventBusStatistics",
    "EventBus",
    "WILDCARD",
]

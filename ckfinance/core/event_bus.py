"""
Event Bus: explicit message passing between client components.

The session manager and the deposit orchestrator publish typed events here;
the notification dispatcher, the trading session and any UI layer subscribe.
No component reaches into another's state to learn about a change.

Features:
- Typed events with dataclasses
- Sync or async handlers
- Priority-ordered handler execution
- Error isolation (one handler failure doesn't stop others)
- Inline dispatch for ordered delivery, or queued publish with a worker
- Event history for debugging
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Coroutine, Dict, List, Optional, Union

from ckfinance.infra.json_utils import dumps

log = logging.getLogger("ckfinance")


class EventType(Enum):
    """
    Event types carried by the bus.

    Naming convention: NOUN_VERB for state changes.
    """
    # Session events
    SESSION_CONNECTED = auto()       # Authenticated channel established
    SESSION_DISCONNECTED = auto()    # Channel revoked, identity cleared
    SESSION_AUTH_FAILED = auto()     # Login attempt failed

    # Deposit events
    DEPOSIT_ADDRESS_GENERATED = auto()
    DEPOSIT_RESET = auto()           # Transient deposit fields cleared
    DEPOSIT_DETECTED = auto()        # Inbound tx hash first seen
    DEPOSIT_STATUS_CHANGED = auto()  # DepositRecord.status moved
    DEPOSIT_STATUS_CHECKED = auto()  # Status check completed (may be unchanged)
    DEPOSIT_READY = auto()           # Deposit reached finality
    DEPOSIT_MINTED = auto()          # Mint RPC succeeded

    # History events
    HISTORY_RECORD_ADDED = auto()

    # Portfolio events
    PORTFOLIO_UPDATED = auto()

    # Trading events
    ORDER_PLACED = auto()
    ORDER_CANCELLED = auto()
    ORDER_BOOK_UPDATED = auto()


@dataclass
class Event:
    """
    Event container.

    - type: EventType enum value
    - data: event-specific payload
    - timestamp_ms: creation time
    - source: originating component (optional)
    """
    type: EventType
    data: Dict[str, Any]
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    source: Optional[str] = None

    def __str__(self) -> str:
        return f"Event({self.type.name}, ts={self.timestamp_ms}, source={self.source})"


Handler = Union[
    Callable[[Event], Coroutine[Any, Any, None]],
    Callable[[Event], None],
]


@dataclass
class Subscription:
    """Internal subscription record."""
    handler: Handler
    priority: int = 0  # Higher = called first
    filter_fn: Optional[Callable[[Event], bool]] = None
    name: Optional[str] = None


class EventBus:
    """
    Central event bus.

    Usage:
        bus = EventBus()
        bus.subscribe(EventType.DEPOSIT_STATUS_CHANGED, on_status)

        # Ordered, inline delivery (handlers finish before this returns)
        await bus.emit(EventType.DEPOSIT_STATUS_CHANGED, source="deposit",
                       asset_id="BTC", status="confirming")

        # Fire-and-forget delivery through the queue worker
        bus.publish_nowait(bus.create_event(EventType.ORDER_PLACED, pair="ckBTC-ICP"))
        asyncio.create_task(bus.start())
    """

    DEFAULT_HISTORY_SIZE = 500

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._log = log_event or self._default_log

        self._subscribers: Dict[EventType, List[Subscription]] = {}
        self._global_subscribers: List[Subscription] = []

        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._running = False

        self._history_size = history_size
        self._history: List[Event] = []

        self._stats = {
            "events_published": 0,
            "events_processed": 0,
            "handler_errors": 0,
        }

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(dumps({"event": event, **kwargs}))

    # -------------------------------------------------------------------------
    # Subscription Management
    # -------------------------------------------------------------------------

    @staticmethod
    def _insert_sorted(subs: List[Subscription], sub: Subscription) -> None:
        insert_idx = len(subs)
        for i, existing in enumerate(subs):
            if existing.priority < sub.priority:
                insert_idx = i
                break
        subs.insert(insert_idx, sub)

    def subscribe(
        self,
        event_type: EventType,
        handler: Handler,
        priority: int = 0,
        filter_fn: Optional[Callable[[Event], bool]] = None,
        name: Optional[str] = None,
    ) -> Subscription:
        """
        Subscribe to one event type.

        Returns:
            Subscription object (for unsubscribing)
        """
        sub = Subscription(handler=handler, priority=priority, filter_fn=filter_fn, name=name)
        self._insert_sorted(self._subscribers.setdefault(event_type, []), sub)
        self._log(
            "event_bus_subscribe",
            event_type=event_type.name,
            handler_name=name or getattr(handler, "__name__", "handler"),
            priority=priority,
        )
        return sub

    def subscribe_all(
        self,
        handler: Handler,
        priority: int = 0,
        filter_fn: Optional[Callable[[Event], bool]] = None,
        name: Optional[str] = None,
    ) -> Subscription:
        """Subscribe to every event type. Global handlers run first."""
        sub = Subscription(handler=handler, priority=priority, filter_fn=filter_fn, name=name)
        self._insert_sorted(self._global_subscribers, sub)
        return sub

    def unsubscribe(self, event_type: Optional[EventType], subscription: Subscription) -> bool:
        """Remove a subscription. Pass None as event_type for global ones."""
        subs = self._global_subscribers if event_type is None else self._subscribers.get(event_type, [])
        if subscription in subs:
            subs.remove(subscription)
            return True
        return False

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def create_event(self, event_type: EventType, source: Optional[str] = None, **data: Any) -> Event:
        return Event(type=event_type, data=data, source=source)

    async def dispatch(self, event: Event) -> None:
        """Deliver an event to all handlers before returning."""
        self._stats["events_published"] += 1
        await self._process_event(event)

    async def emit(self, event_type: EventType, source: Optional[str] = None, **data: Any) -> Event:
        """Create and dispatch an event inline."""
        event = self.create_event(event_type, source=source, **data)
        await self.dispatch(event)
        return event

    def publish_nowait(self, event: Event) -> None:
        """Queue an event for the background worker started with start()."""
        self._queue.put_nowait(event)
        self._stats["events_published"] += 1

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Process queued events until stop() is called. Run as a task."""
        self._running = True
        self._log("event_bus_started")
        while self._running:
            try:
                try:
                    event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                await self._process_event(event)
            except asyncio.CancelledError:
                self._log("event_bus_cancelled")
                break
        self._log("event_bus_stopped")

    def stop(self) -> None:
        self._running = False

    async def drain(self) -> int:
        """Process everything currently queued. Returns the count processed."""
        count = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            await self._process_event(event)
            count += 1
        return count

    async def _process_event(self, event: Event) -> None:
        if self._history_size > 0:
            self._history.append(event)
            if len(self._history) > self._history_size:
                self._history.pop(0)

        handlers: List[Subscription] = []
        handlers.extend(self._global_subscribers)
        handlers.extend(self._subscribers.get(event.type, []))

        for sub in handlers:
            if sub.filter_fn and not sub.filter_fn(event):
                continue
            try:
                result = sub.handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self._stats["handler_errors"] += 1
                self._log(
                    "event_bus_handler_error",
                    event_type=event.type.name,
                    handler_name=sub.name or "unknown",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        self._stats["events_processed"] += 1

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    def get_history(self, event_type: Optional[EventType] = None, limit: int = 100) -> List[Event]:
        """Recent events, most recent last."""
        events = self._history
        if event_type:
            events = [e for e in events if e.type == event_type]
        return events[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "queue_size": self._queue.qsize(),
            "history_size": len(self._history),
            "subscriber_count": sum(len(s) for s in self._subscribers.values()),
            "global_subscriber_count": len(self._global_subscribers),
            "running": self._running,
        }

    def get_subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, []))

    def clear(self) -> None:
        """Drop subscribers, history and queued events (for testing)."""
        self._subscribers.clear()
        self._global_subscribers.clear()
        self._history.clear()
        while not self._queue.empty():
            self._queue.get_nowait()

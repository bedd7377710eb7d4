"""
Event bus connecting the reconciled view to its consumers
"""

import asyncio
import inspect
import logging
from typing import Dict, List, Callable, Any
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """Event data structure"""
    type: str
    data: Dict[str, Any]
    timestamp: float
    source: str = "system"


class EventBus:
    """
    Queue-backed publish/subscribe hub.

    Producers call ``emit`` (or ``emit_nowait`` from synchronous code) and a
    processor task fans each event out to the listeners registered for its
    type. ``subscribe`` hands back a callable that removes the listener again,
    so consumers never need a reference to the bus to detach.
    """

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = defaultdict(list)
        self.event_queue: asyncio.Queue = asyncio.Queue()
        self.running = False
        self.processor_task = None
        logger.info("EventBus initialized")

    async def start(self):
        """Start the event processor"""
        if not self.running:
            self.running = True
            self.processor_task = asyncio.create_task(self._process_events())
            logger.info("EventBus started")

    async def stop(self):
        """Stop the event processor"""
        self.running = False
        if self.processor_task:
            await self.processor_task
            self.processor_task = None
            logger.info("EventBus stopped")

    async def _process_events(self):
        """Process events from the queue"""
        while self.running:
            try:
                # Wait with a timeout so the running flag is re-checked
                event = await asyncio.wait_for(self.event_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"Error processing event: {e}")

    async def dispatch(self, event: Event):
        """Deliver one event to every listener registered for its type"""
        listeners = list(self.listeners.get(event.type, [])) + list(self.listeners.get("*", []))

        if not listeners:
            logger.debug(f"No listeners for event type: {event.type}")
            return

        logger.debug(f"Dispatching {event.type} to {len(listeners)} listeners")

        results = await asyncio.gather(
            *(self._call_listener(listener, event) for listener in listeners),
            return_exceptions=True
        )

        for listener, result in zip(listeners, results):
            if isinstance(result, Exception):
                logger.error(f"Listener {_name(listener)} failed: {result}")

    async def _call_listener(self, listener: Callable, event: Event):
        """Call a sync or async listener"""
        result = listener(event)
        if inspect.isawaitable(result):
            await result

    def subscribe(self, event_type: str, listener: Callable) -> Callable[[], None]:
        """Subscribe to an event type ("*" for every type); returns a cancel handle"""
        self.listeners[event_type].append(listener)
        logger.debug(f"Subscribed {_name(listener)} to {event_type}")

        def cancel():
            self.unsubscribe(event_type, listener)

        return cancel

    def unsubscribe(self, event_type: str, listener: Callable):
        """Unsubscribe from an event type"""
        if listener in self.listeners[event_type]:
            self.listeners[event_type].remove(listener)
            logger.debug(f"Unsubscribed {_name(listener)} from {event_type}")

    def _make_event(self, event_type: str, data: Dict[str, Any], source: str) -> Event:
        return Event(
            type=event_type,
            data=data,
            timestamp=datetime.now().timestamp(),
            source=source
        )

    async def emit(self, event_type: str, data: Dict[str, Any], source: str = "system"):
        """Emit an event"""
        await self.event_queue.put(self._make_event(event_type, data, source))
        logger.debug(f"Emitted event: {event_type} from {source}")

    def emit_nowait(self, event_type: str, data: Dict[str, Any], source: str = "system"):
        """Emit from synchronous code; the queue is unbounded so this never blocks"""
        self.event_queue.put_nowait(self._make_event(event_type, data, source))
        logger.debug(f"Emitted event: {event_type} from {source}")

    def drain(self) -> List[Event]:
        """Remove and return every queued event without dispatching it"""
        events = []
        while not self.event_queue.empty():
            events.append(self.event_queue.get_nowait())
        return events


def _name(listener: Callable) -> str:
    return getattr(listener, "__qualname__", None) or repr(listener)


class EventTypes:
    """Standard event types"""
    # Chain view
    STATS_UPDATED = "stats_updated"
    HEIGHT_ADVANCED = "height_advanced"
    BLOCKS_UPDATED = "blocks_updated"
    TRANSACTIONS_UPDATED = "transactions_updated"
    TRANSACTION_ENRICHED = "transaction_enriched"

    # Address view
    ADDRESS_FEED_UPDATED = "address_feed_updated"
    ADDRESS_BALANCES_UPDATED = "address_balances_updated"
    TRACKING_CHANGED = "tracking_changed"
    LIVE_TRANSACTION = "live_transaction"

    # Realtime connection
    CONNECTION_STATE = "connection_state"

    # User-visible, dismissible failure notice
    NOTIFICATION = "notification"

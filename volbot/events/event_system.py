import asyncio
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from loguru import logger


@dataclass(frozen=True)
class Event:
    """Base event class for the event system."""

    timestamp: float = field(default_factory=time.time, init=False)

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TransactionSentEvent(Event):
    """Event emitted when a transaction or bundle is sent."""
    identifier: str = ""
    label: str = ""
    attempt: int = 1
    mode: str = "single"


@dataclass(frozen=True)
class TransactionConfirmedEvent(Event):
    """Event emitted when a transaction or bundle is confirmed."""
    identifier: str = ""
    label: str = ""
    attempts: int = 1
    status: str = "confirmed"
    source: str = "rpc"


@dataclass(frozen=True)
class TransactionFailedEvent(Event):
    """Event emitted when a transaction ends without confirmation."""
    identifier: Optional[str] = None
    label: str = ""
    attempts: int = 1
    status: str = "failed"
    error: Optional[str] = None


@dataclass(frozen=True)
class TransactionRetryEvent(Event):
    """Event emitted when a new submission attempt is scheduled."""
    identifier: Optional[str] = None
    label: str = ""
    retry_count: int = 1
    reason: str = ""
    delay: float = 0.0


@dataclass(frozen=True)
class BalanceChangeEvent(Event):
    """Event emitted when a wallet balance changes."""
    wallet_address: str = ""
    token_address: str = ""
    previous_balance: float = 0.0
    new_balance: float = 0.0


@dataclass(frozen=True)
class BotStatusEvent(Event):
    """Event emitted after each trading cycle of a wallet group."""
    group: int = 0
    cycle: int = 0
    buys: int = 0
    sells: int = 0
    failures: int = 0
    message: str = ""


E = TypeVar("E", bound=Event)
Subscriber = Callable[[Any], Awaitable[None]]


class EventSystem:
    """
    System for subscribing to and publishing typed events.

    Subscribers register for an event class and receive every published event
    that is an instance of it, so subscribing to ``Event`` sees everything.
    Once started, events are dispatched from a background task; before that
    they are dispatched inline by ``publish``.
    """

    def __init__(self):
        """Initialize the event system."""
        self._subscribers: Dict[Type[Event], List[Subscriber]] = {}
        self._queue: asyncio.Queue = asyncio.Queue()
        self._running = False
        self._background_task = None

    async def subscribe(self, event_class: Type[E], callback: Callable[[E], Awaitable[None]]):
        """
        Subscribe to an event class.

        Args:
            event_class: Event class to subscribe to (subclasses included)
            callback: Async callback function to call when event occurs
        """
        if not (isinstance(event_class, type) and issubclass(event_class, Event)):
            raise TypeError(f"{event_class!r} is not an Event class")

        self._subscribers.setdefault(event_class, []).append(callback)
        logger.debug(f"Subscribed to {event_class.__name__} events")

    def unsubscribe(self, event_class: Type[Event], callback: Subscriber):
        subscribers = self._subscribers.get(event_class, [])
        if callback in subscribers:
            subscribers.remove(callback)

    async def publish(self, event: Event):
        """
        Publish an event to subscribers.

        Args:
            event: Event to publish
        """
        if self._running:
            await self._queue.put(event)
            logger.debug(f"Published {event.event_type} event")
        else:
            await self._dispatch(event)

    def _subscribers_for(self, event: Event) -> List[Subscriber]:
        matched = []
        for event_class, callbacks in self._subscribers.items():
            if isinstance(event, event_class):
                matched.extend(callbacks)
        return matched

    async def _dispatch(self, event: Event):
        subscribers = self._subscribers_for(event)
        if not subscribers:
            return

        results = await asyncio.gather(*(sub(event) for sub in subscribers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Error in {event.event_type} subscriber: {str(result)}")

    async def _process_events(self):
        """Process events from the queue and dispatch to subscribers."""
        while self._running:
            try:
                event = await self._queue.get()
            except asyncio.CancelledError:
                logger.debug("Event processing task cancelled")
                break

            try:
                logger.debug(f"Processing {event.event_type} event")
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def join(self):
        """Wait until every queued event has been dispatched."""
        if self._running:
            await self._queue.join()

    async def start(self):
        """Start the event processing task."""
        if self._running:
            return

        self._running = True
        self._background_task = asyncio.create_task(self._process_events())
        logger.info("Event system started")

    async def stop(self):
        """Drain queued events and stop the event processing task."""
        if not self._running:
            return

        await self._queue.join()
        self._running = False
        if self._background_task:
            self._background_task.cancel()
            try:
                await self._background_task
            except asyncio.CancelledError:
                pass
            self._background_task = None

        logger.info("Event system stopped")

import asyncio
import itertools
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import replace

from citizen_chat.infra.realtime.events import NotifierEvent
from citizen_chat.infra.realtime.topics import topics_for

logger = logging.getLogger(__name__)


class Subscription:
    """Live, ordered stream of events for one topic.

    Each subscription owns its buffer, so a slow or broken consumer never
    delays the others. A consumer that lets its buffer fill up is dropped:
    the stream ends with ``overflowed`` set and the consumer is expected to
    re-read state and subscribe again.
    """

    def __init__(
        self,
        topic: str,
        buffer_size: int,
        on_close: Callable[["Subscription"], None],
    ) -> None:
        self.topic = topic
        self.overflowed = False
        self._queue: asyncio.Queue[NotifierEvent | None] = asyncio.Queue(
            maxsize=buffer_size + 1
        )
        self._buffer_size = buffer_size
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, event: NotifierEvent) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self._buffer_size:
            raise asyncio.QueueFull
        self._queue.put_nowait(event)

    async def get(self) -> NotifierEvent | None:
        """Next event, or None once the subscription is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        event = await self._queue.get()
        if event is None:
            return None
        return event

    def close(self, *, overflowed: bool = False) -> None:
        if self._closed:
            return
        self._closed = True
        if overflowed:
            self.overflowed = True
            while not self._queue.empty():
                self._queue.get_nowait()
        # The extra slot reserved in the queue guarantees room for the sentinel.
        self._queue.put_nowait(None)
        self._on_close(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> NotifierEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *_: object) -> None:
        self.close()


class InMemoryNotifier:
    """In-process topic fan-out.

    ``publish`` never suspends, so engine code calls it while still holding
    the lock of the record it just changed; that keeps per-topic delivery in
    commit order.
    """

    def __init__(self, buffer_size: int = 256) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be positive")
        self._buffer_size = buffer_size
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)
        self._event_ids = itertools.count(1)

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(topic, self._buffer_size, self._discard)
        self._subscribers[topic].add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()

    def subscriber_count(self, topic: str) -> int:
        subscribers = self._subscribers.get(topic)
        if subscribers is None:
            return 0
        return len(subscribers)

    def publish(self, event: NotifierEvent) -> NotifierEvent:
        stamped = replace(event, event_id=next(self._event_ids))
        for topic in topics_for(stamped):
            recipients = self._subscribers.get(topic)
            if not recipients:
                continue
            for subscription in list(recipients):
                try:
                    subscription.deliver(stamped)
                except asyncio.QueueFull:
                    logger.warning(
                        "Dropping slow subscriber",
                        extra={"topic": topic, "event_id": stamped.event_id},
                    )
                    subscription.close(overflowed=True)
                except Exception:
                    logger.warning(
                        "Subscriber delivery failed",
                        exc_info=True,
                        extra={"topic": topic, "event_id": stamped.event_id},
                    )
                    subscription.close()
        return stamped

    def close_all(self) -> None:
        for subscribers in list(self._subscribers.values()):
            for subscription in list(subscribers):
                subscription.close()

    def _discard(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.topic)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            self._subscribers.pop(subscription.topic, None)

"""
Real-time order events. Each order has its own channel (prefix + order id); subscribers get
status-update and location-update events published after the core mutates state.

Publishing is fire-and-forget: publish_status/publish_location only schedule a background send
and return. Send failures are logged and counted here and never reach the caller. A channel
without subscribers drops events; nothing is buffered or replayed.

Backends: in-process queues (memory) or Redis PUBLISH/SUBSCRIBE when NOTIFIER_BACKEND=redis.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime

import redis.asyncio as redis
from redis.asyncio.client import PubSub

from dispatch.metrics import events_publish_failed_total, events_published_total
from dispatch.models import Coordinates, OrderStatus

logger = logging.getLogger(__name__)

STATUS_UPDATE = "status-update"
LOCATION_UPDATE = "location-update"

SUBSCRIBER_QUEUE_SIZE = 100


def _make_event(kind: str, order_id: str, timestamp: datetime, **fields) -> dict:
    return {
        "event": kind,
        "order_id": order_id,
        "timestamp": timestamp.isoformat(),
        **fields,
    }


class Subscription(ABC):
    """Async iterator over the events of one order channel."""

    def __init__(self, order_id: str, channel: str):
        self.order_id = order_id
        self.channel = channel
        self.closed = False

    def __aiter__(self):
        return self

    @abstractmethod
    async def __anext__(self) -> dict: ...


class EventNotifier(ABC):
    def __init__(self, channel_prefix: str = "order-", shutdown_wait_sec: float = 5.0):
        self._channel_prefix = channel_prefix
        self._shutdown_wait_sec = shutdown_wait_sec
        self._tasks: set[asyncio.Task] = set()

    def channel(self, order_id: str) -> str:
        return f"{self._channel_prefix}{order_id}"

    def publish_status(
        self,
        order_id: str,
        status: OrderStatus,
        timestamp: datetime,
        location: Coordinates | None = None,
        reason: str | None = None,
    ) -> None:
        event = _make_event(
            STATUS_UPDATE,
            order_id,
            timestamp,
            status=OrderStatus(status).value,
            location=location.model_dump() if location else None,
        )
        if reason is not None:
            event["reason"] = reason
        self._schedule(order_id, event)

    def publish_location(self, order_id: str, coordinates: Coordinates, timestamp: datetime) -> None:
        self._schedule(order_id, _make_event(LOCATION_UPDATE, order_id, timestamp, location=coordinates.model_dump()))

    def _schedule(self, order_id: str, event: dict) -> None:
        channel = self.channel(order_id)
        targets = self._targets(channel)
        try:
            t = asyncio.get_running_loop().create_task(self._deliver(channel, event, targets))
        except RuntimeError:
            logger.warning("No running event loop, dropped %s for %s", event["event"], channel)
            events_publish_failed_total.labels(kind=event["event"]).inc()
            return
        self._tasks.add(t)
        t.add_done_callback(self._tasks.discard)

    def _targets(self, channel: str) -> list | None:
        """Recipients fixed at publish time; None lets the backend resolve them on send."""
        return None

    async def _deliver(self, channel: str, event: dict, targets: list | None = None) -> None:
        try:
            await self._send(channel, event, targets)
            events_published_total.labels(kind=event["event"]).inc()
        except Exception as e:
            events_publish_failed_total.labels(kind=event["event"]).inc()
            logger.exception("Failed to publish %s on %s: %s", event["event"], channel, e)

    async def flush(self) -> None:
        """Wait for every scheduled publication to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        if self._tasks:
            logger.info(
                "Notifier shutdown: waiting for %d in-flight publication(s) (max %ss) ...",
                len(self._tasks),
                self._shutdown_wait_sec,
            )
            _, pending = await asyncio.wait(set(self._tasks), timeout=self._shutdown_wait_sec)
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    @abstractmethod
    async def _send(self, channel: str, event: dict, targets: list | None = None) -> None: ...

    @abstractmethod
    async def subscribe(self, order_id: str) -> Subscription: ...

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None: ...


_CLOSED = object()


class MemorySubscription(Subscription):
    def __init__(self, order_id: str, channel: str):
        super().__init__(order_id, channel)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)

    async def __anext__(self) -> dict:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        item = await self.queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class MemoryEventNotifier(EventNotifier):
    def __init__(self, channel_prefix: str = "order-", shutdown_wait_sec: float = 5.0):
        super().__init__(channel_prefix, shutdown_wait_sec)
        self._subscribers: dict[str, set[MemorySubscription]] = {}

    def subscriber_count(self, order_id: str) -> int:
        return len(self._subscribers.get(self.channel(order_id), ()))

    def _targets(self, channel: str) -> list[MemorySubscription]:
        return list(self._subscribers.get(channel, ()))

    async def _send(self, channel: str, event: dict, targets: list | None = None) -> None:
        if targets is None:
            targets = self._targets(channel)
        for sub in targets:
            if sub.closed:
                continue
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full on %s, dropped %s", channel, event["event"])

    async def subscribe(self, order_id: str) -> Subscription:
        sub = MemorySubscription(order_id, self.channel(order_id))
        self._subscribers.setdefault(sub.channel, set()).add(sub)
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.channel)
        if subs is not None:
            subs.discard(subscription)
            if not subs:
                del self._subscribers[subscription.channel]
        if not subscription.closed:
            subscription.closed = True
            try:
                subscription.queue.put_nowait(_CLOSED)
            except asyncio.QueueFull:
                pass  # reader sees closed once the queue drains


class RedisSubscription(Subscription):
    def __init__(self, order_id: str, channel: str, pubsub: PubSub):
        super().__init__(order_id, channel)
        self.pubsub = pubsub

    async def __anext__(self) -> dict:
        while not self.closed:
            message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message is None or message.get("type") != "message":
                continue
            try:
                return json.loads(message["data"])
            except json.JSONDecodeError as e:
                logger.warning("Invalid JSON on %s: %s", self.channel, e)
        raise StopAsyncIteration


class RedisEventNotifier(EventNotifier):
    def __init__(self, client: redis.Redis, channel_prefix: str = "order-", shutdown_wait_sec: float = 5.0):
        super().__init__(channel_prefix, shutdown_wait_sec)
        self._redis = client

    async def _send(self, channel: str, event: dict, targets: list | None = None) -> None:
        await self._redis.publish(channel, json.dumps(event))

    async def subscribe(self, order_id: str) -> Subscription:
        pubsub = self._redis.pubsub()
        channel = self.channel(order_id)
        await pubsub.subscribe(channel)
        return RedisSubscription(order_id, channel, pubsub)

    async def unsubscribe(self, subscription: Subscription) -> None:
        if subscription.closed:
            return
        subscription.closed = True
        await subscription.pubsub.unsubscribe(subscription.channel)
        await subscription.pubsub.aclose()

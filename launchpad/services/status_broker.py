"""Live status fan-out to connected widget viewers.

Each tenant has a set of subscriber channels.  A new subscriber gets one
snapshot straight away; every later change is pushed as a full snapshot.
Each connection runs its own keep-alive task, and any failed write (snapshot,
broadcast or ping) prunes the channel.  Nothing survives a disconnect:
viewers reconnect and start over with a fresh snapshot.

Wire format (``sep="\\n"``)::

    event: message
    data: {...status...}

    event: ping
    data: {"ts": 1700000000000}
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator
from typing import Protocol

from sse_starlette import ServerSentEvent

from launchpad import metrics
from launchpad.services.onboarding_store import OnboardingSnapshot
from launchpad.services.onboarding_store import OnboardingStore
from launchpad.utils.time import epoch_ms

logger = logging.getLogger(__name__)

SSE_SEPARATOR = "\n"


def message_event(snapshot: OnboardingSnapshot) -> ServerSentEvent:
    return ServerSentEvent(data=json.dumps(snapshot.to_wire()), event="message", sep=SSE_SEPARATOR)


def ping_event(ts: int | None = None) -> ServerSentEvent:
    payload = {"ts": ts if ts is not None else epoch_ms()}
    return ServerSentEvent(data=json.dumps(payload), event="ping", sep=SSE_SEPARATOR)


class StatusChannel(Protocol):
    """Writable push connection to one viewer."""

    async def send(self, event: ServerSentEvent) -> None: ...

    def close(self) -> None: ...


class ChannelClosed(Exception):
    pass


class QueueChannel:
    """Channel backed by a bounded :class:`asyncio.Queue`.

    The HTTP layer drains it with ``async for``; a full queue means the
    viewer stopped reading and counts as a failed write.
    """

    _CLOSE = object()

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: ServerSentEvent) -> None:
        if self._closed:
            raise ChannelClosed("channel closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(self._CLOSE)
        except asyncio.QueueFull:
            # Reader is gone or hopelessly behind; drop the backlog so the
            # sentinel still gets through.
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(self._CLOSE)

    async def __aiter__(self) -> AsyncIterator[ServerSentEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSE:
                return
            yield item


class StatusSyncBroker:
    def __init__(self, store: OnboardingStore, *, keepalive_seconds: float = 25.0):
        self._store = store
        self._keepalive_seconds = keepalive_seconds
        self._subscribers: dict[str, dict[StatusChannel, asyncio.Task]] = {}
        # Serialises fetch+send per tenant so frames leave in fetch order.
        self._locks: dict[str, asyncio.Lock] = {}

    def subscriber_count(self, tenant_id: str | None = None) -> int:
        if tenant_id is not None:
            return len(self._subscribers.get(tenant_id, {}))
        return sum(len(subs) for subs in self._subscribers.values())

    def _lock(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock

    async def subscribe(self, tenant_id: str, channel: StatusChannel) -> None:
        """Register *channel* and push the current snapshot to it.

        Storage errors while reading the snapshot propagate after the channel
        is removed again.
        """
        subs = self._subscribers.setdefault(tenant_id, {})
        subs[channel] = asyncio.create_task(
            self._keepalive(tenant_id, channel), name=f"sse-keepalive:{tenant_id}"
        )
        metrics.sse_subscribers.inc()
        logger.info("status_broker.subscribe tenant_id=%s subscribers=%d", tenant_id, len(subs))

        try:
            async with self._lock(tenant_id):
                snapshot = await self._store.get(tenant_id)
                await self._deliver(tenant_id, channel, message_event(snapshot))
        except Exception:
            self.unsubscribe(tenant_id, channel)
            raise

    def unsubscribe(self, tenant_id: str, channel: StatusChannel) -> bool:
        """Remove *channel*; drops the tenant's set once it is empty."""
        subs = self._subscribers.get(tenant_id)
        if not subs or channel not in subs:
            return False

        task = subs.pop(channel)
        if task is not asyncio.current_task():
            task.cancel()
        channel.close()
        metrics.sse_subscribers.dec()

        if not subs:
            del self._subscribers[tenant_id]
            lock = self._locks.get(tenant_id)
            if lock is not None and not lock.locked():
                del self._locks[tenant_id]
        logger.info("status_broker.unsubscribe tenant_id=%s remaining=%d", tenant_id, len(subs))
        return True

    async def broadcast(self, tenant_id: str) -> int:
        """Push the current snapshot to every subscriber of *tenant_id*.

        Returns the number of successful deliveries.  Failed channels are
        pruned, never retried.
        """
        if not self._subscribers.get(tenant_id):
            return 0

        async with self._lock(tenant_id):
            snapshot = await self._store.get(tenant_id)
            event = message_event(snapshot)
            delivered = 0
            for channel in list(self._subscribers.get(tenant_id, {})):
                if await self._deliver(tenant_id, channel, event):
                    delivered += 1

        if tenant_id not in self._subscribers:
            lock = self._locks.get(tenant_id)
            if lock is not None and not lock.locked():
                del self._locks[tenant_id]

        metrics.status_broadcasts_total.inc()
        logger.debug("status_broker.broadcast tenant_id=%s delivered=%d", tenant_id, delivered)
        return delivered

    async def _deliver(self, tenant_id: str, channel: StatusChannel, event: ServerSentEvent) -> bool:
        try:
            await channel.send(event)
        except Exception as exc:
            logger.info("status_broker.prune tenant_id=%s reason=%s", tenant_id, exc.__class__.__name__)
            self.unsubscribe(tenant_id, channel)
            return False
        return True

    async def _keepalive(self, tenant_id: str, channel: StatusChannel) -> None:
        while True:
            await asyncio.sleep(self._keepalive_seconds)
            if not await self._deliver(tenant_id, channel, ping_event()):
                return

    async def close(self) -> None:
        """Drop every subscriber (process shutdown)."""
        tasks = []
        for tenant_id in list(self._subscribers):
            for channel in list(self._subscribers.get(tenant_id, {})):
                tasks.append(self._subscribers[tenant_id][channel])
                self.unsubscribe(tenant_id, channel)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "ChannelClosed",
    "QueueChannel",
    "StatusChannel",
    "StatusSyncBroker",
    "message_event",
    "ping_event",
]

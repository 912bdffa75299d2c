# libs/adapters/queue_inmemory.py
from __future__ import annotations

import asyncio
from collections import deque
from typing import Dict, Optional, Set, Tuple

import structlog

from libs.connections.base import LinkListener
from .errors import ConnectError, ConsumerAlreadyRegistered, QueueUnavailable
from .queue import Ack, RawHandler


class InMemoryQueueChannel:
    def __init__(self, name: str, broker: "InMemoryQueueBroker") -> None:
        self.name = name
        self._broker = broker
        self._q: deque[Tuple[str, str]] = deque()
        self._seq = 0
        self._inflight: Dict[str, str] = {}
        self._handler: Optional[RawHandler] = None
        self._wakeup = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._destroyed = False

    # ---- introspection ----
    @property
    def pending(self) -> int:
        return len(self._q)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    # ---- QueueChannel ----
    async def submit(self, payload: str) -> None:
        self._broker._check_up()
        if self._destroyed:
            raise QueueUnavailable(f"queue {self.name!r} was destroyed")
        self._seq += 1
        self._q.append((f"m{self._seq}", payload))
        self._wakeup.set()

    def consume(self, handler: RawHandler) -> None:
        if self._handler is not None:
            raise ConsumerAlreadyRegistered(self.name)
        self._handler = handler
        self._loop_task = asyncio.create_task(self._dispatch_loop())

    async def clear(self) -> int:
        self._broker._check_up()
        count = len(self._q)
        self._q.clear()
        return count

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None
        # let running handlers finish and ack
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._handler = None
        self._q.clear()

    # ---- redelivery ----
    async def requeue_inflight(self) -> int:
        """Put every unacknowledged message back at the head of the queue."""
        items = list(self._inflight.items())
        self._inflight.clear()
        for item in reversed(items):
            self._q.appendleft(item)
        if items:
            self._wakeup.set()
        return len(items)

    async def join(self) -> None:
        """Wait until the consumer has taken every message and all handler tasks returned."""
        while self._handler is not None and (self._q or self._tasks):
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)

    # ---- internals ----
    async def _dispatch_loop(self) -> None:
        while not self._destroyed:
            self._wakeup.clear()
            while self._q:
                mid, payload = self._q.popleft()
                self._inflight[mid] = payload
                task = asyncio.create_task(self._run(mid, payload))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            await self._wakeup.wait()

    async def _run(self, mid: str, payload: str) -> None:
        handler = self._handler
        if handler is None:
            return
        try:
            await handler(payload, self._ack_for(mid))
        except Exception as exc:
            # left in-flight: requeue_inflight() redelivers it
            self._broker.log.error("queue.handler_error", queue=self.name, message_id=mid, error=str(exc))

    def _ack_for(self, mid: str) -> Ack:
        async def _ack() -> None:
            self._inflight.pop(mid, None)

        return _ack


class InMemoryQueueBroker:
    """
    Process-local broker for dev and tests. Doubles as the broker link:
    `open()` reports connected immediately, `drop()` simulates the broker going away.
    """

    service = "broker"

    def __init__(self, *, reachable: bool = True, logger=None) -> None:
        self.log = logger or structlog.get_logger()
        self._reachable = reachable
        self._up = False
        self._queues: Dict[str, InMemoryQueueChannel] = {}
        self._listener: Optional[LinkListener] = None

    # ---- SubsystemLink ----
    async def open(self, listener: LinkListener) -> None:
        if not self._reachable:
            raise ConnectError(self.service, "memory broker marked unreachable")
        self._listener = listener
        self._up = True
        listener.connected(self.service)

    async def close(self) -> None:
        for name in list(self._queues):
            await self.destroy_queue(name)
        self._up = False
        self._listener = None

    def drop(self) -> None:
        self._up = False
        if self._listener is not None:
            self._listener.disconnected(self.service)

    # ---- QueueBroker ----
    def create_queue(self, name: str) -> InMemoryQueueChannel:
        channel = self._queues.get(name)
        if channel is None:
            channel = self._queues[name] = InMemoryQueueChannel(name, self)
        return channel

    async def destroy_queue(self, name: str) -> None:
        channel = self._queues.pop(name, None)
        if channel is not None:
            await channel.destroy()

    def _check_up(self) -> None:
        if not self._up:
            raise QueueUnavailable("memory broker is not connected")

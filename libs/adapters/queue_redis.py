# libs/adapters/queue_redis.py
from __future__ import annotations

import asyncio
from typing import Dict, Optional, Set

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from libs.connections.base import LinkListener
from .errors import ConnectError, ConsumerAlreadyRegistered, QueueUnavailable, TransportError
from .queue import Ack, RawHandler
from .redis_link import ClientFactory, heartbeat


class RedisQueueChannel:
    """
    One Redis list per channel plus a `<name>:processing` list.
      submit  -> LPUSH <name>
      take    -> (B)LMOVE <name> RIGHT -> <name>:processing LEFT
      ack     -> LREM <name>:processing 1 <payload>
    Messages still in the processing list were delivered but never acknowledged.
    """

    def __init__(self, name: str, broker: "RedisQueueBroker") -> None:
        self.name = name
        self.processing = f"{name}:processing"
        self._broker = broker
        self._handler: Optional[RawHandler] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._destroyed = False

    async def submit(self, payload: str) -> None:
        try:
            await self._broker.commands.lpush(self.name, payload)
        except RedisError as exc:
            raise QueueUnavailable(f"submit to {self.name!r} failed: {exc}") from exc

    def consume(self, handler: RawHandler) -> None:
        if self._handler is not None:
            raise ConsumerAlreadyRegistered(self.name)
        self._handler = handler
        self._loop_task = asyncio.create_task(self._consume_loop())

    async def clear(self) -> int:
        try:
            async with self._broker.commands.pipeline(transaction=True) as pipe:
                pipe.llen(self.name)
                pipe.delete(self.name)
                count, _ = await pipe.execute()
        except RedisError as exc:
            raise TransportError(f"clear of {self.name!r} failed: {exc}") from exc
        return int(count)

    async def destroy(self) -> None:
        # stored messages stay on the server; only this handle goes away
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

    async def requeue_inflight(self) -> int:
        moved = 0
        try:
            while await self._broker.commands.lmove(self.processing, self.name, "RIGHT", "RIGHT") is not None:
                moved += 1
        except RedisError as exc:
            raise TransportError(f"requeue of {self.name!r} failed: {exc}") from exc
        return moved

    # ---- internals ----
    async def _take(self) -> Optional[str]:
        broker = self._broker
        if broker.duplex:
            return await broker.consumer.blmove(
                self.name, self.processing, broker.block_sec, src="RIGHT", dest="LEFT"
            )
        payload = await broker.commands.lmove(self.name, self.processing, "RIGHT", "LEFT")
        if payload is None:
            await asyncio.sleep(broker.poll_sec)
        return payload

    async def _consume_loop(self) -> None:
        log = self._broker.log
        while not self._destroyed:
            try:
                payload = await self._take()
            except RedisError as exc:
                log.error("queue.consume_error", queue=self.name, error=str(exc))
                await asyncio.sleep(self._broker.poll_sec)
                continue
            if payload is None:
                continue
            task = asyncio.create_task(self._run(payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, payload: str) -> None:
        handler = self._handler
        if handler is None:
            return
        try:
            await handler(payload, self._ack_for(payload))
        except Exception as exc:
            self._broker.log.error("queue.handler_error", queue=self.name, error=str(exc))

    def _ack_for(self, payload: str) -> Ack:
        done = False

        async def _ack() -> None:
            nonlocal done
            if done:
                return
            try:
                await self._broker.commands.lrem(self.processing, 1, payload)
            except RedisError as exc:
                raise TransportError(f"ack on {self.name!r} failed: {exc}") from exc
            done = True

        return _ack


class RedisQueueBroker:
    """
    Redis-backed broker and broker link.

    duplex=True : two connections; the consumer connection is free to block on BLMOVE
                  while the command connection keeps serving submit/clear/ack.
    duplex=False: one shared connection; consumers poll with non-blocking LMOVE.
    Ready once every connection answers PING; a heartbeat reports disconnects.
    """

    service = "broker"

    def __init__(
        self,
        url: str,
        *,
        duplex: bool = True,
        heartbeat_sec: float = 5.0,
        block_sec: float = 1.0,
        poll_sec: float = 0.5,
        client_factory: ClientFactory = aioredis.from_url,
        logger=None,
    ) -> None:
        self.url = url
        self.duplex = duplex
        self.heartbeat_sec = heartbeat_sec
        self.block_sec = block_sec
        self.poll_sec = poll_sec
        self.log = logger or structlog.get_logger()
        self._factory = client_factory
        self.commands: Optional[aioredis.Redis] = None
        self.consumer: Optional[aioredis.Redis] = None
        self._queues: Dict[str, RedisQueueChannel] = {}
        self._heartbeat: Optional[asyncio.Task] = None

    # ---- SubsystemLink ----
    async def open(self, listener: LinkListener) -> None:
        if self.duplex:
            self.commands = self._factory(self.url, decode_responses=True)
            self.consumer = self._factory(self.url, decode_responses=True)
            clients = [self.commands, self.consumer]
        else:
            self.commands = self._factory(self.url, decode_responses=True, single_connection_client=True)
            self.consumer = self.commands
            clients = [self.commands]
        try:
            await asyncio.gather(*(c.ping() for c in clients))
        except RedisError as exc:
            raise ConnectError(self.service, exc) from exc

        self.log.info("broker.connected", mode="duplex" if self.duplex else "simplex")
        listener.connected(self.service)
        self._heartbeat = asyncio.create_task(self._heartbeat_loop(listener))

    async def close(self) -> None:
        for name in list(self._queues):
            await self.destroy_queue(name)
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            await asyncio.gather(self._heartbeat, return_exceptions=True)
            self._heartbeat = None
        for client in {id(c): c for c in (self.commands, self.consumer) if c is not None}.values():
            await client.aclose()
        self.commands = self.consumer = None

    # ---- QueueBroker ----
    def create_queue(self, name: str) -> RedisQueueChannel:
        channel = self._queues.get(name)
        if channel is None:
            channel = self._queues[name] = RedisQueueChannel(name, self)
        return channel

    async def destroy_queue(self, name: str) -> None:
        channel = self._queues.pop(name, None)
        if channel is not None:
            await channel.destroy()

    # ---- internals ----
    async def _heartbeat_loop(self, listener: LinkListener) -> None:
        clients = [self.commands] if self.consumer is self.commands else [self.commands, self.consumer]
        await heartbeat(clients, self.heartbeat_sec, lambda exc: listener.error(self.service, exc))
        listener.disconnected(self.service)

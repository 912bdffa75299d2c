# libs/adapters/queue.py
from __future__ import annotations
from typing import Awaitable, Callable, Generic, Protocol, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from .errors import InvalidMessage

Ack = Callable[[], Awaitable[None]]
RawHandler = Callable[[str, Ack], Awaitable[None]]

T = TypeVar("T", bound=BaseModel)
JobHandler = Callable[[T, Ack], Awaitable[None]]


class QueueChannel(Protocol):
    """One named channel on the broker. Payloads are JSON strings."""

    name: str

    async def submit(self, payload: str) -> None:
        """Enqueue one payload. Raise QueueUnavailable when the broker cannot take it."""
        ...

    def consume(self, handler: RawHandler) -> None:
        """Register the handler; each dequeued payload runs in its own task. Raise ConsumerAlreadyRegistered."""
        ...

    async def clear(self) -> int:
        """Drop undelivered payloads; return how many. Raise TransportError on failure."""
        ...

    async def destroy(self) -> None:
        """Stop dispatch and remove the channel; idempotent."""
        ...

    async def requeue_inflight(self) -> int:
        """Return delivered-but-unacknowledged payloads to the queue; return how many."""
        ...


class QueueBroker(Protocol):
    def create_queue(self, name: str) -> QueueChannel: ...

    async def destroy_queue(self, name: str) -> None: ...


class JobQueue(Generic[T]):
    """Typed view over a channel: pydantic model in, pydantic model out."""

    def __init__(self, channel: QueueChannel, model: Type[T], logger=None):
        self.channel = channel
        self.model = model
        self.log = logger or structlog.get_logger()

    @property
    def name(self) -> str:
        return self.channel.name

    async def submit(self, job: T) -> None:
        await self.channel.submit(job.model_dump_json(by_alias=True))

    def consume(self, handler: JobHandler) -> None:
        async def _dispatch(payload: str, ack: Ack) -> None:
            try:
                job = self.decode(payload)
            except InvalidMessage as exc:
                # undecodable payloads would be redelivered forever; drop them
                self.log.error("job.invalid", queue=self.name, error=str(exc))
                await ack()
                return
            await handler(job, ack)

        self.channel.consume(_dispatch)

    async def clear(self) -> int:
        return await self.channel.clear()

    async def destroy(self) -> None:
        await self.channel.destroy()

    async def requeue_inflight(self) -> int:
        return await self.channel.requeue_inflight()

    def decode(self, payload: str) -> T:
        try:
            return self.model.model_validate_json(payload)
        except ValidationError as exc:
            raise InvalidMessage(f"{self.name}: {exc.error_count()} validation error(s)") from exc

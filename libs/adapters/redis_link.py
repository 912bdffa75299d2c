# libs/adapters/redis_link.py
from __future__ import annotations

import asyncio
from typing import Callable, Sequence

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

ClientFactory = Callable[..., aioredis.Redis]


async def heartbeat(clients: Sequence[aioredis.Redis], interval: float, on_error: Callable[[BaseException], None]) -> None:
    """
    PING every client each `interval` seconds.
    Returns on the first connection failure; other redis errors go to `on_error`.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.gather(*(c.ping() for c in clients))
        except RedisConnectionError:
            return
        except RedisError as exc:
            on_error(exc)

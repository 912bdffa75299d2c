# libs/adapters/repo_redis.py
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Iterator, List, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from libs.connections.base import LinkListener
from libs.connectors.base import PageFetcherPort
from libs.contracts.article import Article
from .errors import ConnectError, NotFound, StoreUnavailable
from .redis_link import ClientFactory, heartbeat


class RedisArticleRepo:
    """
    Article store on Redis, shared by the API and worker processes.

    Layout (prefix defaults to "articles"):
      <prefix>:<id>          JSON article, voters excluded
      <prefix>:<id>:voters   SET of user ids
      <prefix>:index         ZSET of ids scored by insertion sequence
      <prefix>:seq           insertion counter

    Also serves as the store link: ready once PING answers, a heartbeat
    reports disconnects.
    """

    engine = "redis"
    service = "store"

    def __init__(
        self,
        fetcher: PageFetcherPort,
        url: str,
        *,
        prefix: str = "articles",
        heartbeat_sec: float = 5.0,
        client_factory: ClientFactory = aioredis.from_url,
        logger=None,
    ) -> None:
        self.fetcher = fetcher
        self.location = url
        self.prefix = prefix
        self.heartbeat_sec = heartbeat_sec
        self.log = logger or structlog.get_logger()
        self._factory = client_factory
        self.client: Optional[aioredis.Redis] = None
        self._heartbeat: Optional[asyncio.Task] = None

    # ---- SubsystemLink ----
    async def open(self, listener: LinkListener) -> None:
        self.client = self._factory(self.location, decode_responses=True)
        try:
            await self.client.ping()
        except RedisError as exc:
            raise ConnectError(self.service, exc) from exc

        self.log.info("store.connected", engine=self.engine)
        listener.connected(self.service)
        self._heartbeat = asyncio.create_task(self._heartbeat_loop(listener))

    async def close(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            await asyncio.gather(self._heartbeat, return_exceptions=True)
            self._heartbeat = None
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    # ---- writes ----
    async def scrape(self, user_id: str, job_id: str, url: str) -> Article:
        with self._redis("scrape") as r:
            existing = await self._load(r, job_id)
        if existing is not None:
            # redelivered job: already stored
            return existing

        page = await asyncio.to_thread(self.fetcher.fetch, url)
        article = Article(id=job_id, url=page.url, title=page.title, submitted_by=user_id)
        with self._redis("scrape") as r:
            if not await r.set(self._key(job_id), article.model_dump_json(exclude={"voters"}), nx=True):
                # another worker stored it first
                return await self._load(r, job_id)
            seq = await r.incr(self._key("seq"))
            await r.zadd(self._key("index"), {job_id: seq})
        self.log.info("store.scraped", article_id=job_id, url=page.url, fetcher=self.fetcher.source_name)
        return article

    async def vote_for(self, user_id: str, article_id: str) -> Article:
        with self._redis("vote") as r:
            if not await r.exists(self._key(article_id)):
                raise NotFound(article_id)
            await r.sadd(self._voters_key(article_id), user_id)
            article = await self._load(r, article_id)
        if article is None:
            raise NotFound(article_id)
        return article

    async def delete_all(self) -> int:
        with self._redis("delete_all") as r:
            ids = await r.zrange(self._key("index"), 0, -1)
            keys = [self._key("index")]
            for article_id in ids:
                keys += [self._key(article_id), self._voters_key(article_id)]
            await r.delete(*keys)
        return len(ids)

    # ---- reads ----
    async def get(self, article_id: str) -> Article:
        with self._redis("get") as r:
            article = await self._load(r, article_id)
        if article is None:
            raise NotFound(article_id)
        return article

    async def list(self, user_id: str, n: int) -> List[Article]:
        if n <= 0:
            return []
        with self._redis("list") as r:
            ids = await r.zrevrange(self._key("index"), 0, n - 1)
            rows = [await self._load(r, article_id) for article_id in ids]
        return [a for a in rows if a is not None]

    # ---- internals ----
    def _key(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    def _voters_key(self, article_id: str) -> str:
        return f"{self.prefix}:{article_id}:voters"

    async def _load(self, r: aioredis.Redis, article_id: str) -> Optional[Article]:
        async with r.pipeline(transaction=False) as pipe:
            pipe.get(self._key(article_id))
            pipe.smembers(self._voters_key(article_id))
            raw, voters = await pipe.execute()
        if raw is None:
            return None
        return Article.model_validate_json(raw).model_copy(update={"voters": set(voters)})

    @contextmanager
    def _redis(self, op: str) -> Iterator[aioredis.Redis]:
        if self.client is None:
            raise StoreUnavailable(f"{self.location} is not connected")
        try:
            yield self.client
        except RedisError as exc:
            raise StoreUnavailable(f"{op} on {self.location} failed: {exc}") from exc

    async def _heartbeat_loop(self, listener: LinkListener) -> None:
        await heartbeat([self.client], self.heartbeat_sec, lambda exc: listener.error(self.service, exc))
        listener.disconnected(self.service)

# test/conftest.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

from libs.adapters.queue_inmemory import InMemoryQueueBroker
from libs.adapters.repo_inmemory import InMemoryArticleRepo
from libs.connections.connector import Connector
from libs.connectors.base import FetchedPage
from apps.api.services.article_pipeline import ArticlePipeline


class StubFetcher:
    """Deterministic page fetcher; urls in `fail_urls` raise."""
    source_name = "stub"

    def __init__(self, fail_urls: Iterable[str] = ()) -> None:
        self.fail_urls = set(fail_urls)
        self.calls: List[str] = []

    def fetch(self, url: str) -> FetchedPage:
        self.calls.append(url)
        if url in self.fail_urls:
            raise RuntimeError(f"cannot fetch {url}")
        return FetchedPage(url=url, title=f"Title of {url}")


class RecordingLogger:
    """Stands in for a structlog bound logger; keeps (level, event, kw)."""

    def __init__(self) -> None:
        self.records: List[Tuple[str, str, dict]] = []

    def bind(self, **_kw) -> "RecordingLogger":
        return self

    def _rec(self, level: str, event: str, **kw) -> None:
        self.records.append((level, event, kw))

    def info(self, event: str, **kw) -> None:
        self._rec("info", event, **kw)

    def warning(self, event: str, **kw) -> None:
        self._rec("warning", event, **kw)

    def error(self, event: str, **kw) -> None:
        self._rec("error", event, **kw)

    def events(self, name: str) -> List[dict]:
        return [kw for _, event, kw in self.records if event == name]


class ManualLink:
    """Link whose notifications are driven by the test."""

    def __init__(self, service: str, *, auto_connect: bool = False, fail: Optional[BaseException] = None) -> None:
        self.service = service
        self.auto_connect = auto_connect
        self.fail = fail
        self.listener = None
        self.closed = False

    async def open(self, listener) -> None:
        if self.fail is not None:
            raise self.fail
        self.listener = listener
        if self.auto_connect:
            listener.connected(self.service)

    async def close(self) -> None:
        self.closed = True


class AckSpy:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1


@pytest.fixture
def fetcher() -> StubFetcher:
    return StubFetcher(fail_urls={"http://broken"})


@pytest.fixture
def recorder() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def repo(fetcher) -> InMemoryArticleRepo:
    return InMemoryArticleRepo(fetcher)


@pytest.fixture
def broker() -> InMemoryQueueBroker:
    return InMemoryQueueBroker()


@pytest.fixture
def pipeline(repo, broker, recorder) -> ArticlePipeline:
    return ArticlePipeline(Connector(repo, broker, logger=recorder), repo, broker, logger=recorder)


@pytest.fixture
def ack() -> AckSpy:
    return AckSpy()


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


class FakeRedis:
    """The redis.asyncio commands the adapters use, over one dict shared by every client."""

    def __init__(self, data: Dict[str, Any], **kwargs) -> None:
        self.data = data
        self.kwargs = kwargs
        self.fail: Optional[Exception] = None
        self.closed = False

    def _check(self) -> None:
        if self.fail is not None:
            raise self.fail

    async def ping(self):
        self._check()
        return True

    # ---- lists ----
    async def lpush(self, key, *values):
        self._check()
        items = self.data.setdefault(key, [])
        for v in values:
            items.insert(0, v)
        return len(items)

    async def lmove(self, first_list, second_list, src="LEFT", dest="RIGHT"):
        self._check()
        items = self.data.get(first_list) or []
        if not items:
            return None
        value = items.pop() if src == "RIGHT" else items.pop(0)
        target = self.data.setdefault(second_list, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    async def blmove(self, first_list, second_list, timeout, src="LEFT", dest="RIGHT"):
        value = await self.lmove(first_list, second_list, src, dest)
        if value is None:
            await asyncio.sleep(0.005)
        return value

    async def lrem(self, key, count, value):
        self._check()
        items = self.data.get(key, [])
        if value in items:
            items.remove(value)
            return 1
        return 0

    async def llen(self, key):
        return len(self.data.get(key, []))

    # ---- strings ----
    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, nx=False):
        self._check()
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def incr(self, key):
        self._check()
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    # ---- sets / sorted sets ----
    async def sadd(self, key, *members):
        self._check()
        s = self.data.setdefault(key, set())
        before = len(s)
        s.update(members)
        return len(s) - before

    async def smembers(self, key):
        self._check()
        return set(self.data.get(key, set()))

    async def zadd(self, key, mapping):
        self._check()
        z = self.data.setdefault(key, {})
        added = sum(1 for m in mapping if m not in z)
        z.update(mapping)
        return added

    async def zrange(self, key, start, end):
        self._check()
        ordered = sorted(self.data.get(key, {}).items(), key=lambda kv: kv[1])
        members = [m for m, _ in ordered]
        return members[start:] if end == -1 else members[start:end + 1]

    async def zrevrange(self, key, start, end):
        members = list(reversed(await self.zrange(key, 0, -1)))
        return members[start:] if end == -1 else members[start:end + 1]

    # ---- keys ----
    async def exists(self, *keys):
        self._check()
        return sum(1 for k in keys if k in self.data)

    async def delete(self, *keys):
        self._check()
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


class FakePipeline:
    """Queues commands and runs them in order on execute()."""

    def __init__(self, client: FakeRedis) -> None:
        self.client = client
        self.ops: List[Tuple[str, tuple, dict]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, name):
        def _queue(*args, **kwargs):
            self.ops.append((name, args, kwargs))
            return self

        return _queue

    async def execute(self):
        self.client._check()
        ops, self.ops = self.ops, []
        return [await getattr(self.client, name)(*args, **kwargs) for name, args, kwargs in ops]


class FakeRedisServer:
    """Hands out FakeRedis clients over one shared keyspace; usable as a client_factory."""

    def __init__(self) -> None:
        self.data: Dict[str, Any] = {}
        self.clients: List[FakeRedis] = []

    def __call__(self, url: str, **kwargs) -> FakeRedis:
        client = FakeRedis(self.data, **kwargs)
        self.clients.append(client)
        return client

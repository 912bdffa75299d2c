# test_repo_redis.py
import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from libs.adapters.errors import ConnectError, NotFound, StoreUnavailable
from libs.adapters.queue_redis import RedisQueueBroker
from libs.adapters.repo_redis import RedisArticleRepo
from libs.connections.connector import Connector
from apps.api.services.article_pipeline import ArticlePipeline
from conftest import FakeRedisServer, RecordingLogger, StubFetcher, wait_until


class Listener:
    def __init__(self):
        self.up, self.down = [], []

    def connected(self, service):
        self.up.append(service)

    def disconnected(self, service):
        self.down.append(service)

    def error(self, service, exc):
        pass


def _repo(server, fetcher, **opts):
    return RedisArticleRepo(fetcher, "redis://fake/0", client_factory=server, logger=RecordingLogger(), **opts)


@pytest.mark.asyncio
async def test_scrape_vote_get_list(fetcher):
    repo = _repo(FakeRedisServer(), fetcher)
    listener = Listener()
    await repo.open(listener)
    assert listener.up == ["store"]

    await repo.scrape("u1", "a1", "http://x")
    await repo.scrape("u1", "a2", "http://y")
    voted = await repo.vote_for("u2", "a1")
    await repo.vote_for("u2", "a1")

    assert voted.score == 1
    got = await repo.get("a1")
    assert got.title == "Title of http://x" and got.voters == {"u2"}
    assert [a.id for a in await repo.list("u1", 10)] == ["a2", "a1"]
    assert [a.id for a in await repo.list("u1", 1)] == ["a2"]
    await repo.close()


@pytest.mark.asyncio
async def test_scrape_is_idempotent_per_job_id(fetcher):
    repo = _repo(FakeRedisServer(), fetcher)
    await repo.open(Listener())

    first = await repo.scrape("u1", "J", "http://x")
    again = await repo.scrape("u1", "J", "http://x")

    assert again.id == first.id
    assert fetcher.calls == ["http://x"]
    assert len(await repo.list("u1", 10)) == 1
    await repo.close()


@pytest.mark.asyncio
async def test_unknown_ids_and_delete_all(fetcher):
    repo = _repo(FakeRedisServer(), fetcher)
    await repo.open(Listener())
    await repo.scrape("u1", "a1", "http://x")
    await repo.vote_for("u2", "a1")

    with pytest.raises(NotFound):
        await repo.get("missing")
    with pytest.raises(NotFound):
        await repo.vote_for("u2", "missing")

    assert await repo.delete_all() == 1
    assert await repo.list("u1", 10) == []
    with pytest.raises(NotFound):
        await repo.get("a1")
    await repo.close()


@pytest.mark.asyncio
async def test_store_errors_surface_as_unavailable(fetcher):
    repo = _repo(FakeRedisServer(), fetcher)
    with pytest.raises(StoreUnavailable):
        await repo.get("a1")

    await repo.open(Listener())
    repo.client.fail = RedisConnectionError("gone")
    with pytest.raises(StoreUnavailable):
        await repo.list("u1", 5)
    repo.client.fail = None
    await repo.close()


@pytest.mark.asyncio
async def test_unreachable_store_raises_connect_error(fetcher):
    server = FakeRedisServer()

    def factory(url, **kwargs):
        c = server(url, **kwargs)
        c.fail = RedisConnectionError("refused")
        return c

    repo = RedisArticleRepo(fetcher, "redis://fake/0", client_factory=factory, logger=RecordingLogger())
    with pytest.raises(ConnectError, match="store"):
        await repo.open(Listener())


@pytest.mark.asyncio
async def test_heartbeat_reports_store_disconnect(fetcher):
    repo = _repo(FakeRedisServer(), fetcher, heartbeat_sec=0.01)
    listener = Listener()
    await repo.open(listener)

    repo.client.fail = RedisConnectionError("gone")
    await wait_until(lambda: listener.down == ["store"])
    repo.client.fail = None
    await repo.close()


def _process(server, fetcher):
    """One API or worker process: its own clients, the same Redis server."""
    log = RecordingLogger()
    repo = RedisArticleRepo(fetcher, "redis://fake/0", client_factory=server, logger=log)
    broker = RedisQueueBroker("redis://fake/0", client_factory=server, poll_sec=0.005, logger=log)
    return ArticlePipeline(Connector(repo, broker, logger=log), repo, broker, logger=log)


@pytest.mark.asyncio
async def test_api_and_worker_share_queues_and_articles():
    server = FakeRedisServer()
    fetcher = StubFetcher()
    api, worker = _process(server, fetcher), _process(server, fetcher)
    for p in (api, worker):
        p.start()
        await p.wait_ready(timeout=1)
    worker.start_consumption()

    job_id = await api.submit_scrape("u1", "http://x")
    await wait_until(lambda: fetcher.calls == ["http://x"])
    await wait_until(lambda: server.data.get("jobs.scrape:processing") == [])

    article = await api.get_article(job_id)
    assert article.submitted_by == "u1"

    await api.submit_vote("u2", job_id)
    await wait_until(lambda: server.data.get(f"articles:{job_id}:voters") == {"u2"})
    assert [(a.id, a.score) for a in await api.list_articles("u2", 10)] == [(job_id, 1)]

    await asyncio.gather(api.shutdown(), worker.shutdown())

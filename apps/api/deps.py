# apps/api/deps.py
from __future__ import annotations
from fastapi import HTTPException, Request

from libs.adapters.queue_inmemory import InMemoryQueueBroker
from libs.adapters.queue_redis import RedisQueueBroker
from libs.adapters.repo_inmemory import InMemoryArticleRepo
from libs.adapters.repo_redis import RedisArticleRepo
from libs.connections.connector import Connector
from libs.connectors.registry import get_fetcher
from libs.storage.config import PipelineSettings
from apps.api.services.article_pipeline import ArticlePipeline

REDIS_SCHEMES = ("redis://", "rediss://", "unix://")


def _select_repo(settings: PipelineSettings) -> InMemoryArticleRepo | RedisArticleRepo:
    """Choose the article store by url scheme."""
    fetcher = get_fetcher("http", timeout_sec=settings.FETCH_TIMEOUT_SEC)
    url = settings.STORE_URL
    if url.startswith("memory://"):
        return InMemoryArticleRepo(fetcher, location=url)
    if url.startswith(REDIS_SCHEMES):
        return RedisArticleRepo(fetcher, url)
    raise ValueError(f"Unknown store url: {url}")


def _select_broker(settings: PipelineSettings) -> InMemoryQueueBroker | RedisQueueBroker:
    url = settings.BROKER_URL
    if url.startswith("memory://"):
        return InMemoryQueueBroker()
    if url.startswith(REDIS_SCHEMES):
        return RedisQueueBroker(url, duplex=settings.QUEUE_DUPLEX)
    raise ValueError(f"Unknown broker url: {url}")


def build_pipeline(settings: PipelineSettings | None = None, *, shared: bool = False) -> ArticlePipeline:
    """
    Wire up the pipeline (DI):
      - store : by STORE_URL scheme, page fetcher from the registry
      - broker: by BROKER_URL scheme, duplex/simplex from QUEUE_DUPLEX
      - connector over both links

    shared=True is for the API and the worker, which run as separate processes
    and must see the same queues and articles: memory:// urls are rejected.
    """
    settings = settings or PipelineSettings()
    if shared:
        local = [name for name, url in (("store", settings.STORE_URL), ("broker", settings.BROKER_URL))
                 if url.startswith("memory://")]
        if local:
            raise ValueError(f"memory:// {' and '.join(local)} cannot be shared between processes")
    repo = _select_repo(settings)
    broker = _select_broker(settings)
    return ArticlePipeline(Connector(repo, broker), repo, broker)


def get_pipeline(request: Request) -> ArticlePipeline:
    pipeline: ArticlePipeline | None = getattr(request.app.state, "pipeline", None)
    if pipeline is None or not pipeline.is_ready:
        raise HTTPException(status_code=503, detail="pipeline not ready")
    if pipeline.is_lost:
        raise HTTPException(status_code=503, detail="pipeline lost a subsystem")
    return pipeline


def get_settings(request: Request) -> PipelineSettings:
    return request.app.state.settings

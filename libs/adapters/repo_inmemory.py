from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import structlog

from libs.connections.base import LinkListener
from libs.connectors.base import PageFetcherPort
from libs.contracts.article import Article
from .errors import ConnectError, NotFound, StoreUnavailable


class InMemoryArticleRepo:
    """
    Dict-backed article store; also serves as the store link.
    `drop()` simulates the store going away.
    """

    engine = "memory"
    service = "store"

    def __init__(self, fetcher: PageFetcherPort, *, location: str = "memory://", reachable: bool = True, logger=None) -> None:
        self.fetcher = fetcher
        self.location = location
        self.log = logger or structlog.get_logger()
        self._reachable = reachable
        self._up = False
        self._listener: Optional[LinkListener] = None
        self._by_id: Dict[str, Article] = {}

    # ---- SubsystemLink ----
    async def open(self, listener: LinkListener) -> None:
        if not self._reachable:
            raise ConnectError(self.service, f"{self.location} marked unreachable")
        self._listener = listener
        self._up = True
        listener.connected(self.service)

    async def close(self) -> None:
        self._up = False
        self._listener = None

    def drop(self) -> None:
        self._up = False
        if self._listener is not None:
            self._listener.disconnected(self.service)

    # ---- writes ----
    async def scrape(self, user_id: str, job_id: str, url: str) -> Article:
        self._check_up()
        existing = self._by_id.get(job_id)
        if existing is not None:
            # redelivered job: already stored
            return existing
        page = await asyncio.to_thread(self.fetcher.fetch, url)
        article = Article(id=job_id, url=page.url, title=page.title, submitted_by=user_id)
        self._by_id[job_id] = article
        self.log.info("store.scraped", article_id=job_id, url=page.url, fetcher=self.fetcher.source_name)
        return article

    async def vote_for(self, user_id: str, article_id: str) -> Article:
        self._check_up()
        article = self._get(article_id)
        article.voters.add(user_id)
        return article

    async def delete_all(self) -> int:
        self._check_up()
        count = len(self._by_id)
        self._by_id.clear()
        return count

    # ---- reads ----
    async def get(self, article_id: str) -> Article:
        self._check_up()
        return self._get(article_id)

    async def list(self, user_id: str, n: int) -> List[Article]:
        self._check_up()
        rows = list(reversed(self._by_id.values()))
        return rows[: max(n, 0)]

    def _get(self, article_id: str) -> Article:
        article = self._by_id.get(article_id)
        if article is None:
            raise NotFound(article_id)
        return article

    def _check_up(self) -> None:
        if not self._up:
            raise StoreUnavailable(f"{self.location} is not connected")

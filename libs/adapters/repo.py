# libs/adapters/repo.py
from __future__ import annotations
from typing import List, Protocol
from libs.contracts.article import Article


class ArticleRepoAdapter(Protocol):
    """
    Article store interface.
    - every call is awaitable; the pipeline sets no timeout on them
    - `get`/`vote_for` raise NotFound for unknown ids
    """

    engine: str              # e.g. "memory"
    location: str            # store url, for logs and readiness reports

    async def scrape(self, user_id: str, job_id: str, url: str) -> Article:
        """Fetch the page at url and store it as article `job_id` submitted by user_id."""
        ...

    async def vote_for(self, user_id: str, article_id: str) -> Article:
        """Record user_id's upvote; one vote per user per article."""
        ...

    async def get(self, article_id: str) -> Article:
        ...

    async def list(self, user_id: str, n: int) -> List[Article]:
        """Newest first, at most n. user_id is the viewer, not a filter."""
        ...

    async def delete_all(self) -> int:
        ...

# apps/api/services/article_pipeline.py
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional

import structlog

from libs.adapters.errors import ConnectError, ProcessingError
from libs.adapters.queue import Ack, JobQueue, QueueBroker
from libs.adapters.repo import ArticleRepoAdapter
from libs.connections.connector import Connector
from libs.contracts.article import Article
from libs.contracts.job_models import SCRAPE_QUEUE, VOTE_QUEUE, ScrapeJob, VoteJob
from libs.observability.logging import get_logger


class PipelineNotReady(RuntimeError):
    pass


class AlreadyConsuming(RuntimeError):
    pass


class ArticlePipeline:
    """
    Owns the connector, the article store handle and both job queues.

      start() -> connector opens store + broker
              -> both up: queues created, pipeline ready
      start_consumption() -> scrape/vote handlers attached
      stop_consumption()  -> both channels destroyed (terminal for the queues)

    Job handlers acknowledge every job whether or not the domain call worked:
    a failed job is logged and dropped, never redelivered or retried.
    """

    def __init__(self, connector: Connector, repo: ArticleRepoAdapter, broker: QueueBroker, logger=None):
        """
        connector: aggregates the store link and the broker link
        repo     : article store, usable once the connector is ready
        broker   : creates/destroys the named channels
        """
        self.connector = connector
        self.broker = broker
        self.log = logger or get_logger("pipeline")

        self._repo = repo
        self.articles: Optional[ArticleRepoAdapter] = None
        self.scrape_queue: Optional[JobQueue[ScrapeJob]] = None
        self.vote_queue: Optional[JobQueue[VoteJob]] = None

        self._ready = asyncio.Event()
        self._failure: Optional[ConnectError] = None
        self._lost = asyncio.Event()
        self._lost_subscribers: List[Callable[[], None]] = []
        self._unsubscribe_lost: Optional[Callable[[], None]] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._consuming = False
        self._stopped = False

    # ---------- lifecycle ----------

    def start(self) -> "ArticlePipeline":
        if self._connect_task is not None:
            return self
        self._unsubscribe_lost = self.connector.on_lost(self._on_lost)
        self.connector.start()
        self._connect_task = asyncio.create_task(self._await_connections())
        return self

    async def wait_ready(self, timeout: float | None = None) -> "ArticlePipeline":
        """Wait for queues to exist. Raises ConnectError when a subsystem never came up."""
        if timeout is None:
            await self._ready.wait()
        else:
            await asyncio.wait_for(self._ready.wait(), timeout)
        if self._failure is not None:
            raise self._failure
        return self

    async def wait_lost(self) -> None:
        await self._lost.wait()

    def on_lost(self, callback: Callable[[], None]) -> None:
        self._lost_subscribers.append(callback)

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set() and self._failure is None

    @property
    def is_lost(self) -> bool:
        return self._lost.is_set()

    @property
    def is_consuming(self) -> bool:
        return self._consuming

    def health(self) -> dict:
        status = self.connector.service_status()
        return {**status, "ok": self.is_ready and not self.is_lost}

    async def shutdown(self) -> None:
        if self._consuming:
            await self.stop_consumption()
        if self._unsubscribe_lost is not None:
            self._unsubscribe_lost()
            self._unsubscribe_lost = None
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            await asyncio.gather(self._connect_task, return_exceptions=True)
        await self.connector.close()
        self.log.info("pipeline.shutdown")

    async def _await_connections(self) -> None:
        try:
            await self.connector.wait_ready()
        except ConnectError as exc:
            self._failure = exc
            self.log.error("pipeline.unavailable", service=exc.service, error=str(exc))
            self._ready.set()
            return
        self._on_connected()

    def _on_connected(self) -> None:
        self.articles = self._repo
        self.scrape_queue = JobQueue(self.broker.create_queue(SCRAPE_QUEUE), ScrapeJob, logger=self.log)
        self.vote_queue = JobQueue(self.broker.create_queue(VOTE_QUEUE), VoteJob, logger=self.log)
        self.log.info("pipeline.ready")
        self._ready.set()

    def _on_lost(self) -> None:
        if self._lost.is_set():
            return
        self.log.info("pipeline.lost")
        self._lost.set()
        for callback in list(self._lost_subscribers):
            callback()

    # ---------- submission ----------

    async def submit_scrape(self, user_id: str, url: str) -> str:
        queue = self._queue(self.scrape_queue)
        job = ScrapeJob(url=url, user_id=user_id)
        self.log.info("job.enqueue", queue=SCRAPE_QUEUE, job_id=job.id, url=url, user_id=user_id)
        await queue.submit(job)
        return job.id

    async def submit_vote(self, user_id: str, article_id: str) -> str:
        queue = self._queue(self.vote_queue)
        self.log.info("job.enqueue", queue=VOTE_QUEUE, article_id=article_id, user_id=user_id)
        await queue.submit(VoteJob(user_id=user_id, article_id=article_id))
        return article_id

    # ---------- domain operations ----------

    async def execute_scrape(self, user_id: str, job_id: str, url: str) -> Article:
        self.log.info("article.scrape", job_id=job_id, url=url, user_id=user_id)
        return await self._store().scrape(user_id, job_id, url)

    async def execute_vote(self, user_id: str, article_id: str) -> Article:
        self.log.info("article.upvote", article_id=article_id, user_id=user_id)
        return await self._store().vote_for(user_id, article_id)

    # ---------- job handlers ----------

    async def handle_scrape_job(self, job: ScrapeJob, ack: Ack) -> None:
        with structlog.contextvars.bound_contextvars(queue=SCRAPE_QUEUE, job_id=job.id):
            self.log.info("job.handling", url=job.url)
            try:
                await self._process(f"scrape of {job.url}", self.execute_scrape(job.user_id, job.id, job.url))
            except ProcessingError as err:
                self.log.warning("job.complete", status="failure", url=job.url,
                                 error=str(err), error_type=type(err.__cause__).__name__)
            else:
                self.log.info("job.complete", status="success", url=job.url)
            await ack()

    async def handle_vote_job(self, job: VoteJob, ack: Ack) -> None:
        with structlog.contextvars.bound_contextvars(queue=VOTE_QUEUE, article_id=job.article_id):
            self.log.info("job.handling", user_id=job.user_id)
            try:
                await self._process(f"upvote of {job.article_id}", self.execute_vote(job.user_id, job.article_id))
            except ProcessingError as err:
                self.log.warning("job.complete", status="failure",
                                 error=str(err), error_type=type(err.__cause__).__name__)
            else:
                self.log.info("job.complete", status="success")
            await ack()

    # ---------- consumption ----------

    def start_consumption(self) -> "ArticlePipeline":
        """Attach both handlers. A second call while consuming raises AlreadyConsuming."""
        if self._consuming:
            raise AlreadyConsuming("job handlers are already attached")
        scrape_queue = self._queue(self.scrape_queue)
        vote_queue = self._queue(self.vote_queue)
        scrape_queue.consume(self.handle_scrape_job)
        vote_queue.consume(self.handle_vote_job)
        self._consuming = True
        self.log.info("pipeline.consuming", queues=[SCRAPE_QUEUE, VOTE_QUEUE])
        return self

    async def stop_consumption(self) -> "ArticlePipeline":
        await self.broker.destroy_queue(SCRAPE_QUEUE)
        await self.broker.destroy_queue(VOTE_QUEUE)
        self.scrape_queue = None
        self.vote_queue = None
        self._consuming = False
        self._stopped = True
        self.log.info("pipeline.stopped_consuming")
        return self

    async def requeue_unacknowledged(self) -> int:
        """Hand delivered-but-unacknowledged jobs back to their queues."""
        moved = 0
        for queue in (self._queue(self.scrape_queue), self._queue(self.vote_queue)):
            n = await queue.requeue_inflight()
            self.log.info("queue.requeued", queue=queue.name, count=n)
            moved += n
        return moved

    # ---------- purge ----------

    async def purge_scrape_queue(self) -> int:
        self.log.info("queue.purge", queue=SCRAPE_QUEUE)
        return await self._queue(self.scrape_queue).clear()

    async def purge_vote_queue(self) -> int:
        self.log.info("queue.purge", queue=VOTE_QUEUE)
        return await self._queue(self.vote_queue).clear()

    # ---------- pass-through reads/writes ----------

    async def get_article(self, article_id: str) -> Article:
        return await self._store().get(article_id)

    async def list_articles(self, user_id: str, n: int) -> List[Article]:
        return await self._store().list(user_id, n)

    async def delete_all_articles(self) -> int:
        self.log.info("article.delete_all")
        return await self._store().delete_all()

    # ---------- helpers ----------

    @staticmethod
    async def _process(action: str, operation: Awaitable) -> None:
        """Await a domain operation; any failure comes back as ProcessingError."""
        try:
            await operation
        except Exception as exc:
            raise ProcessingError(f"{action} failed: {exc}") from exc

    def _queue(self, queue: Optional[JobQueue]) -> JobQueue:
        if queue is None:
            reason = "consumption stopped" if self._stopped else "connections not ready"
            raise PipelineNotReady(reason)
        return queue

    def _store(self) -> ArticleRepoAdapter:
        if self.articles is None:
            raise PipelineNotReady("connections not ready")
        return self.articles

# Job consumer: python -m apps.scheduler.worker [--purge] [--requeue]
from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from libs.adapters.errors import ConnectError
from libs.observability.logging import get_logger, setup_logging
from libs.storage.config import PipelineSettings
from apps.api.deps import build_pipeline
from apps.api.services.article_pipeline import ArticlePipeline

log = get_logger("worker")

EXIT_OK = 0
EXIT_UNAVAILABLE = 1
EXIT_LOST = 2


async def run(
    settings: PipelineSettings,
    *,
    purge: bool = False,
    requeue: bool = False,
    pipeline: ArticlePipeline | None = None,
    stop: asyncio.Event | None = None,
) -> int:
    """Consume until a signal arrives (exit 0) or a subsystem is lost (exit 2)."""
    if pipeline is None:
        try:
            pipeline = build_pipeline(settings, shared=True)
        except ValueError as exc:
            log.error("worker.misconfigured", error=str(exc))
            return EXIT_UNAVAILABLE
    pipeline.start()
    try:
        await pipeline.wait_ready(timeout=settings.READY_TIMEOUT_SEC)
    except (ConnectError, asyncio.TimeoutError) as exc:
        log.error("worker.unavailable", error=str(exc) or type(exc).__name__)
        await pipeline.shutdown()
        return EXIT_UNAVAILABLE

    if purge:
        log.info("worker.purged",
                 scrape=await pipeline.purge_scrape_queue(),
                 vote=await pipeline.purge_vote_queue())
    if requeue:
        await pipeline.requeue_unacknowledged()

    if stop is None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

    pipeline.start_consumption()
    log.info("worker.started", broker=settings.BROKER_URL, duplex=settings.QUEUE_DUPLEX)

    waiters = [asyncio.create_task(stop.wait()), asyncio.create_task(pipeline.wait_lost())]
    _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    code = EXIT_LOST if pipeline.is_lost else EXIT_OK
    await pipeline.shutdown()
    log.info("worker.stopped", exit_code=code)
    return code


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Consume jobs.scrape and jobs.vote")
    p.add_argument("--purge", action="store_true", help="drop pending jobs before consuming")
    p.add_argument("--requeue", action="store_true", help="redeliver jobs left unacknowledged by a previous worker")
    args = p.parse_args(argv)

    settings = PipelineSettings()
    setup_logging(settings.LOG_LEVEL)
    return asyncio.run(run(settings, purge=args.purge, requeue=args.requeue))


if __name__ == "__main__":
    sys.exit(main())

# smoke_pipeline.py
"""
End-to-end smoke run against in-memory store + broker:
- build the pipeline via deps (store + broker + connector)
- wait for readiness, start consumption
- submit one scrape job and one upvote, print the stored article

Run:
    $ python smoke_pipeline.py --url https://example.com
"""

from __future__ import annotations

import argparse
import asyncio
import os

from apps.api.deps import build_pipeline
from libs.observability.logging import setup_logging
from libs.storage.config import PipelineSettings


async def _run(url: str, user_id: str) -> None:
    settings = PipelineSettings(STORE_URL="memory://", BROKER_URL="memory://")
    pipeline = build_pipeline(settings)
    pipeline.start()
    await pipeline.wait_ready(timeout=5)
    pipeline.start_consumption()

    print(f"submit scrape: {url}")
    job_id = await pipeline.submit_scrape(user_id, url)
    await pipeline.scrape_queue.channel.join()

    await pipeline.submit_vote(user_id, job_id)
    await pipeline.vote_queue.channel.join()

    try:
        article = await pipeline.get_article(job_id)
        print("stored article:")
        print(article.public())
    finally:
        await pipeline.shutdown()


def main():
    parser = argparse.ArgumentParser(description="End-to-end smoke run of the article pipeline.")
    parser.add_argument("--url", default=os.getenv("SMOKE_URL", "https://example.com"))
    parser.add_argument("--user", default="smoke")
    args = parser.parse_args()
    setup_logging("INFO")
    asyncio.run(_run(args.url, args.user))


if __name__ == "__main__":
    main()

# apps/api/routers/dev.py
from fastapi import APIRouter, Depends

from apps.api.deps import get_pipeline
from apps.api.services.article_pipeline import ArticlePipeline
from libs.contracts.job_models import SCRAPE_QUEUE, VOTE_QUEUE

router = APIRouter(prefix="/_dev", tags=["_dev"])


@router.post("/purge/scrape")
async def purge_scrape(svc: ArticlePipeline = Depends(get_pipeline)):
    return {"queue": SCRAPE_QUEUE, "purged": await svc.purge_scrape_queue()}


@router.post("/purge/vote")
async def purge_vote(svc: ArticlePipeline = Depends(get_pipeline)):
    return {"queue": VOTE_QUEUE, "purged": await svc.purge_vote_queue()}

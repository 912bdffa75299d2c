# apps/api/routers/articles.py
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from apps.api.deps import get_pipeline, get_settings
from apps.api.services.article_pipeline import ArticlePipeline
from libs.storage.config import PipelineSettings

router = APIRouter(prefix="/articles", tags=["articles"])


class SubmitArticle(BaseModel):
    user_id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)


class SubmitUpvote(BaseModel):
    user_id: str = Field(..., min_length=1)


@router.post("", status_code=202)
async def submit_article(body: SubmitArticle, svc: ArticlePipeline = Depends(get_pipeline)):
    """Queue a scrape; the job id becomes the article id once scraped."""
    job_id = await svc.submit_scrape(body.user_id, body.url)
    return {"job_id": job_id}


@router.post("/{article_id}/upvotes", status_code=202)
async def submit_upvote(article_id: str, body: SubmitUpvote, svc: ArticlePipeline = Depends(get_pipeline)):
    await svc.submit_vote(body.user_id, article_id)
    return {"article_id": article_id}


@router.get("")
async def list_articles(
    user_id: str = Query("anonymous", min_length=1),
    limit: int | None = Query(None, ge=1, le=500),
    svc: ArticlePipeline = Depends(get_pipeline),
    settings: PipelineSettings = Depends(get_settings),
):
    rows = await svc.list_articles(user_id, limit or settings.LIST_LIMIT)
    return [{**a.public(), "voted": user_id in a.voters} for a in rows]


@router.get("/{article_id}")
async def get_article(article_id: str, svc: ArticlePipeline = Depends(get_pipeline)):
    article = await svc.get_article(article_id)
    return article.public()


@router.delete("")
async def delete_articles(svc: ArticlePipeline = Depends(get_pipeline)):
    return {"deleted": await svc.delete_all_articles()}

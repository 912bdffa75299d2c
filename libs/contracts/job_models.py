# libs/contracts/job_models.py
from __future__ import annotations
from uuid import uuid1
from pydantic import BaseModel, ConfigDict, Field

# ---- fixed channel names ----
SCRAPE_QUEUE = "jobs.scrape"
VOTE_QUEUE = "jobs.vote"


def new_job_id() -> str:
    """Time-based (v1) uuid; unique per process lifetime."""
    return str(uuid1())


class _WireJob(BaseModel):
    # wire keys are camelCase, python attributes snake_case
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


# ---- ScrapeJob: {id, url, userId} ----
class ScrapeJob(_WireJob):
    id: str = Field(default_factory=new_job_id, min_length=1)
    url: str = Field(min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


# ---- VoteJob: {userId, articleId}; no server-side id ----
class VoteJob(_WireJob):
    user_id: str = Field(alias="userId", min_length=1)
    article_id: str = Field(alias="articleId", min_length=1)

# libs/contracts/article.py
from __future__ import annotations
from datetime import datetime, timezone
from typing import Set
from pydantic import BaseModel, Field, computed_field, field_validator


class Article(BaseModel):
    """Stored article record. `id` is the scrape job id that produced it."""
    id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    title: str = ""
    submitted_by: str = Field(..., min_length=1)
    voters: Set[str] = Field(default_factory=set)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("url", mode="before")
    @classmethod
    def _norm_url(cls, v: str) -> str:
        s = str(v).strip()
        if not s:
            raise ValueError("url must not be empty")
        return s

    @computed_field
    @property
    def score(self) -> int:
        return len(self.voters)

    def public(self) -> dict:
        """API view: voter ids stay private, only the score is exposed."""
        return self.model_dump(mode="json", exclude={"voters"})

"""Feed domain Pydantic V2 schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator

from shared.models.pagination import Pagination


class PostSummary(BaseModel):
    """Denormalised, cache-resident projection of a post.

    Counters are only ever adjusted by the event consumer. `score` is the last
    computed rank value and is recomputed whenever a feed is generated.
    """

    model_config = ConfigDict(from_attributes=True)

    post_id: str
    author_id: str
    hashtags: list[str] = Field(default_factory=list)
    mentions: list[str] = Field(default_factory=list)
    likes_count: NonNegativeInt = 0
    comments_count: NonNegativeInt = 0
    shares_count: NonNegativeInt = 0
    created_at: datetime
    score: float = 0.0
    content: str | None = None
    media_urls: list[str] = Field(default_factory=list)
    updated_at: datetime | None = None

    @field_validator("hashtags", "mentions")
    @classmethod
    def _unique(cls, values: list[str]) -> list[str]:
        # set semantics, first-seen order kept for display
        return list(dict.fromkeys(values))


class FeedRecord(BaseModel):
    """Materialised feed of one user as persisted in the durable tier."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    posts: list[PostSummary]
    last_updated: datetime
    version: int


class FeedPage(BaseModel):
    """One page of a user's feed as returned by the cache manager."""

    posts: list[PostSummary]
    pagination: Pagination
    served_from_cache: bool
    stale: bool = False


class FeedResponse(BaseModel):
    posts: list[PostSummary]
    pagination: Pagination
    cached: bool = Field(description="True when the feed came from the fast cache.")
    stale: bool = Field(
        default=False,
        description="True when regeneration failed and the last durable copy was served.",
    )


class TrendingResponse(BaseModel):
    posts: list[PostSummary] = Field(description="Trending posts; `score` is the trending score.")
    pagination: Pagination


class RefreshResponse(BaseModel):
    message: str

"""Kafka event payloads consumed by the feed service.

Producers (post service, interaction service) emit camelCase JSON; the models
accept both the camelCase wire names and snake_case field names.
"""

from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, NonNegativeInt


class PostEventType(str, Enum):
    POST_CREATED = "POST_CREATED"
    POST_UPDATED = "POST_UPDATED"
    POST_DELETED = "POST_DELETED"


class InteractionType(str, Enum):
    LIKE = "like"
    COMMENT = "comment"
    SHARE = "share"


class PostEventData(BaseModel):
    """Body of a post lifecycle event. Only ids are required; the rest is optional
    so that POST_UPDATED can carry a partial patch."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    post_id: str = Field(validation_alias=AliasChoices("id", "postId", "post_id"), min_length=1)
    author_id: str = Field(validation_alias=AliasChoices("userId", "authorId", "author_id"), min_length=1)
    hashtags: list[str] | None = None
    mentions: list[str] | None = None
    content: str | None = None
    media_urls: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("mediaUrls", "media_urls")
    )
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("createdAt", "created_at")
    )


class PostLifecycleEvent(BaseModel):
    """Envelope on the post-events topic: ``{eventType, timestamp, data}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_type: PostEventType = Field(validation_alias=AliasChoices("eventType", "event_type"))
    timestamp: datetime
    data: PostEventData


class InteractionEvent(BaseModel):
    """Engagement signal on the interactions topic.

    ``count`` carries the absolute counter value and wins over ``delta``.
    ``event_id`` lets the consumer drop redelivered deltas.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    post_id: str = Field(validation_alias=AliasChoices("postId", "post_id", "id"), min_length=1)
    type: InteractionType = Field(validation_alias=AliasChoices("type", "interactionType"))
    delta: int = 1
    count: NonNegativeInt | None = None
    event_id: str | None = Field(default=None, validation_alias=AliasChoices("eventId", "event_id"))

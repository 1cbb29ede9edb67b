"""Durable feed store — one versioned FeedRecord per user in PostgreSQL.

Recovery/audit copy of the fast cache: it may lag, it is never the freshness
authority, and it is only read when regeneration fails.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from app.feed.schemas import FeedRecord, PostSummary
from app.models.feed import Feed
from shared.database import AsyncSessionFactory


class FeedRecordStore:
    def __init__(self, session_factory: AsyncSessionFactory) -> None:
        self._session_factory = session_factory

    async def upsert(self, user_id: str, posts: list[PostSummary]) -> FeedRecord:
        """Overwrite the user's record and bump its version (1 on first write)."""
        now = datetime.now(timezone.utc)
        payload = [p.model_dump(mode="json") for p in posts]
        stmt = insert(Feed).values(user_id=user_id, posts=payload, last_updated=now, version=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Feed.user_id],
            set_={
                "posts": stmt.excluded.posts,
                "last_updated": stmt.excluded.last_updated,
                "version": Feed.version + 1,
            },
        ).returning(Feed.version)

        async with self._session_factory() as session:
            version = (await session.execute(stmt)).scalar_one()
            await session.commit()
        return FeedRecord(user_id=user_id, posts=posts, last_updated=now, version=version)

    async def get(self, user_id: str) -> FeedRecord | None:
        async with self._session_factory() as session:
            row = (
                await session.execute(select(Feed).where(Feed.user_id == user_id))
            ).scalar_one_or_none()
        if row is None:
            return None
        return FeedRecord.model_validate(row)

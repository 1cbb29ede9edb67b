from datetime import datetime, timezone

from sqlalchemy import Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


class Feed(Base):
    """Durable copy of a user's materialised feed (one row per user).

    Overwritten on every regeneration; `version` is bumped atomically by the
    upsert so concurrent regenerations never lose an increment.
    """

    __tablename__ = "feed_records"

    # Soft reference — users live in the identity service
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # [PostSummary JSON, ...] in ranked order, at most feed_max_size entries
    posts: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    last_updated: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_feed_records_last_updated", "last_updated"),
    )

"""Create feed_records table (durable copy of generated feeds).

Revision ID: 4f1e2d3c5b6a
Revises:
Create Date: 2026-10-12 10:00:00.000000

Changes:
  1. Create feed_records table with columns:
       user_id (VARCHAR(64) PK), posts (JSONB), last_updated (TIMESTAMPTZ),
       version (INT, starts at 1)
  2. Index: ix_feed_records_last_updated
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP

revision: str = "4f1e2d3c5b6a"
down_revision: str | None = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "feed_records",
        sa.Column("user_id", sa.String(64), primary_key=True, nullable=False),
        sa.Column(
            "posts",
            JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "last_updated",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_feed_records_last_updated", "feed_records", ["last_updated"])


def downgrade() -> None:
    op.drop_index("ix_feed_records_last_updated", table_name="feed_records")
    op.drop_table("feed_records")

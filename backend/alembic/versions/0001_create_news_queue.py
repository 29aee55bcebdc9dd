"""create news queue, post images and queue events

Revision ID: 0001_create_news_queue
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001_create_news_queue"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "news_queue",
        sa.Column("id", sa.String(36), nullable=False),
        # Dedup keys
        sa.Column("source_item_id", sa.String(255), nullable=True),
        sa.Column("content_key", sa.String(40), nullable=True),
        # Content
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("excerpt", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        # Source
        sa.Column("source_identifier", sa.String(320), nullable=False),
        sa.Column("source_display_name", sa.String(255), nullable=True),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("source_type", sa.String(32), nullable=True),
        # Scoring
        sa.Column("synthesis_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("relevance_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("uniqueness_score", sa.Float(), nullable=False, server_default="0"),
        # Status
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("selection_rank", sa.Integer(), nullable=True),
        sa.Column("skip_reason", sa.Text(), nullable=True),
        sa.Column("selected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_in_post_id", sa.String(64), nullable=True),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        # Constraints
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_item_id", name="uq_news_queue_source_item"),
        sa.UniqueConstraint("content_key", name="uq_news_queue_content_key"),
        sa.CheckConstraint(
            "status IN ('pending', 'selected', 'used', 'expired', 'skipped')",
            name="ck_news_queue_status",
        ),
        sa.CheckConstraint(
            "status <> 'skipped' OR (skip_reason IS NOT NULL AND skip_reason <> '')",
            name="ck_news_queue_skip_reason",
        ),
    )
    op.create_index("ix_news_queue_source_identifier", "news_queue", ["source_identifier"])
    op.create_index("ix_news_queue_status", "news_queue", ["status"])
    op.create_index("ix_news_queue_queued_at", "news_queue", ["queued_at"])
    op.create_index("ix_news_queue_expires_at", "news_queue", ["expires_at"])
    # Balanced selection reads pending items best-first
    op.create_index(
        "ix_news_queue_pending_total",
        "news_queue",
        [sa.text("(0.4 * synthesis_score + 0.3 * relevance_score + 0.3 * uniqueness_score) DESC")],
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "post_images",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("post_id", sa.String(64), nullable=False),
        sa.Column("image_type", sa.String(32), nullable=False, server_default="article_thumbnail"),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("source_text", sa.Text(), nullable=True),
        sa.Column("article_index", sa.Integer(), nullable=True),
        sa.Column("article_queue_item_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["article_queue_item_id"], ["news_queue.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_post_images_post_id", "post_images", ["post_id"])
    op.create_index("ix_post_images_article_queue_item_id", "post_images", ["article_queue_item_id"])

    op.create_table(
        "queue_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("item_id", sa.String(36), nullable=True),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("to_status", sa.String(16), nullable=True),
        sa.Column("actor", sa.String(255), nullable=True),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_queue_events_item_id", "queue_events", ["item_id"])


def downgrade() -> None:
    op.drop_index("ix_queue_events_item_id", table_name="queue_events")
    op.drop_table("queue_events")
    op.drop_index("ix_post_images_article_queue_item_id", table_name="post_images")
    op.drop_index("ix_post_images_post_id", table_name="post_images")
    op.drop_table("post_images")
    op.drop_index("ix_news_queue_pending_total", table_name="news_queue")
    op.drop_index("ix_news_queue_expires_at", table_name="news_queue")
    op.drop_index("ix_news_queue_queued_at", table_name="news_queue")
    op.drop_index("ix_news_queue_status", table_name="news_queue")
    op.drop_index("ix_news_queue_source_identifier", table_name="news_queue")
    op.drop_table("news_queue")

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base
from .services.scoring import compute_total_score


def new_id() -> str:
    return str(uuid.uuid4())


class QueueStatus(str, Enum):
    pending = "pending"
    selected = "selected"
    used = "used"
    expired = "expired"
    skipped = "skipped"


ACTIVE_STATUSES = (QueueStatus.pending.value, QueueStatus.selected.value)
TERMINAL_STATUSES = (QueueStatus.used.value, QueueStatus.expired.value, QueueStatus.skipped.value)

THUMBNAIL_IMAGE_TYPE = "article_thumbnail"


class QueueItem(Base):
    """Scored candidate news item awaiting editorial selection."""
    __tablename__ = "news_queue"
    __table_args__ = (
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

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)

    # Dedup keys
    source_item_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    content_key: Mapped[str | None] = mapped_column(sa.String(40), nullable=True)

    # Content (denormalized so the queue does not depend on the collector)
    title: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    excerpt: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    content: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)

    # Source tracking for diversity enforcement
    source_identifier: Mapped[str] = mapped_column(sa.String(320), nullable=False, index=True)
    source_display_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    source_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    source_type: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)

    # Scoring (0-10 each); total is derived, never stored
    synthesis_score: Mapped[float] = mapped_column(sa.Float(), nullable=False, default=0.0)
    relevance_score: Mapped[float] = mapped_column(sa.Float(), nullable=False, default=0.0)
    uniqueness_score: Mapped[float] = mapped_column(sa.Float(), nullable=False, default=0.0)

    # Status & review
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, server_default="pending", index=True)
    selection_rank: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    skip_reason: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    selected_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    used_in_post_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)

    queued_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, index=True)

    meta: Mapped[dict | None] = mapped_column(sa.JSON(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    @hybrid_property
    def total_score(self) -> float:
        return compute_total_score(self.synthesis_score, self.relevance_score, self.uniqueness_score)

    @total_score.inplace.expression
    @classmethod
    def _total_score_expression(cls):
        return compute_total_score(cls.synthesis_score, cls.relevance_score, cls.uniqueness_score)


class PostImage(Base):
    """Generated image for a post. Article thumbnails link back to a queue item."""
    __tablename__ = "post_images"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    post_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    image_type: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default=THUMBNAIL_IMAGE_TYPE)
    image_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    source_text: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)

    # Volatile projection: ordinal of the illustrated section in the article
    article_index: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    # Durable identity: the queue item whose section this image illustrates
    article_queue_item_id: Mapped[str | None] = mapped_column(
        sa.ForeignKey("news_queue.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


class QueueEvent(Base):
    """Audit trail of queue transitions and imports."""
    __tablename__ = "queue_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    item_id: Mapped[str | None] = mapped_column(sa.String(36), nullable=True, index=True)
    action: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    from_status: Mapped[str | None] = mapped_column(sa.String(16), nullable=True)
    to_status: Mapped[str | None] = mapped_column(sa.String(16), nullable=True)
    actor: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    payload_json: Mapped[dict | None] = mapped_column(sa.JSON(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)

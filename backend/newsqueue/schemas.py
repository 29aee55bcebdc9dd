from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class QueueItemRead(BaseModel):
    id: str
    source_item_id: str | None = None
    title: str
    excerpt: str | None = None
    source_identifier: str
    source_display_name: str | None = None
    source_url: str | None = None
    source_type: str | None = None
    synthesis_score: float
    relevance_score: float
    uniqueness_score: float
    total_score: float
    status: str
    selection_rank: int | None = None
    skip_reason: str | None = None
    selected_at: datetime | None = None
    used_in_post_id: str | None = None
    queued_at: datetime
    expires_at: datetime
    meta: dict | None = None

    class Config:
        from_attributes = True


class QueueItemList(BaseModel):
    items: list[QueueItemRead]
    total: int


class SourceDistributionRead(BaseModel):
    source_identifier: str
    source_display_name: str | None = None
    item_count: int
    pending_count: int
    selected_count: int
    used_count: int
    percentage_of_total: float
    flagged: bool

    class Config:
        from_attributes = True


class BalancedPickRead(BaseModel):
    id: str
    rank: int
    source_identifier: str
    source_display_name: str | None = None
    title: str
    total_score: float

    class Config:
        from_attributes = True


class ItemIdsRequest(BaseModel):
    item_ids: list[str] = Field(min_length=1)
    actor: str | None = None


class SelectBalancedRequest(BaseModel):
    max_items: int = Field(gt=0)
    actor: str | None = None


class SkipRequest(ItemIdsRequest):
    reason: str

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, value: str) -> str:
        return value.strip()


class MarkUsedRequest(ItemIdsRequest):
    post_id: str | None = None


class ResetSelectedRequest(BaseModel):
    selected_before: datetime | None = None
    actor: str | None = None


class ScoreUpdate(BaseModel):
    synthesis_score: float | None = Field(default=None, ge=0, le=10)
    relevance_score: float | None = Field(default=None, ge=0, le=10)
    uniqueness_score: float | None = Field(default=None, ge=0, le=10)
    actor: str | None = None


class CollectedItemIn(BaseModel):
    id: str
    title: str | None = None
    source_identifier: str | None = None
    source_url: str | None = None
    content: str | None = None
    excerpt: str | None = None
    source_type: str | None = None


class ImportCollectedRequest(BaseModel):
    """Either inline items or a date to fetch from the candidate source."""
    items: list[CollectedItemIn] | None = None
    date: str | None = None
    item_ids: list[str] | None = None
    actor: str | None = None


class SynthesisCandidateIn(BaseModel):
    source_item_id: str
    title: str
    originality_score: float
    relevance_score: float
    synthesis_type: str | None = None
    reasoning: str | None = None
    source_identifier: str | None = None
    source_url: str | None = None
    content: str | None = None
    source_type: str | None = None


class ImportSynthesisRequest(BaseModel):
    candidates: list[SynthesisCandidateIn] | None = None
    date: str | None = None
    actor: str | None = None


class ImportReportRead(BaseModel):
    added: int
    skipped: int
    added_ids: list[str]
    failed: list[dict]


class ExpireReportRead(BaseModel):
    expired: int
    failed: int
    item_ids: list[str]


class ThumbnailRead(BaseModel):
    id: str
    post_id: str
    image_url: str | None = None
    article_index: int | None = None
    article_queue_item_id: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ReindexRequest(BaseModel):
    content: dict | str


class ReindexResultRead(BaseModel):
    updated: int
    deleted: int
    missing_articles: list[dict]
    articles_in_content: int
    thumbnails_found: int
    low_confidence: list[str]

"""
Queue API Routes

Editorial review of the news queue: listing, source distribution, balanced
proposals, status transitions and imports.
"""
from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from newsqueue.db import get_session
from newsqueue.errors import (
    ConflictError,
    NotFoundError,
    QueueError,
    QueueValidationError,
    UpstreamUnavailableError,
)
from newsqueue.integrations.upstream import CandidateSourceClient, UniquenessClient
from newsqueue.schemas import (
    BalancedPickRead,
    ExpireReportRead,
    ImportCollectedRequest,
    ImportReportRead,
    ImportSynthesisRequest,
    ItemIdsRequest,
    MarkUsedRequest,
    QueueItemList,
    QueueItemRead,
    ResetSelectedRequest,
    ScoreUpdate,
    SelectBalancedRequest,
    SkipRequest,
    SourceDistributionRead,
)
from newsqueue.services import lifecycle, store
from newsqueue.services.diversity import load_distribution
from newsqueue.services.importer import (
    CollectedItem,
    SynthesisCandidate,
    import_collected_items,
    import_synthesis_candidates,
)
from newsqueue.services.selector import propose_balanced_selection
from newsqueue.services.timeutil import utcnow
from newsqueue.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/queue", tags=["queue"])

SessionDep = Depends(get_session)


def get_uniqueness_scorer() -> UniquenessClient:
    return UniquenessClient()


def get_candidate_source() -> CandidateSourceClient:
    return CandidateSourceClient()


def _http_error(exc: QueueError) -> HTTPException:
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": str(exc), "item_ids": exc.item_ids, "current": exc.current},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": str(exc), "item_ids": exc.item_ids},
        )
    if isinstance(exc, QueueValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, UpstreamUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _parse_day(value: str | None) -> date:
    if not value:
        return utcnow().date()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid date: {value}")


# ── Reads ──────────────────────────────────────────────────

@router.get("/items", response_model=QueueItemList)
async def list_queue_items(
    session: AsyncSession = SessionDep,
    status_filter: str | None = Query("pending", alias="status", description="pending, selected, used, expired, skipped"),
    source: str | None = Query(None, description="Filter by source identifier"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """List queue items ordered by total score, best first."""
    items, total = await store.list_items(
        session, status=status_filter, source_identifier=source, limit=limit, offset=offset
    )
    return QueueItemList(items=[QueueItemRead.model_validate(i) for i in items], total=total)


@router.get("/items/{item_id}", response_model=QueueItemRead)
async def get_queue_item(item_id: str, session: AsyncSession = SessionDep):
    try:
        item = await store.get_item(session, item_id)
    except QueueError as e:
        raise _http_error(e)
    return QueueItemRead.model_validate(item)


@router.get("/stats", response_model=dict)
async def get_queue_stats(
    session: AsyncSession = SessionDep,
    window_hours: int | None = Query(None, ge=1),
):
    return await store.queue_stats(session, window_hours=window_hours)


@router.get("/distribution", response_model=list[SourceDistributionRead])
async def get_source_distribution(
    session: AsyncSession = SessionDep,
    window_hours: int | None = Query(None, ge=1),
):
    """Per-source share of the active pool; flagged sources exceed the diversity cap."""
    rows = await load_distribution(session, window_hours=window_hours)
    return [SourceDistributionRead.model_validate(r) for r in rows]


@router.get("/balanced", response_model=list[BalancedPickRead])
async def get_balanced_proposal(
    session: AsyncSession = SessionDep,
    max_items: int | None = Query(None),
):
    """Proposal only; nothing is selected."""
    if max_items is None:
        max_items = get_settings().default_balanced_max_items
    try:
        picks = await propose_balanced_selection(session, max_items)
    except QueueError as e:
        raise _http_error(e)
    return [BalancedPickRead.model_validate(p) for p in picks]


# ── Transitions ────────────────────────────────────────────

@router.post("/select", response_model=list[QueueItemRead])
async def select_queue_items(request: ItemIdsRequest, session: AsyncSession = SessionDep):
    try:
        items = await lifecycle.select_items(session, request.item_ids, actor=request.actor)
    except QueueError as e:
        raise _http_error(e)
    return [QueueItemRead.model_validate(i) for i in items]


@router.post("/select-balanced", response_model=list[QueueItemRead])
async def select_balanced_queue_items(request: SelectBalancedRequest, session: AsyncSession = SessionDep):
    """Compute a balanced proposal and commit it as the selection."""
    try:
        items = await lifecycle.select_balanced_items(session, request.max_items, actor=request.actor)
    except QueueError as e:
        raise _http_error(e)
    return [QueueItemRead.model_validate(i) for i in items]


@router.post("/skip", response_model=dict)
async def skip_queue_items(request: SkipRequest, session: AsyncSession = SessionDep):
    try:
        result = await lifecycle.skip_items(session, request.item_ids, request.reason, actor=request.actor)
    except QueueError as e:
        raise _http_error(e)
    return {"ok": True, "skipped": result.skipped, "already_skipped": result.already_skipped}


@router.post("/items/{item_id}/reset", response_model=dict)
async def reset_queue_item(item_id: str, session: AsyncSession = SessionDep):
    """Return a selected item to pending and drop its thumbnails."""
    try:
        result = await lifecycle.reset_item(session, item_id)
    except QueueError as e:
        raise _http_error(e)
    return {"ok": True, "item_id": result.item_id, "reset": result.reset, "thumbnails_deleted": result.thumbnails_deleted}


@router.post("/reset-selected", response_model=dict)
async def reset_selected_items(request: ResetSelectedRequest, session: AsyncSession = SessionDep):
    reset_ids = await lifecycle.reset_selected_to_pending(
        session, selected_before=request.selected_before, actor=request.actor
    )
    return {"ok": True, "reset": len(reset_ids), "item_ids": reset_ids}


@router.post("/mark-used", response_model=dict)
async def mark_queue_items_used(request: MarkUsedRequest, session: AsyncSession = SessionDep):
    """Only currently selected items become used; others are left as they are."""
    try:
        updated = await lifecycle.mark_used(session, request.item_ids, post_id=request.post_id, actor=request.actor)
    except QueueError as e:
        raise _http_error(e)
    return {"ok": True, "updated": len(updated), "item_ids": updated}


@router.post("/expire", response_model=ExpireReportRead)
async def expire_queue_items(session: AsyncSession = SessionDep):
    report = await lifecycle.expire_items(session)
    return ExpireReportRead(**report.to_dict())


@router.patch("/items/{item_id}/scores", response_model=QueueItemRead)
async def update_item_scores(item_id: str, request: ScoreUpdate, session: AsyncSession = SessionDep):
    try:
        item = await lifecycle.update_scores(
            session,
            item_id,
            synthesis_score=request.synthesis_score,
            relevance_score=request.relevance_score,
            uniqueness_score=request.uniqueness_score,
            actor=request.actor,
        )
    except QueueError as e:
        raise _http_error(e)
    return QueueItemRead.model_validate(item)


# ── Imports ────────────────────────────────────────────────

@router.post("/import/collected", response_model=ImportReportRead)
async def import_collected(
    request: ImportCollectedRequest,
    session: AsyncSession = SessionDep,
    source_client: CandidateSourceClient = Depends(get_candidate_source),
):
    """Queue raw collected items (inline, or fetched for a date) with neutral scores."""
    if request.items is not None:
        items = [CollectedItem(**i.model_dump()) for i in request.items]
    else:
        try:
            items = await source_client.fetch_collected(_parse_day(request.date))
        except QueueError as e:
            raise _http_error(e)
    report = await import_collected_items(session, items, item_ids=request.item_ids, actor=request.actor)
    return ImportReportRead(**report.to_dict())


@router.post("/import/synthesis", response_model=ImportReportRead)
async def import_synthesis(
    request: ImportSynthesisRequest,
    session: AsyncSession = SessionDep,
    source_client: CandidateSourceClient = Depends(get_candidate_source),
    scorer: UniquenessClient = Depends(get_uniqueness_scorer),
):
    """Queue LLM-scored candidates; uniqueness failures come back as retryable."""
    if request.candidates is not None:
        candidates = [SynthesisCandidate(**c.model_dump()) for c in request.candidates]
    else:
        try:
            candidates = await source_client.fetch_synthesis(_parse_day(request.date))
        except QueueError as e:
            raise _http_error(e)
    report = await import_synthesis_candidates(session, candidates, scorer, actor=request.actor)
    return ImportReportRead(**report.to_dict())

"""
Lifecycle controller: status transitions for queue items.

    pending  --select-->   selected  --mark_used-->  used (terminal)
    pending  --skip-->     skipped
    pending/selected --expire--> expired
    selected --reset-->    pending   (cascades thumbnail deletion)

Every write is a compare-and-set UPDATE guarded by the expected prior
status, so two concurrent selects of the same item cannot both succeed:
the loser sees zero affected rows and gets a ConflictError.

select_items / skip_items are all-or-nothing across the batch.
mark_used leaves non-selected items untouched. expire_items is an
idempotent sweep that commits row by row and keeps going on failures.
Nothing here retries; retries belong to the caller.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select, update, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from newsqueue.errors import ConflictError, NotFoundError, QueueValidationError
from newsqueue.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    THUMBNAIL_IMAGE_TYPE,
    PostImage,
    QueueEvent,
    QueueItem,
    QueueStatus,
)
from newsqueue.services.scoring import validate_score
from newsqueue.services.selector import propose_balanced_selection
from newsqueue.services.timeutil import utcnow
from newsqueue.settings import get_settings

logger = logging.getLogger(__name__)


@dataclass
class SkipResult:
    skipped: int
    already_skipped: int


@dataclass
class ResetResult:
    item_id: str
    reset: bool
    thumbnails_deleted: int


@dataclass
class ExpireReport:
    expired: int = 0
    failed: int = 0
    item_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── Helpers ────────────────────────────────────────────────

def _unique_ids(item_ids: list[str] | None) -> list[str]:
    seen: set[str] = set()
    ids: list[str] = []
    for item_id in item_ids or []:
        if item_id and item_id not in seen:
            seen.add(item_id)
            ids.append(item_id)
    return ids


def _event(
    item_id: str | None,
    action: str,
    from_status: str | None,
    to_status: str | None,
    actor: str | None = None,
    payload: dict | None = None,
) -> QueueEvent:
    return QueueEvent(
        item_id=item_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        payload_json=payload,
    )


async def _load_statuses(session: AsyncSession, ids: list[str]) -> dict[str, str]:
    res = await session.execute(select(QueueItem.id, QueueItem.status).where(QueueItem.id.in_(ids)))
    return {row.id: row.status for row in res}


async def _reload(session: AsyncSession, ids: list[str]) -> list[QueueItem]:
    res = await session.execute(
        select(QueueItem)
        .where(QueueItem.id.in_(ids))
        .execution_options(populate_existing=True)
    )
    by_id = {item.id: item for item in res.scalars().all()}
    return [by_id[i] for i in ids if i in by_id]


async def _delete_thumbnails(session: AsyncSession, item_id: str) -> int:
    """Cascade: drop thumbnails illustrating a withdrawn queue item."""
    res = await session.execute(
        delete(PostImage)
        .where(and_(
            PostImage.article_queue_item_id == item_id,
            PostImage.image_type == THUMBNAIL_IMAGE_TYPE,
        ))
        .execution_options(synchronize_session=False)
    )
    return res.rowcount or 0


def _check_missing(ids: list[str], statuses: dict[str, str]) -> None:
    missing = [i for i in ids if i not in statuses]
    if missing:
        raise NotFoundError(f"Queue items not found: {', '.join(missing)}", item_ids=missing)


# ── Transitions ────────────────────────────────────────────

async def select_items(
    session: AsyncSession,
    item_ids: list[str],
    *,
    ranks: dict[str, int] | None = None,
    actor: str | None = None,
) -> list[QueueItem]:
    """pending → selected for the whole batch, or nothing.

    `ranks` records the balanced-selection rank for audit; items selected
    without a rank get selection_rank cleared.

    Raises:
        QueueValidationError: empty batch
        NotFoundError: any id is unknown
        ConflictError: any item is not pending (or lost a concurrent race)
    """
    ids = _unique_ids(item_ids)
    if not ids:
        raise QueueValidationError("item_ids must not be empty")
    ranks = ranks or {}

    statuses = await _load_statuses(session, ids)
    _check_missing(ids, statuses)
    not_pending = {i: s for i, s in statuses.items() if s != QueueStatus.pending.value}
    if not_pending:
        raise ConflictError(
            f"{len(not_pending)} item(s) are not pending",
            item_ids=list(not_pending), current=not_pending,
        )

    now = utcnow()
    affected = 0
    try:
        for item_id in ids:
            res = await session.execute(
                update(QueueItem)
                .where(and_(
                    QueueItem.id == item_id,
                    QueueItem.status == QueueStatus.pending.value,
                ))
                .values(
                    status=QueueStatus.selected.value,
                    selected_at=now,
                    selection_rank=ranks.get(item_id),
                )
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise ConflictError(
                    f"Item {item_id} changed status concurrently",
                    item_ids=[item_id],
                )
            affected += 1
            session.add(_event(
                item_id, "select", QueueStatus.pending.value, QueueStatus.selected.value,
                actor, {"selection_rank": ranks.get(item_id)} if item_id in ranks else None,
            ))
        await session.commit()
    except ConflictError:
        await session.rollback()
        logger.warning("[lifecycle] select rolled back after %d/%d rows (concurrent change)", affected, len(ids))
        raise

    logger.info("[lifecycle] Selected %d items", len(ids))
    return await _reload(session, ids)


async def select_balanced_items(
    session: AsyncSession,
    max_items: int,
    *,
    actor: str | None = None,
) -> list[QueueItem]:
    """Compute a balanced proposal and commit it via select_items()."""
    picks = await propose_balanced_selection(session, max_items)
    if not picks:
        return []
    return await select_items(
        session,
        [p.id for p in picks],
        ranks={p.id: p.rank for p in picks},
        actor=actor,
    )


async def skip_items(
    session: AsyncSession,
    item_ids: list[str],
    reason: str,
    *,
    actor: str | None = None,
) -> SkipResult:
    """pending → skipped with a reason, all-or-nothing.

    Items already skipped are accepted as no-ops (reason unchanged).
    """
    reason = (reason or "").strip()
    if not reason:
        raise QueueValidationError("skip reason must not be empty")
    ids = _unique_ids(item_ids)
    if not ids:
        raise QueueValidationError("item_ids must not be empty")

    statuses = await _load_statuses(session, ids)
    _check_missing(ids, statuses)
    blocked = {
        i: s for i, s in statuses.items()
        if s not in (QueueStatus.pending.value, QueueStatus.skipped.value)
    }
    if blocked:
        raise ConflictError(
            f"{len(blocked)} item(s) cannot be skipped",
            item_ids=list(blocked), current=blocked,
        )

    to_skip = [i for i in ids if statuses[i] == QueueStatus.pending.value]
    try:
        for item_id in to_skip:
            res = await session.execute(
                update(QueueItem)
                .where(and_(
                    QueueItem.id == item_id,
                    QueueItem.status == QueueStatus.pending.value,
                ))
                .values(status=QueueStatus.skipped.value, skip_reason=reason, selection_rank=None)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise ConflictError(f"Item {item_id} changed status concurrently", item_ids=[item_id])
            session.add(_event(
                item_id, "skip", QueueStatus.pending.value, QueueStatus.skipped.value,
                actor, {"reason": reason},
            ))
        await session.commit()
    except ConflictError:
        await session.rollback()
        raise

    logger.info("[lifecycle] Skipped %d items (reason: %s)", len(to_skip), reason)
    return SkipResult(skipped=len(to_skip), already_skipped=len(ids) - len(to_skip))


async def reset_item(
    session: AsyncSession,
    item_id: str,
    *,
    actor: str | None = None,
) -> ResetResult:
    """selected → pending, clearing the rank and deleting linked thumbnails.

    Resetting an item that is already pending is a no-op and leaves its
    thumbnails alone. Any other status is a conflict.
    """
    statuses = await _load_statuses(session, [item_id])
    _check_missing([item_id], statuses)
    current = statuses[item_id]
    if current in TERMINAL_STATUSES:
        raise ConflictError(
            f"Item {item_id} is {current}, only selected items can be reset",
            item_ids=[item_id], current={item_id: current},
        )

    reset = False
    if current == QueueStatus.selected.value:
        res = await session.execute(
            update(QueueItem)
            .where(and_(
                QueueItem.id == item_id,
                QueueItem.status == QueueStatus.selected.value,
            ))
            .values(status=QueueStatus.pending.value, selection_rank=None, selected_at=None)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await session.rollback()
            raise ConflictError(f"Item {item_id} changed status concurrently", item_ids=[item_id])
        reset = True

    deleted = 0
    if reset:
        deleted = await _delete_thumbnails(session, item_id)
        session.add(_event(
            item_id, "reset", current, QueueStatus.pending.value,
            actor, {"thumbnails_deleted": deleted},
        ))
    await session.commit()

    if reset:
        logger.info("[lifecycle] Reset item %s to pending (%d thumbnails deleted)", item_id, deleted)
    return ResetResult(item_id=item_id, reset=reset, thumbnails_deleted=deleted)


async def reset_selected_to_pending(
    session: AsyncSession,
    *,
    selected_before: datetime | None = None,
    actor: str | None = None,
) -> list[str]:
    """Reset every selected item (optionally only those selected before a cutoff).

    Used when generated drafts are abandoned. Each row is reset on its own
    with the same cascade as reset_item(); rows that moved on concurrently
    are left alone.
    """
    q = select(QueueItem.id).where(QueueItem.status == QueueStatus.selected.value)
    if selected_before is not None:
        q = q.where(QueueItem.selected_at < selected_before)
    res = await session.execute(q)
    ids = list(res.scalars().all())

    reset_ids: list[str] = []
    for item_id in ids:
        try:
            result = await reset_item(session, item_id, actor=actor)
        except ConflictError:
            logger.debug("[lifecycle] Item %s left selected state concurrently, skipping", item_id)
            continue
        if result.reset:
            reset_ids.append(item_id)

    if reset_ids:
        logger.info("[lifecycle] Reset %d selected items to pending", len(reset_ids))
    return reset_ids


async def reset_stale_selected(
    session: AsyncSession,
    *,
    max_hours: int | None = None,
) -> list[str]:
    """Reset items stuck in `selected` longer than max_hours."""
    hours = max_hours if max_hours is not None else get_settings().stale_selected_hours
    cutoff = utcnow() - timedelta(hours=hours)
    return await reset_selected_to_pending(session, selected_before=cutoff, actor="sweep")


async def mark_used(
    session: AsyncSession,
    item_ids: list[str],
    *,
    post_id: str | None = None,
    actor: str | None = None,
) -> list[str]:
    """selected → used for the published article's items.

    Items not currently selected are left untouched without error, so
    items removed mid-edit are simply not marked. Returns updated ids.
    """
    ids = _unique_ids(item_ids)
    if not ids:
        logger.info("[lifecycle] mark_used called with empty item_ids")
        return []

    updated: list[str] = []
    for item_id in ids:
        res = await session.execute(
            update(QueueItem)
            .where(and_(
                QueueItem.id == item_id,
                QueueItem.status == QueueStatus.selected.value,
            ))
            .values(status=QueueStatus.used.value, used_in_post_id=post_id, selection_rank=None)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            updated.append(item_id)
            session.add(_event(
                item_id, "mark_used", QueueStatus.selected.value, QueueStatus.used.value,
                actor, {"post_id": post_id},
            ))
    await session.commit()

    if len(updated) < len(ids):
        logger.info(
            "[lifecycle] Marked %d/%d items as used for post %s (others not selected)",
            len(updated), len(ids), post_id,
        )
    else:
        logger.info("[lifecycle] Marked %d items as used for post %s", len(updated), post_id)
    return updated


async def expire_items(
    session: AsyncSession,
    *,
    now: datetime | None = None,
) -> ExpireReport:
    """Sweep pending/selected items past expires_at into `expired`.

    Each row is its own compare-and-set commit: a row already moved by a
    concurrent sweep simply matches nothing. A failing row is logged and
    the sweep continues.
    """
    now = now or utcnow()
    res = await session.execute(
        select(QueueItem.id, QueueItem.status).where(and_(
            QueueItem.status.in_(ACTIVE_STATUSES),
            QueueItem.expires_at < now,
        ))
    )
    due = [(row.id, row.status) for row in res]

    report = ExpireReport()
    for item_id, prior in due:
        try:
            upd = await session.execute(
                update(QueueItem)
                .where(and_(
                    QueueItem.id == item_id,
                    QueueItem.status.in_(ACTIVE_STATUSES),
                    QueueItem.expires_at < now,
                ))
                .values(status=QueueStatus.expired.value, selection_rank=None)
                .execution_options(synchronize_session=False)
            )
            if upd.rowcount == 1:
                session.add(_event(item_id, "expire", prior, QueueStatus.expired.value, "sweep"))
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            report.failed += 1
            logger.exception("[lifecycle] Failed to expire item %s", item_id)
            continue
        if upd.rowcount == 1:
            report.expired += 1
            report.item_ids.append(item_id)

    if report.expired or report.failed:
        logger.info("[lifecycle] Expire sweep: %d expired, %d failed", report.expired, report.failed)
    return report


async def update_scores(
    session: AsyncSession,
    item_id: str,
    *,
    synthesis_score: float | None = None,
    relevance_score: float | None = None,
    uniqueness_score: float | None = None,
    actor: str | None = None,
) -> QueueItem:
    """Change component scores of a non-terminal item; total follows."""
    values: dict[str, float] = {}
    if synthesis_score is not None:
        values["synthesis_score"] = validate_score(synthesis_score, "synthesis_score")
    if relevance_score is not None:
        values["relevance_score"] = validate_score(relevance_score, "relevance_score")
    if uniqueness_score is not None:
        values["uniqueness_score"] = validate_score(uniqueness_score, "uniqueness_score")
    if not values:
        raise QueueValidationError("at least one score is required")

    statuses = await _load_statuses(session, [item_id])
    _check_missing([item_id], statuses)
    current = statuses[item_id]

    res = await session.execute(
        update(QueueItem)
        .where(and_(QueueItem.id == item_id, QueueItem.status.in_(ACTIVE_STATUSES)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await session.rollback()
        raise ConflictError(
            f"Item {item_id} is {current}, scores are frozen",
            item_ids=[item_id], current={item_id: current},
        )
    session.add(_event(item_id, "update_scores", current, current, actor, values))
    await session.commit()

    items = await _reload(session, [item_id])
    return items[0]

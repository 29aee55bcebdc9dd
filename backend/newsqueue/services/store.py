"""
Read side of the queue store: listings, lookups and status counters.
"""
from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from newsqueue.errors import NotFoundError
from newsqueue.models import QueueItem, QueueStatus
from newsqueue.services.timeutil import utcnow
from newsqueue.settings import get_settings


async def get_item(session: AsyncSession, item_id: str) -> QueueItem:
    item = await session.get(QueueItem, item_id)
    if not item:
        raise NotFoundError(f"Queue item {item_id} not found", item_ids=[item_id])
    return item


async def list_items(
    session: AsyncSession,
    *,
    status: str | None = QueueStatus.pending.value,
    source_identifier: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[QueueItem], int]:
    """Items ordered by total score (best first). Returns (items, total)."""
    q = select(QueueItem)
    count_q = select(func.count(QueueItem.id))
    if status:
        q = q.where(QueueItem.status == status)
        count_q = count_q.where(QueueItem.status == status)
    if source_identifier:
        q = q.where(QueueItem.source_identifier == source_identifier)
        count_q = count_q.where(QueueItem.source_identifier == source_identifier)

    q = q.order_by(QueueItem.total_score.desc(), QueueItem.queued_at.asc(), QueueItem.id.asc())
    q = q.limit(limit).offset(offset)

    res = await session.execute(q)
    total = (await session.execute(count_q)).scalar_one()
    return list(res.scalars().all()), total


async def queue_stats(
    session: AsyncSession,
    *,
    window_hours: int | None = None,
) -> dict[str, int]:
    """Count items per status queued within the window."""
    hours = window_hours if window_hours is not None else get_settings().distribution_window_hours
    cutoff = utcnow() - timedelta(hours=hours)

    res = await session.execute(
        select(QueueItem.status, func.count(QueueItem.id))
        .where(QueueItem.queued_at >= cutoff)
        .group_by(QueueItem.status)
    )
    stats = {s.value: 0 for s in QueueStatus}
    for status, count in res.all():
        if status in stats:
            stats[status] = count
    stats["total"] = sum(stats.values())
    return stats

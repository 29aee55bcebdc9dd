"""
Diversity evaluator: per-source share of the active queue pool.

Only pending + selected items count toward the denominator, so historical
volume (used / expired / skipped) cannot mask a current imbalance. Sources
whose share exceeds DIVERSITY_CAP are flagged; callers decide whether to
block further selection from them.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Iterable

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from newsqueue.models import ACTIVE_STATUSES, QueueItem, QueueStatus
from newsqueue.services.timeutil import utcnow
from newsqueue.settings import get_settings

# Max share of the active pool / of a selection attributable to one source
DIVERSITY_CAP = 0.30


@dataclass
class SourceDistribution:
    source_identifier: str
    source_display_name: str | None
    item_count: int
    pending_count: int
    selected_count: int
    used_count: int
    percentage_of_total: float
    flagged: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def distribution(pool: Iterable[QueueItem]) -> list[SourceDistribution]:
    """Compute per-source distribution of the non-terminal pool.

    Items in other statuses are accepted and ignored for the denominator;
    `used_count` is reported for sources that still have active items.
    Sorted by item_count desc, then source_identifier.
    """
    items = list(pool)
    active = [i for i in items if i.status in ACTIVE_STATUSES]
    total_active = len(active)
    if total_active == 0:
        return []

    buckets: dict[str, dict[str, Any]] = {}
    for item in active:
        bucket = buckets.setdefault(item.source_identifier, {
            "display_name": None,
            "pending": 0,
            "selected": 0,
            "used": 0,
        })
        if bucket["display_name"] is None and item.source_display_name:
            bucket["display_name"] = item.source_display_name
        if item.status == QueueStatus.pending.value:
            bucket["pending"] += 1
        else:
            bucket["selected"] += 1

    for item in items:
        if item.status == QueueStatus.used.value and item.source_identifier in buckets:
            buckets[item.source_identifier]["used"] += 1

    result: list[SourceDistribution] = []
    for source, bucket in buckets.items():
        count = bucket["pending"] + bucket["selected"]
        share = count / total_active
        result.append(SourceDistribution(
            source_identifier=source,
            source_display_name=bucket["display_name"],
            item_count=count,
            pending_count=bucket["pending"],
            selected_count=bucket["selected"],
            used_count=bucket["used"],
            percentage_of_total=share,
            flagged=share > DIVERSITY_CAP,
        ))

    result.sort(key=lambda d: (-d.item_count, d.source_identifier))
    return result


def flagged_sources(pool: Iterable[QueueItem]) -> set[str]:
    """Source identifiers currently above the diversity cap."""
    return {d.source_identifier for d in distribution(pool) if d.flagged}


async def load_distribution(
    session: AsyncSession,
    *,
    window_hours: int | None = None,
) -> list[SourceDistribution]:
    """Read a snapshot of recent pending/selected/used items and evaluate it."""
    settings = get_settings()
    hours = window_hours if window_hours is not None else settings.distribution_window_hours
    cutoff = utcnow() - timedelta(hours=hours)

    res = await session.execute(
        select(QueueItem).where(and_(
            QueueItem.status.in_(ACTIVE_STATUSES + (QueueStatus.used.value,)),
            QueueItem.queued_at >= cutoff,
        ))
    )
    return distribution(res.scalars().all())

"""
Balanced selector: deterministic top-N from the pending pool that honors
the per-source diversity cap.

Greedy with quota, exactly one pass:
1. sort by total_score desc, queued_at asc (older wins ties), id asc
2. walk the list; accept unless the item's source already holds its quota
   of the requested slate (max(1, floor(cap * max_items)))
3. stop at max_items or when the pool is exhausted

Capped items are passed over, not rejected: they stay pending. No
backtracking, so a result may hold fewer than max_items items rather than
violate the cap.

Read-only: the output is a proposal until committed via lifecycle.select_items().
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from newsqueue.errors import QueueValidationError
from newsqueue.models import QueueItem, QueueStatus
from newsqueue.services.diversity import DIVERSITY_CAP
from newsqueue.services.timeutil import as_utc, utcnow
from newsqueue.settings import get_settings

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class BalancedPick:
    """One accepted item of a balanced selection."""
    id: str
    rank: int
    source_identifier: str
    source_display_name: str | None
    title: str
    total_score: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def max_per_source(max_items: int, cap: float = DIVERSITY_CAP) -> int:
    """Quota of slots one source may hold in a slate of max_items."""
    # epsilon guards float products like 0.3 * 10 landing just below an integer
    return max(1, math.floor(cap * max_items + 1e-9))


def sort_key(item: QueueItem) -> tuple:
    return (-item.total_score, as_utc(item.queued_at) or _EPOCH, item.id)


def balanced_picks(
    pool: Iterable[QueueItem],
    max_items: int,
    *,
    cap: float = DIVERSITY_CAP,
) -> list[BalancedPick]:
    """Balanced selection with rank and score detail for audit/display."""
    if max_items <= 0:
        raise QueueValidationError(f"max_items must be positive, got {max_items}")

    candidates = sorted(
        (i for i in pool if i.status == QueueStatus.pending.value),
        key=sort_key,
    )
    quota = max_per_source(max_items, cap)

    picks: list[BalancedPick] = []
    per_source: Counter[str] = Counter()
    for item in candidates:
        if len(picks) >= max_items:
            break
        if per_source[item.source_identifier] >= quota:
            continue
        per_source[item.source_identifier] += 1
        picks.append(BalancedPick(
            id=item.id,
            rank=len(picks) + 1,
            source_identifier=item.source_identifier,
            source_display_name=item.source_display_name,
            title=item.title,
            total_score=item.total_score,
        ))
    return picks


def select_balanced(
    pool: Iterable[QueueItem],
    max_items: int,
    *,
    cap: float = DIVERSITY_CAP,
) -> list[str]:
    """Ordered ids of the balanced top-N (len <= max_items)."""
    return [p.id for p in balanced_picks(pool, max_items, cap=cap)]


async def load_selectable_pool(session: AsyncSession) -> list[QueueItem]:
    """Pending, unexpired items eligible for automatic selection."""
    settings = get_settings()
    now = utcnow()
    conditions = [
        QueueItem.status == QueueStatus.pending.value,
        QueueItem.expires_at > now,
    ]
    if settings.manual_only_source_types:
        conditions.append(or_(
            QueueItem.source_type.is_(None),
            QueueItem.source_type.not_in(settings.manual_only_source_types),
        ))

    res = await session.execute(
        select(QueueItem)
        .where(and_(*conditions))
        .order_by(QueueItem.total_score.desc(), QueueItem.queued_at.asc())
    )
    return list(res.scalars().all())


async def propose_balanced_selection(
    session: AsyncSession,
    max_items: int,
) -> list[BalancedPick]:
    """Run the balanced selector against a snapshot of the store."""
    if max_items <= 0:
        raise QueueValidationError(f"max_items must be positive, got {max_items}")

    pool = await load_selectable_pool(session)
    picks = balanced_picks(pool, max_items)

    sources = Counter(p.source_identifier for p in picks)
    logger.info(
        "[selector] Balanced selection: %d/%d items from pool of %d, sources=%s",
        len(picks), max_items, len(pool), dict(sources),
    )
    return picks

"""
Tests for the balanced selector
"""
from collections import Counter
from datetime import timedelta

import pytest

from newsqueue.errors import QueueValidationError
from newsqueue.models import QueueStatus
from newsqueue.services.selector import (
    balanced_picks,
    load_selectable_pool,
    max_per_source,
    propose_balanced_selection,
    select_balanced,
)
from newsqueue.services.timeutil import utcnow


def _by_id(pool):
    return {i.id: i for i in pool}


class TestQuota:

    @pytest.mark.parametrize("max_items,expected", [(1, 1), (3, 1), (5, 1), (7, 2), (10, 3), (20, 6)])
    def test_max_per_source(self, max_items, expected):
        assert max_per_source(max_items) == expected


class TestSelectBalanced:

    def test_top_source_capped_despite_highest_scores(self, make_item):
        a = [make_item("A", s, item_id=f"A{s}") for s in (9, 8, 7, 6)]
        b = [make_item("B", s, item_id=f"B{s}") for s in (5, 4, 3, 2, 1, 0)]
        result = select_balanced(a + b, 5)
        # one slot per source in a slate of five; no backtracking to fill it
        assert result == ["A9", "B5"]

    def test_single_source_pool_gets_at_least_one_slot(self, make_item):
        pool = [make_item("only", s) for s in range(10)]
        for max_items in (1, 4, 5, 10):
            result = select_balanced(pool, max_items)
            assert len(result) == max_per_source(max_items) >= 1

    def test_fills_slate_with_enough_sources(self, make_item):
        pool = [make_item(f"s{n}", 9 - n * 0.1) for n in range(6)] + [make_item("s0", 9.5)]
        result = select_balanced(pool, 5)
        assert len(result) == 5
        counts = Counter(_by_id(pool)[i].source_identifier for i in result)
        assert max(counts.values()) == 1

    def test_share_within_cap(self, make_item):
        pool = []
        for source in ("a", "b", "c", "d"):
            pool += [make_item(source, s) for s in (9, 7, 5, 3)]
        result = select_balanced(pool, 10)
        counts = Counter(_by_id(pool)[i].source_identifier for i in result)
        assert len(result) == 10
        assert all(c / len(result) <= 0.30 for c in counts.values())

    def test_ordered_by_score_desc(self, make_item):
        pool = [make_item(f"s{n}", n) for n in range(5)]
        result = select_balanced(pool, 5)
        scores = [_by_id(pool)[i].total_score for i in result]
        assert scores == sorted(scores, reverse=True)

    def test_ties_broken_by_queue_age(self, make_item):
        newer = make_item("x", 5, age_minutes=1, item_id="newer")
        older = make_item("y", 5, age_minutes=30, item_id="older")
        assert select_balanced([newer, older], 2) == ["older", "newer"]

    def test_deterministic(self, make_item):
        pool = [make_item(f"s{n % 3}", (n * 7) % 10) for n in range(12)]
        first = select_balanced(pool, 6)
        assert select_balanced(list(reversed(pool)), 6) == first

    def test_ignores_non_pending(self, make_item):
        pool = [
            make_item("a", 9, status=QueueStatus.selected.value),
            make_item("b", 8, status=QueueStatus.used.value),
            make_item("c", 1, item_id="c1"),
        ]
        assert select_balanced(pool, 3) == ["c1"]

    def test_empty_pool(self):
        assert select_balanced([], 5) == []

    @pytest.mark.parametrize("max_items", [0, -3])
    def test_non_positive_max_items(self, make_item, max_items):
        with pytest.raises(QueueValidationError):
            select_balanced([make_item()], max_items)

    def test_picks_carry_rank(self, make_item):
        pool = [make_item(f"s{n}", 9 - n) for n in range(3)]
        picks = balanced_picks(pool, 3)
        assert [p.rank for p in picks] == [1, 2, 3]


class TestSelectablePool:

    @pytest.mark.asyncio
    async def test_excludes_expired_and_manual_only(self, session, add_items, make_item):
        overdue = make_item("a", 9, item_id="overdue")
        overdue.expires_at = utcnow() - timedelta(minutes=1)
        await add_items(
            overdue,
            make_item("b", 8, source_type="webcrawl", item_id="crawl"),
            make_item("c", 7, source_type="newsletter", item_id="mail"),
            make_item("d", 6, item_id="plain"),
        )
        pool = await load_selectable_pool(session)
        assert {i.id for i in pool} == {"mail", "plain"}

    @pytest.mark.asyncio
    async def test_proposal_does_not_change_status(self, session, add_items, make_item, status_of):
        await add_items(make_item("a", 9, item_id="one"), make_item("b", 8, item_id="two"))
        picks = await propose_balanced_selection(session, 2)
        assert [p.id for p in picks] == ["one", "two"]
        assert await status_of("one") == QueueStatus.pending.value

"""
Tests for score composition and validation
"""
import math

import pytest

from newsqueue.errors import QueueValidationError
from newsqueue.services.scoring import compute_total_score, validate_score


class TestTotalScore:

    def test_weighted_sum(self):
        assert compute_total_score(9, 8, 7) == pytest.approx(0.4 * 9 + 0.3 * 8 + 0.3 * 7)

    def test_bounds(self):
        assert compute_total_score(0, 0, 0) == 0
        assert compute_total_score(10, 10, 10) == pytest.approx(10)

    def test_model_total_follows_components(self, make_item):
        item = make_item(score=6.0)
        assert item.total_score == pytest.approx(6.0)
        item.synthesis_score = 10.0
        assert item.total_score == pytest.approx(0.4 * 10 + 0.3 * 6 + 0.3 * 6)


class TestValidateScore:

    @pytest.mark.parametrize("value", [0, 5, 10, 7.25])
    def test_accepts_in_range(self, value):
        assert validate_score(value, "x") == float(value)

    @pytest.mark.parametrize("value", [-0.1, 10.01, math.nan, math.inf, None, "7", True])
    def test_rejects(self, value):
        with pytest.raises(QueueValidationError):
            validate_score(value, "x")

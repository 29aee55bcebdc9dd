"""
Queue score formula.

total = 0.4 * synthesis + 0.3 * relevance + 0.3 * uniqueness

compute_total_score() is the only place the weights are applied. It works on
plain floats and on SQLAlchemy column expressions alike, so QueueItem.total_score
(Python reads and ORDER BY clauses) is built from this same function.
"""
from __future__ import annotations

import math
from typing import Any

from newsqueue.errors import QueueValidationError


# ── Weights (fixed) ────────────────────────────────────────
SYNTHESIS_WEIGHT = 0.4
RELEVANCE_WEIGHT = 0.3
UNIQUENESS_WEIGHT = 0.3

SCORE_MIN = 0.0
SCORE_MAX = 10.0


def compute_total_score(synthesis: Any, relevance: Any, uniqueness: Any) -> Any:
    """Weighted sum of the three component scores."""
    return (
        synthesis * SYNTHESIS_WEIGHT
        + relevance * RELEVANCE_WEIGHT
        + uniqueness * UNIQUENESS_WEIGHT
    )


def validate_score(value: float | int | None, field: str) -> float:
    """Return value as float, or raise QueueValidationError if outside [0, 10]."""
    if value is None:
        raise QueueValidationError(f"{field} is required")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise QueueValidationError(f"{field} must be a number, got {value!r}")
    score = float(value)
    if not math.isfinite(score) or score < SCORE_MIN or score > SCORE_MAX:
        raise QueueValidationError(f"{field} must be within [{SCORE_MIN:g}, {SCORE_MAX:g}], got {value!r}")
    return score

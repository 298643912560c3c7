"""Confidence and score calculus.

Pure numeric helpers shared by the normalizer and the scoring engine:

- ``normalize_confidence`` : folds the 0-100 and 0-1 confidence scales into 0-1.
  Values strictly greater than 1 are divided by 100; a raw ``1`` is taken as
  already normalized.  Records written by older pipelines depend on this
  threshold, so it must not move.
- ``effective_weight`` / ``weighted_contribution`` : per-question weighting.
  An absent weight counts as 1, an explicit 0 stays 0.
- ``aggregate_overall_score`` : weighted mean on a 0-10 scale, one decimal,
  rounded half away from zero.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

log = logging.getLogger(__name__)

DEFAULT_WEIGHT = 1.0
MAX_OVERALL_SCORE = 10.0


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def as_float(value: Any) -> float | None:
    """Coerce a raw numeric field to float, ``None`` if it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def round_half_away(value: float, digits: int = 1) -> float:
    """Round to *digits* decimals with ties going away from zero (2.25 -> 2.3)."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Per-question values
# ---------------------------------------------------------------------------


def normalize_confidence(raw: Any) -> float:
    value = as_float(raw)
    if value is None:
        return 0.0
    if value > 1:
        value = value / 100
    return clamp(value)


def normalize_score(raw: Any) -> float:
    value = as_float(raw)
    if value is None:
        return 0.0
    return clamp(value)


def effective_weight(weight: Any) -> float:
    """Resolve a question weight: absent -> 1, explicit 0 -> 0, invalid -> 1."""
    if weight is None:
        return DEFAULT_WEIGHT
    value = as_float(weight)
    if value is None or value < 0:
        log.warning("Invalid question weight %r, using %s", weight, DEFAULT_WEIGHT)
        return DEFAULT_WEIGHT
    return value


def weighted_contribution(score: float, weight: Any = None) -> float:
    return score * effective_weight(weight)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Contribution:
    weighted_contribution: float
    weight: float


def normalized_mean(contributions: Iterable[Contribution]) -> float:
    """Weighted mean of the contributions on a 0-1 scale (0.0 without weight)."""
    total = possible = 0.0
    for c in contributions:
        total += c.weighted_contribution
        possible += c.weight
    if possible <= 0:
        return 0.0
    return total / possible


def aggregate_overall_score(contributions: Iterable[Contribution]) -> float:
    """Overall score on the 0-10 scale.

    Returns exactly ``0.0`` when the summed weight is zero; callers that need
    to tell "no data" apart must track that separately.
    """
    mean = normalized_mean(contributions)
    return round_half_away(clamp(mean) * MAX_OVERALL_SCORE, 1)

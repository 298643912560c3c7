"""Schema normalization and weighted scoring for municipal statute analyses."""
from __future__ import annotations

from civicscore.calculus import aggregate_overall_score, normalize_confidence, weighted_contribution
from civicscore.colors import RGBColor, score_to_color, score_to_hex, score_to_rgb
from civicscore.engine import ScoringEngine
from civicscore.normalizer import NormalizationError, normalize
from civicscore.sources import resolve_source

__version__ = "0.1.0"

__all__ = [
    "NormalizationError",
    "RGBColor",
    "ScoringEngine",
    "aggregate_overall_score",
    "normalize",
    "normalize_confidence",
    "resolve_source",
    "score_to_color",
    "score_to_hex",
    "score_to_rgb",
    "weighted_contribution",
]

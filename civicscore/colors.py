"""Score-to-color mapping.

Every color is computed once as integer RGB channels; the ``rgb()`` and hex
string forms are both rendered from those channels.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from civicscore.calculus import MAX_OVERALL_SCORE, clamp


@dataclass(frozen=True)
class RGBColor:
    r: int
    g: int
    b: int

    @property
    def rgb(self) -> str:
        return f"rgb({self.r}, {self.g}, {self.b})"

    @property
    def hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    @classmethod
    def from_hex(cls, value: str) -> RGBColor:
        v = value.strip().lstrip("#")
        if len(v) != 6:
            raise ValueError(f"Expected #rrggbb color, got {value!r}")
        return cls(int(v[0:2], 16), int(v[2:4], 16), int(v[4:6], 16))


LOW_COLOR = RGBColor(187, 247, 208)  # #bbf7d0
HIGH_COLOR = RGBColor(34, 197, 94)  # #22c55e
NEUTRAL_COLOR = RGBColor(148, 163, 184)  # #94a3b8, unscored entities


def _channel(low: int, high: int, t: float) -> int:
    # Half-up on non-negative channels; never goes through a string form.
    return int(math.floor(low + (high - low) * t + 0.5))


def score_to_color(score: float, max_score: float = MAX_OVERALL_SCORE) -> RGBColor:
    """Interpolate between LOW_COLOR and HIGH_COLOR by ``score / max_score``."""
    t = clamp(score / max_score) if max_score > 0 else 0.0
    return RGBColor(
        _channel(LOW_COLOR.r, HIGH_COLOR.r, t),
        _channel(LOW_COLOR.g, HIGH_COLOR.g, t),
        _channel(LOW_COLOR.b, HIGH_COLOR.b, t),
    )


def score_to_rgb(score: float, max_score: float = MAX_OVERALL_SCORE) -> str:
    return score_to_color(score, max_score).rgb


def score_to_hex(score: float, max_score: float = MAX_OVERALL_SCORE) -> str:
    return score_to_color(score, max_score).hex


# ---------------------------------------------------------------------------
# Banded colors (legend)
# ---------------------------------------------------------------------------

# (lower bound on the 0-10 scale, label, color), highest band first
SCORE_BANDS: tuple[tuple[float, str, str], ...] = (
    (8.0, "Strong", "#22c55e"),
    (5.0, "Moderate", "#65d47f"),
    (2.0, "Weak", "#a7e6b7"),
    (0.0, "Very Weak", "#bbf7d0"),
)


def band_color(score: float) -> str:
    """Fixed band color for a 0-10 score."""
    for lower, _label, color in SCORE_BANDS:
        if score >= lower:
            return color
    return SCORE_BANDS[-1][2]


def score_legend() -> list[dict[str, str]]:
    legend = []
    upper = MAX_OVERALL_SCORE
    for lower, label, color in SCORE_BANDS:
        top = upper if upper == MAX_OVERALL_SCORE else upper - 0.1
        legend.append({"color": color, "label": f"{label} ({lower:.1f}-{top:.1f})"})
        upper = lower
    return legend


def threshold_color(normalized: float, gradient: dict[str, str], thresholds: tuple[float, float]) -> str:
    """Three-stop color for a 0-1 score: below low, below high, otherwise high."""
    low, high = thresholds
    if normalized < low:
        return gradient["low"]
    if normalized < high:
        return gradient["medium"]
    return gradient["high"]

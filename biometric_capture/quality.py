"""Signal-quality labels derived from the estimator confidence."""

from __future__ import annotations

from enum import Enum


class Quality(Enum):
    POOR      = "poor"
    FAIR      = "fair"
    GOOD      = "good"
    EXCELLENT = "excellent"

    @property
    def rank(self) -> int:
        """0 (poor) – 3 (excellent); higher is better."""
        return _RANKS[self]

    def __str__(self) -> str:
        return self.value


_RANKS = {
    Quality.POOR:      0,
    Quality.FAIR:      1,
    Quality.GOOD:      2,
    Quality.EXCELLENT: 3,
}


def classify_quality(confidence: float) -> Quality:
    """
    Map a confidence score (0 – 1) to a :class:`Quality` label.

    Thresholds are exclusive: 0.8 itself is GOOD, not EXCELLENT.
    """
    if confidence > 0.8:
        return Quality.EXCELLENT
    if confidence > 0.6:
        return Quality.GOOD
    if confidence > 0.4:
        return Quality.FAIR
    return Quality.POOR

"""Risk band thresholds shared by the vehicle and route scorers."""

from __future__ import annotations

from dataclasses import dataclass

from ...models.domain import RiskLevel


@dataclass(slots=True, frozen=True)
class RiskBands:
    """Upper (inclusive) score bounds of the low, medium and high bands; anything above is critical."""

    low: int = 30
    medium: int = 60
    high: int = 80

    def level_for(self, score: float) -> RiskLevel:
        if score <= self.low:
            return "low"
        if score <= self.medium:
            return "medium"
        if score <= self.high:
            return "high"
        return "critical"


DEFAULT_BANDS = RiskBands()


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))

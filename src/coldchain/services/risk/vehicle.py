"""Per-vehicle temperature risk scoring over a trailing telemetry window."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

import numpy as np

from ...config import settings
from ...models.domain import RiskAssessment, TelemetrySample, Vehicle
from ...timeutils import as_utc, hours_between, utcnow
from .levels import DEFAULT_BANDS, RiskBands

logger = logging.getLogger(__name__)

TREND_SAMPLE_LIMIT = 10


@dataclass(slots=True, frozen=True)
class VehicleRiskWeights:
    excursion: float = 0.30
    severity: float = 0.25
    variance: float = 0.15
    trend: float = 0.20
    freshness: float = 0.10


DEFAULT_VEHICLE_WEIGHTS = VehicleRiskWeights()

# (hours threshold, penalty) pairs; data at least as old as the last threshold scores 100.
FRESHNESS_STEPS: tuple[tuple[float, int], ...] = ((1.0, 0), (4.0, 25), (12.0, 50), (24.0, 75))


def _temperatures(samples: Sequence[TelemetrySample]) -> list[float]:
    return [sample.temperature_c for sample in samples if sample.temperature_c is not None]


class VehicleRiskScorer:
    """Reduce a vehicle's recent samples to a 0-100 score and a discrete level.

    Five sub-scores (excursion ratio, severity, variance, trend, freshness) are
    each bounded to 0-100 and combined with fixed weights. An empty window
    scores 0/low.
    """

    def __init__(
        self,
        *,
        weights: VehicleRiskWeights = DEFAULT_VEHICLE_WEIGHTS,
        bands: RiskBands = DEFAULT_BANDS,
        lookback_hours: float | None = None,
    ) -> None:
        self.weights = weights
        self.bands = bands
        self.lookback_hours = lookback_hours if lookback_hours is not None else settings.vehicle_lookback_hours

    def window(self, samples: Sequence[TelemetrySample], now: datetime) -> list[TelemetrySample]:
        cutoff = as_utc(now) - timedelta(hours=self.lookback_hours)
        recent = [sample for sample in samples if as_utc(sample.recorded_at) > cutoff]
        return sorted(recent, key=lambda sample: as_utc(sample.recorded_at))

    def compute_factors(
        self, vehicle: Vehicle, samples: Sequence[TelemetrySample], *, now: Optional[datetime] = None
    ) -> dict[str, int]:
        now = now or utcnow()
        recent = self.window(samples, now)
        if not recent:
            return {"excursion": 0, "severity": 0, "variance": 0, "trend": 0, "freshness": 0}
        return {
            "excursion": self._excursion_score(vehicle, recent),
            "severity": self._severity_score(vehicle, recent),
            "variance": self._variance_score(recent),
            "trend": self._trend_score(vehicle, recent),
            "freshness": self._freshness_score(recent, now),
        }

    def score(
        self, vehicle: Vehicle, samples: Sequence[TelemetrySample], *, now: Optional[datetime] = None
    ) -> RiskAssessment:
        factors = self.compute_factors(vehicle, samples, now=now)
        weighted = (
            factors["excursion"] * self.weights.excursion
            + factors["severity"] * self.weights.severity
            + factors["variance"] * self.weights.variance
            + factors["trend"] * self.weights.trend
            + factors["freshness"] * self.weights.freshness
        )
        score = int(max(0, min(100, round(weighted))))
        level = self.bands.level_for(score)
        logger.debug("Vehicle %s scored %s (%s) from factors %s", vehicle.id, score, level, factors)
        return RiskAssessment(score=score, level=level)

    def _excursion_score(self, vehicle: Vehicle, samples: Sequence[TelemetrySample]) -> int:
        excursions = sum(1 for sample in samples if vehicle.out_of_range(sample.temperature_c))
        return round(excursions / len(samples) * 100)

    def _severity_score(self, vehicle: Vehicle, samples: Sequence[TelemetrySample]) -> int:
        if vehicle.min_temp is None and vehicle.max_temp is None:
            return 0
        max_deviation = 0.0
        for temperature in _temperatures(samples):
            if vehicle.min_temp is not None and temperature < vehicle.min_temp:
                max_deviation = max(max_deviation, vehicle.min_temp - temperature)
            if vehicle.max_temp is not None and temperature > vehicle.max_temp:
                max_deviation = max(max_deviation, temperature - vehicle.max_temp)
        # 5 degrees beyond the limit = 50 points, 10 degrees = 100.
        return min(round(max_deviation * 10), 100)

    def _variance_score(self, samples: Sequence[TelemetrySample]) -> int:
        temps = _temperatures(samples)
        if len(temps) < 2:
            return 0
        std_dev = float(np.std(temps))
        return min(round(std_dev * 20), 100)

    def _trend_score(self, vehicle: Vehicle, samples: Sequence[TelemetrySample]) -> int:
        temps = _temperatures(samples[-TREND_SAMPLE_LIMIT:])
        if len(temps) < 3:
            return 0
        if vehicle.min_temp is None or vehicle.max_temp is None:
            return 0

        half = len(temps) // 2
        trend = float(np.mean(temps[-half:]) - np.mean(temps[:half]))
        mid_point = (vehicle.min_temp + vehicle.max_temp) / 2
        current_avg = float(np.mean(temps[-3:]))

        # Drift only counts when it carries the average further from the midpoint.
        if current_avg > mid_point:
            direction = 1.0
            overshoot = current_avg - vehicle.max_temp
        elif current_avg < mid_point:
            direction = -1.0
            overshoot = vehicle.min_temp - current_avg
        else:
            return 0

        drift = trend * direction
        if drift > 0:
            magnitude = abs(trend)
        elif drift == 0 and overshoot > 0:
            # Flat plateau outside the range scores by how far out it sits.
            magnitude = overshoot
        else:
            return 0
        return min(round(magnitude * 20), 100)

    def _freshness_score(self, samples: Sequence[TelemetrySample], now: datetime) -> int:
        last = samples[-1]
        if last.recorded_at is None:
            return 100
        hours_ago = hours_between(last.recorded_at, now)
        for threshold, penalty in FRESHNESS_STEPS:
            if hours_ago < threshold:
                return penalty
        return 100

"""Forward-looking excursion and on-time forecasting for routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional, Sequence

import numpy as np

from ...config import settings
from ...models.domain import ForecastResult, Route, TelemetrySample
from ...timeutils import as_utc, hours_between, utcnow
from ..risk.levels import clamp

logger = logging.getLogger(__name__)

DEFAULT_MIN_TEMP = 2.0
DEFAULT_MAX_TEMP = 8.0
UNKNOWN_SIGNAL = 0.3


@dataclass(slots=True, frozen=True)
class ExcursionWeights:
    base: float = 0.05
    temp_deviation: float = 0.3
    temp_variance: float = 0.2
    vehicle_risk: float = 0.25
    progress_remaining: float = 0.1
    time_in_transit: float = 0.15


@dataclass(slots=True, frozen=True)
class OnTimeWeights:
    base: float = 0.9
    delay: float = 0.4
    remaining_stops: float = 0.2
    route_risk: float = 0.1


RISK_BAND_LABELS: Mapping[str, str] = {"low": "Low", "medium": "Medium", "high": "High"}


class ForecastEngine:
    """Project excursion and on-time probabilities for a route snapshot."""

    def __init__(
        self,
        *,
        excursion_weights: ExcursionWeights = ExcursionWeights(),
        ontime_weights: OnTimeWeights = OnTimeWeights(),
        early_warning_threshold: float | None = None,
        critical_threshold: float | None = None,
        environment_window_hours: float | None = None,
        default_max_transit_hours: float | None = None,
    ) -> None:
        self.excursion_weights = excursion_weights
        self.ontime_weights = ontime_weights
        self.early_warning_threshold = (
            early_warning_threshold if early_warning_threshold is not None else settings.early_warning_threshold
        )
        self.critical_threshold = critical_threshold if critical_threshold is not None else settings.critical_warning_threshold
        self.environment_window_hours = (
            environment_window_hours if environment_window_hours is not None else settings.environment_window_hours
        )
        self.default_max_transit_hours = (
            default_max_transit_hours if default_max_transit_hours is not None else settings.default_max_transit_hours
        )

    def forecast(
        self,
        route: Route,
        *,
        telemetry: Sequence[TelemetrySample] = (),
        now: Optional[datetime] = None,
    ) -> ForecastResult:
        now = now or utcnow()
        factors = self.compute_factors(route, telemetry=telemetry, now=now)
        excursion = round(self._excursion_probability(factors), 2)
        ontime = round(self._ontime_probability(route, factors), 2)
        band = self.risk_band(excursion, ontime)
        return ForecastResult(
            route_id=route.id,
            excursion_probability=excursion,
            ontime_probability=ontime,
            risk_band=band,
            risk_band_label=RISK_BAND_LABELS[band],
            factors=factors,
            early_warning=excursion >= self.early_warning_threshold,
            recommendations=self._recommendations(excursion, ontime, factors),
            generated_at=now,
        )

    def early_warnings(
        self,
        routes: Iterable[Route],
        *,
        telemetry_by_vehicle: Mapping[str, Sequence[TelemetrySample]] | None = None,
        now: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        """Forecast every in-progress route and keep those at or above the warning threshold."""

        now = now or utcnow()
        telemetry_by_vehicle = telemetry_by_vehicle or {}
        warnings: list[dict[str, Any]] = []
        for route in routes:
            if not route.in_progress:
                continue
            samples = telemetry_by_vehicle.get(route.vehicle.id, ()) if route.vehicle else ()
            result = self.forecast(route, telemetry=samples, now=now)
            if result.excursion_probability < self.early_warning_threshold:
                continue
            level = "critical" if result.excursion_probability >= self.critical_threshold else "elevated"
            logger.warning(
                "Early warning (%s) for route %s: excursion probability %.2f",
                level,
                route.id,
                result.excursion_probability,
            )
            warnings.append(
                {
                    "route_id": route.id,
                    "route_name": route.name,
                    "vehicle_name": route.vehicle.name if route.vehicle else None,
                    "forecast": result,
                    "warning_level": level,
                }
            )
        return warnings

    def compute_factors(
        self,
        route: Route,
        *,
        telemetry: Sequence[TelemetrySample] = (),
        now: Optional[datetime] = None,
    ) -> dict[str, float]:
        now = now or utcnow()
        return {
            "current_temp_deviation": self._current_temp_deviation(route, telemetry),
            "temp_variance_factor": self._temp_variance(route, telemetry, now),
            "vehicle_risk_factor": self._vehicle_risk(route),
            "route_progress_factor": self._progress_remaining(route),
            "time_in_transit_factor": self._time_in_transit(route, now),
            "delay_factor": self._delay(route, now),
            "remaining_stops_factor": self._remaining_stops(route),
            "route_risk_factor": self._route_risk(route),
        }

    def risk_band(self, excursion_probability: float, ontime_probability: float) -> str:
        combined = round((excursion_probability * 0.7 + (1 - ontime_probability) * 0.3) * 100)
        if combined <= 30:
            return "low"
        if combined <= 60:
            return "medium"
        return "high"

    def _excursion_probability(self, factors: Mapping[str, float]) -> float:
        w = self.excursion_weights
        probability = (
            w.base
            + factors["current_temp_deviation"] * w.temp_deviation
            + factors["temp_variance_factor"] * w.temp_variance
            + factors["vehicle_risk_factor"] * w.vehicle_risk
            + factors["route_progress_factor"] * w.progress_remaining
            + factors["time_in_transit_factor"] * w.time_in_transit
        )
        return clamp(probability, 0.0, 1.0)

    def _ontime_probability(self, route: Route, factors: Mapping[str, float]) -> float:
        if not route.in_progress:
            return 0.5
        w = self.ontime_weights
        probability = (
            w.base
            - factors["delay_factor"] * w.delay
            - factors["remaining_stops_factor"] * w.remaining_stops
            - factors["route_risk_factor"] * w.route_risk
        )
        return clamp(probability, 0.0, 1.0)

    def _current_temp_deviation(self, route: Route, telemetry: Sequence[TelemetrySample]) -> float:
        vehicle = route.vehicle
        if vehicle is None:
            return 0.0
        if not telemetry:
            return UNKNOWN_SIGNAL
        latest = max(telemetry, key=lambda sample: as_utc(sample.recorded_at))
        if latest.temperature_c is None:
            return 0.0

        min_temp = vehicle.min_temp if vehicle.min_temp is not None else DEFAULT_MIN_TEMP
        max_temp = vehicle.max_temp if vehicle.max_temp is not None else DEFAULT_MAX_TEMP
        mid_point = (min_temp + max_temp) / 2.0
        half_range = (max_temp - min_temp) / 2.0
        if half_range <= 0:
            return 0.0 if latest.temperature_c == mid_point else 1.0
        return clamp(abs(latest.temperature_c - mid_point) / half_range, 0.0, 1.0)

    def _recent_temperatures(self, telemetry: Sequence[TelemetrySample], now: datetime) -> list[float]:
        cutoff = as_utc(now) - timedelta(hours=self.environment_window_hours)
        recent = [sample for sample in telemetry if as_utc(sample.recorded_at) > cutoff and sample.temperature_c is not None]
        primary = [sample.temperature_c for sample in recent if sample.source == "telemetry"]
        if primary:
            return primary
        return [sample.temperature_c for sample in recent]

    def _temp_variance(self, route: Route, telemetry: Sequence[TelemetrySample], now: datetime) -> float:
        if route.vehicle is None:
            return 0.0
        readings = self._recent_temperatures(telemetry, now)
        if len(readings) < 3:
            return 0.0
        return clamp(float(np.std(readings)) / 3.0, 0.0, 1.0)

    def _vehicle_risk(self, route: Route) -> float:
        if route.vehicle is None or route.vehicle.risk_score is None:
            return UNKNOWN_SIGNAL
        return clamp(route.vehicle.risk_score / 100.0, 0.0, 1.0)

    def _progress_remaining(self, route: Route) -> float:
        if not route.in_progress:
            return 0.5
        return (1.0 - route.progress_percentage / 100.0) * 0.5

    def _time_in_transit(self, route: Route, now: datetime) -> float:
        if route.started_at is None:
            return 0.0
        max_hours = route.max_transit_hours or self.default_max_transit_hours
        ratio = hours_between(route.started_at, now) / max_hours
        return clamp(ratio * 0.8, 0.0, 1.0)

    def _expected_progress(self, route: Route, now: datetime) -> float:
        if route.started_at is None or not route.estimated_duration:
            return 0.0
        elapsed_minutes = hours_between(route.started_at, now) * 60
        return clamp(elapsed_minutes / route.estimated_duration, 0.0, 1.0)

    def _delay(self, route: Route, now: datetime) -> float:
        if route.started_at is None or not route.estimated_duration:
            return 0.0
        actual = route.progress_percentage / 100.0
        return clamp(self._expected_progress(route, now) - actual, 0.0, 1.0)

    def _remaining_stops(self, route: Route) -> float:
        total = route.total_stops
        if total == 0:
            return 0.0
        return clamp((total - route.completed_stops) / total, 0.0, 1.0)

    def _route_risk(self, route: Route) -> float:
        return clamp((route.risk_score or 0) / 100.0, 0.0, 1.0)

    def _recommendations(
        self, excursion: float, ontime: float, factors: Mapping[str, float]
    ) -> list[dict[str, Any]]:
        recommendations: list[dict[str, Any]] = []
        if excursion >= 0.8:
            recommendations.append(
                {
                    "priority": 1,
                    "type": "excursion_imminent",
                    "action": "IMMEDIATE_ACTION",
                    "message": "High probability of temperature excursion. "
                    "Consider re-icing or rerouting to nearest cold storage.",
                }
            )
        elif excursion >= 0.6:
            recommendations.append(
                {
                    "priority": 2,
                    "type": "excursion_risk",
                    "action": "MONITOR_CLOSELY",
                    "message": "Elevated excursion risk. Increase monitoring frequency and prepare contingency.",
                }
            )
        elif excursion >= 0.4:
            recommendations.append(
                {
                    "priority": 3,
                    "type": "excursion_watch",
                    "action": "WATCH",
                    "message": "Moderate excursion risk. Continue monitoring temperature trends.",
                }
            )

        if ontime < 0.5:
            recommendations.append(
                {
                    "priority": 2,
                    "type": "delay_risk",
                    "action": "EXPEDITE",
                    "message": "Low on-time probability. Consider expediting or notifying recipients of delay.",
                }
            )
        elif ontime < 0.7:
            recommendations.append(
                {
                    "priority": 3,
                    "type": "delay_watch",
                    "action": "MONITOR",
                    "message": "On-time delivery at risk. Monitor progress closely.",
                }
            )

        if factors["temp_variance_factor"] > 0.5:
            recommendations.append(
                {
                    "priority": 2,
                    "type": "temp_instability",
                    "action": "CHECK_EQUIPMENT",
                    "message": "High temperature variance detected. Check refrigeration unit operation.",
                }
            )
        return sorted(recommendations, key=lambda item: item["priority"])

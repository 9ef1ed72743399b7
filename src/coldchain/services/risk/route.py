"""Route-level risk scoring and operator action suggestions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

import numpy as np

from ...config import settings
from ...models.domain import RiskAssessment, RiskLevel, Route, TelemetrySample
from ...timeutils import as_utc, hours_between, utcnow
from .levels import DEFAULT_BANDS, RiskBands, clamp

logger = logging.getLogger(__name__)

HIGH_RISK_SITE = 60
PRIORITY_STOP_RISK = 50
CRITICAL_STOP_RISK = 70
NO_TELEMETRY_RISK = 50.0
STALE_AFTER_HOURS = 2.0

ACTIONS: dict[str, dict[str, str]] = {
    "critical": {
        "type": "IMMEDIATE_ACTION",
        "message": "Route at critical risk. Consider stopping and assessing cargo integrity.",
    },
    "high": {
        "type": "EXPEDITE",
        "message": "High risk detected. Prioritize high-risk stops and expedite delivery.",
    },
    "medium": {
        "type": "MONITOR",
        "message": "Elevated risk. Monitor temperatures closely and consider reordering stops.",
    },
    "low": {
        "type": "PROCEED",
        "message": "Route is within acceptable risk parameters. Continue as planned.",
    },
}


@dataclass(slots=True, frozen=True)
class RouteRiskWeights:
    vehicle_risk: float = 0.35
    elapsed_transit: float = 0.20
    pending_stops: float = 0.15
    environmental: float = 0.20
    historical: float = 0.10


DEFAULT_ROUTE_WEIGHTS = RouteRiskWeights()


@dataclass(slots=True)
class RouteRiskResult:
    score: int
    level: RiskLevel
    factors: dict[str, float]
    recommendations: list[dict[str, Any]] = field(default_factory=list)

    @property
    def assessment(self) -> RiskAssessment:
        return RiskAssessment(score=self.score, level=self.level)


class RouteRiskScorer:
    """Score a route from its vehicle, elapsed transit, pending stops, environment and history."""

    def __init__(
        self,
        *,
        weights: RouteRiskWeights = DEFAULT_ROUTE_WEIGHTS,
        bands: RiskBands = DEFAULT_BANDS,
        environment_window_hours: float | None = None,
        historical_window_days: int | None = None,
    ) -> None:
        self.weights = weights
        self.bands = bands
        self.environment_window_hours = (
            environment_window_hours if environment_window_hours is not None else settings.environment_window_hours
        )
        self.historical_window_days = (
            historical_window_days if historical_window_days is not None else settings.historical_window_days
        )

    def assess(
        self,
        route: Route,
        *,
        telemetry: Sequence[TelemetrySample] = (),
        completed_routes: Sequence[Route] = (),
        now: Optional[datetime] = None,
    ) -> RouteRiskResult:
        now = now or utcnow()
        factors = {
            "vehicle_risk": self._vehicle_risk_factor(route),
            "elapsed_transit": self._elapsed_transit_factor(route, now),
            "pending_stops": self._pending_stops_factor(route),
            "environmental": self._environmental_factor(route, telemetry, now),
            "historical": self._historical_factor(route, completed_routes, now),
        }
        weighted = (
            factors["vehicle_risk"] * self.weights.vehicle_risk
            + factors["elapsed_transit"] * self.weights.elapsed_transit
            + factors["pending_stops"] * self.weights.pending_stops
            + factors["environmental"] * self.weights.environmental
            + factors["historical"] * self.weights.historical
        )
        score = int(clamp(round(weighted), 0, 100))
        if self._transit_overdue(route, now):
            # A route past its permitted transit time is never below the high band.
            score = max(score, self.bands.medium + 1)
        level = self.bands.level_for(score)
        return RouteRiskResult(
            score=score,
            level=level,
            factors=factors,
            recommendations=self._recommendations(route, factors, score),
        )

    def suggest_action(
        self,
        route: Route,
        *,
        telemetry: Sequence[TelemetrySample] = (),
        completed_routes: Sequence[Route] = (),
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        result = self.assess(route, telemetry=telemetry, completed_routes=completed_routes, now=now)
        return {
            "route_id": route.id,
            "route_name": route.name,
            "risk_score": result.score,
            "risk_level": result.level,
            "action": dict(ACTIONS[result.level]),
            "recommendations": result.recommendations,
            "priority_stops": self.priority_stops(route),
        }

    def priority_stops(self, route: Route) -> list[dict[str, Any]]:
        stops = [
            {
                "waypoint_id": wp.id,
                "site_name": wp.site.name,
                "position": wp.position,
                "risk_score": wp.site_risk_level,
                "priority": "critical" if wp.site_risk_level > CRITICAL_STOP_RISK else "elevated",
            }
            for wp in route.pending_waypoints
            if wp.site_risk_level > PRIORITY_STOP_RISK
        ]
        return sorted(stops, key=lambda stop: -stop["risk_score"])

    def _vehicle_risk_factor(self, route: Route) -> float:
        if route.vehicle is None:
            return 0.0
        return float(route.vehicle.risk_score or 0)

    def _elapsed_hours(self, route: Route, now: datetime) -> Optional[float]:
        if not route.in_progress or route.started_at is None:
            return None
        return hours_between(route.started_at, now)

    def _transit_overdue(self, route: Route, now: datetime) -> bool:
        hours = self._elapsed_hours(route, now)
        return hours is not None and route.max_transit_hours is not None and hours > route.max_transit_hours

    def _elapsed_transit_factor(self, route: Route, now: datetime) -> float:
        hours = self._elapsed_hours(route, now)
        if hours is None:
            return 0.0
        if hours < 4:
            value = 0.0
        elif hours < 8:
            value = (hours - 4) * 10
        elif hours < 12:
            value = 40 + (hours - 8) * 15
        else:
            value = 100.0
        return clamp(value, 0, 100)

    def _pending_stops_factor(self, route: Route) -> float:
        total = route.total_stops
        if total == 0:
            return 0.0
        pending = route.pending_waypoints
        high_risk_pending = sum(1 for wp in pending if wp.site_risk_level > HIGH_RISK_SITE)
        if high_risk_pending:
            return clamp(50 + high_risk_pending * 10, 0, 100)
        return clamp(len(pending) / total * 30, 0, 100)

    def _environmental_factor(self, route: Route, telemetry: Sequence[TelemetrySample], now: datetime) -> float:
        vehicle = route.vehicle
        if vehicle is None:
            return 0.0
        if not telemetry:
            return NO_TELEMETRY_RISK

        latest = max(telemetry, key=lambda sample: as_utc(sample.recorded_at))
        score = 0.0
        if vehicle.out_of_range(latest.temperature_c):
            score += 60
        if latest.temperature_c is not None:
            score += min(self._temperature_std(telemetry, now) * 10, 30)
        hours_since = hours_between(latest.recorded_at, now)
        if hours_since > STALE_AFTER_HOURS:
            score += min(hours_since * 5, 30)
        return clamp(score, 0, 100)

    def _temperature_std(self, telemetry: Sequence[TelemetrySample], now: datetime) -> float:
        cutoff = as_utc(now) - timedelta(hours=self.environment_window_hours)
        readings = [
            sample.temperature_c
            for sample in telemetry
            if sample.temperature_c is not None and as_utc(sample.recorded_at) > cutoff
        ]
        if len(readings) < 3:
            return 0.0
        return float(np.std(readings))

    def _historical_factor(self, route: Route, completed_routes: Sequence[Route], now: datetime) -> float:
        if route.vehicle is None:
            return 0.0
        cutoff = as_utc(now) - timedelta(days=self.historical_window_days)
        recent = [
            candidate
            for candidate in completed_routes
            if candidate.status == "completed"
            and (candidate.completed_at is None or as_utc(candidate.completed_at) > cutoff)
        ]
        if not recent:
            return 0.0
        with_excursion = sum(1 for candidate in recent if candidate.had_excursion)
        return clamp(with_excursion / len(recent) * 100, 0, 100)

    def _recommendations(self, route: Route, factors: dict[str, float], score: int) -> list[dict[str, Any]]:
        recommendations: list[dict[str, Any]] = []
        if factors["vehicle_risk"] > 60:
            recommendations.append(
                {
                    "priority": 1,
                    "type": "vehicle_risk",
                    "message": f"Vehicle has elevated risk score ({factors['vehicle_risk']:.0f}). "
                    "Check recent temperature readings.",
                }
            )
        if factors["elapsed_transit"] > 50:
            recommendations.append(
                {
                    "priority": 1,
                    "type": "elapsed_transit",
                    "message": "Cargo has been in transit for extended period. Consider expediting remaining deliveries.",
                }
            )
        if factors["environmental"] > 50:
            recommendations.append(
                {
                    "priority": 2,
                    "type": "environmental",
                    "message": "Environmental conditions are concerning. Verify refrigeration unit is functioning properly.",
                }
            )
        if factors["pending_stops"] > 40:
            recommendations.append(
                {
                    "priority": 2,
                    "type": "pending_stops",
                    "message": "High-risk stops pending. Reorder by risk to prioritize critical deliveries.",
                }
            )
        if score > 70 and route.status == "planned":
            recommendations.append(
                {
                    "priority": 1,
                    "type": "delay_start",
                    "message": "Consider delaying route start until vehicle risk levels decrease.",
                }
            )
        return sorted(recommendations, key=lambda item: item["priority"])

"""Multi-constraint scoring and ranking of candidate routes."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any, Literal, Mapping, Optional, Sequence

from ...config import settings
from ...models.domain import Route
from ...timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

OptimizeFor = Literal["balanced", "risk", "time", "cost"]

SENSITIVITY_WEIGHTS: Mapping[str, float] = MappingProxyType(
    {"critical": 2.0, "high": 1.5, "standard": 1.0, "low": 0.5}
)

# (ratio upper bound, score) brackets shared by the time and cost sub-scores.
RATIO_BRACKETS: tuple[tuple[float, int], ...] = ((0.5, 100), (0.75, 80), (1.0, 60), (1.25, 40))
RATIO_FLOOR_SCORE = 20
NEUTRAL_SCORE = 50
DEFAULT_PRIORITY = 5


@dataclass(slots=True, frozen=True)
class ProfileWeights:
    risk: float
    time: float
    cost: float
    priority: float


OPTIMIZATION_PROFILES: Mapping[str, ProfileWeights] = MappingProxyType(
    {
        "balanced": ProfileWeights(risk=0.35, time=0.30, cost=0.20, priority=0.15),
        "risk": ProfileWeights(risk=0.6, time=0.2, cost=0.1, priority=0.1),
        "time": ProfileWeights(risk=0.2, time=0.6, cost=0.1, priority=0.1),
        "cost": ProfileWeights(risk=0.2, time=0.2, cost=0.5, priority=0.1),
    }
)


@dataclass(slots=True, frozen=True)
class RankingConstraints:
    max_risk: Optional[float] = None
    max_hours: Optional[float] = None
    max_cost: Optional[float] = None
    prefer_carrier: Optional[str] = None
    time_window_start: Optional[datetime] = None
    time_window_end: Optional[datetime] = None
    optimize_for: OptimizeFor = "balanced"

    def __post_init__(self) -> None:
        if self.optimize_for not in OPTIMIZATION_PROFILES:
            raise ValueError(f"Unknown optimization profile '{self.optimize_for}'.")

    @property
    def effective_max_risk(self) -> float:
        return self.max_risk if self.max_risk is not None else settings.default_max_risk

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["max_risk"] = self.effective_max_risk
        return data


@dataclass(slots=True)
class CandidateScores:
    overall: float
    risk: float
    time: float
    cost: float
    priority: float
    breakdown: dict[str, float]


@dataclass(slots=True)
class RankedCandidate:
    route: Route
    scores: CandidateScores
    eligible: bool
    reasons: list[str] = field(default_factory=list)
    tradeoffs: list[dict[str, str]] = field(default_factory=list)


@dataclass(slots=True)
class RankingResult:
    recommended: Optional[RankedCandidate]
    alternatives: list[RankedCandidate]
    ineligible: list[RankedCandidate]
    optimization_mode: str
    constraints: dict[str, Any]


def _bracket(ratio: float) -> int:
    for upper, score in RATIO_BRACKETS:
        if ratio <= upper:
            return score
    return RATIO_FLOOR_SCORE


def _route_risk(route: Route) -> float:
    return float(route.risk_score or 0)


class ConstraintRanker:
    """Score candidates against a profile and partition them by hard constraints."""

    def __init__(
        self,
        constraints: RankingConstraints | None = None,
        *,
        default_max_cost: float | None = None,
        default_max_hours: float | None = None,
    ) -> None:
        self.constraints = constraints or RankingConstraints()
        self.default_max_cost = default_max_cost if default_max_cost is not None else settings.default_max_cost
        self.default_max_hours = default_max_hours if default_max_hours is not None else settings.default_max_transit_hours

    @property
    def weights(self) -> ProfileWeights:
        return OPTIMIZATION_PROFILES[self.constraints.optimize_for]

    def rank(self, candidates: Sequence[Route], *, now: Optional[datetime] = None) -> RankingResult:
        now = now or utcnow()
        evaluated = [self.evaluate(route, now=now) for route in candidates]
        eligible = [candidate for candidate in evaluated if candidate.eligible]
        ineligible = [candidate for candidate in evaluated if not candidate.eligible]
        ranked = sorted(eligible, key=self._sort_key)
        logger.info(
            "Ranked %s candidates (%s eligible) with profile '%s'",
            len(evaluated),
            len(ranked),
            self.constraints.optimize_for,
        )
        return RankingResult(
            recommended=ranked[0] if ranked else None,
            alternatives=ranked[1:],
            ineligible=ineligible,
            optimization_mode=self.constraints.optimize_for,
            constraints=self.constraints.as_dict(),
        )

    def compare(self, candidates: Sequence[Route], *, now: Optional[datetime] = None) -> list[RankedCandidate]:
        """Score every candidate, eligible or not, best first."""

        now = now or utcnow()
        return sorted((self.evaluate(route, now=now) for route in candidates), key=self._sort_key)

    def evaluate(self, route: Route, *, now: Optional[datetime] = None) -> RankedCandidate:
        reasons = self.ineligibility_reasons(route, now=now or utcnow())
        return RankedCandidate(
            route=route,
            scores=self.score_route(route),
            eligible=not reasons,
            reasons=reasons,
            tradeoffs=self.tradeoffs(route),
        )

    def score_route(self, route: Route) -> CandidateScores:
        weights = self.weights
        risk = self._risk_score(route)
        time = self._time_score(route)
        cost = self._cost_score(route)
        priority = self._priority_score(route)
        overall = round(
            risk * weights.risk + time * weights.time + cost * weights.cost + priority * weights.priority,
            2,
        )
        return CandidateScores(
            overall=overall,
            risk=risk,
            time=time,
            cost=cost,
            priority=priority,
            breakdown={
                "risk_weight": weights.risk,
                "time_weight": weights.time,
                "cost_weight": weights.cost,
                "priority_weight": weights.priority,
            },
        )

    def ineligibility_reasons(self, route: Route, *, now: datetime) -> list[str]:
        constraints = self.constraints
        reasons: list[str] = []
        risk = _route_risk(route)
        if risk > constraints.effective_max_risk:
            reasons.append(f"Risk {risk:g} exceeds maximum {constraints.effective_max_risk:g}")
        if constraints.max_hours is not None and route.estimated_duration is not None:
            hours = route.estimated_duration / 60.0
            if hours > constraints.max_hours:
                reasons.append(f"Duration {hours:.1f}h exceeds maximum {constraints.max_hours:g}h")
        if constraints.max_cost is not None and route.cost_estimate is not None:
            if route.cost_estimate > constraints.max_cost:
                reasons.append(f"Cost {route.cost_estimate:.2f} exceeds budget {constraints.max_cost:.2f}")
        if constraints.time_window_end is not None and route.estimated_duration is not None:
            arrival = as_utc(now) + timedelta(minutes=route.estimated_duration)
            if arrival > as_utc(constraints.time_window_end):
                reasons.append(f"Projected arrival {arrival.isoformat()} is after the time window end")
        return reasons

    def tradeoffs(self, route: Route) -> list[dict[str, str]]:
        tradeoffs: list[dict[str, str]] = []
        risk = _route_risk(route)
        duration = route.estimated_duration or 0
        cost = route.cost_estimate or 0
        max_transit = route.max_transit_hours or self.constraints.max_hours

        if risk > 60:
            tradeoffs.append(
                {
                    "factor": "risk",
                    "severity": "high" if risk > 80 else "medium",
                    "message": f"Route has elevated risk ({risk:g})",
                }
            )
        if max_transit and duration > max_transit * 60:
            tradeoffs.append(
                {
                    "factor": "time",
                    "severity": "high",
                    "message": f"Exceeds max transit time by {duration / 60.0 - max_transit:.1f} hours",
                }
            )
        if self.constraints.max_cost is not None and cost > self.constraints.max_cost:
            tradeoffs.append(
                {
                    "factor": "cost",
                    "severity": "medium",
                    "message": f"Exceeds budget by {cost - self.constraints.max_cost:.2f}",
                }
            )
        if route.temperature_sensitivity == "critical" and risk > 40:
            tradeoffs.append(
                {
                    "factor": "sensitivity",
                    "severity": "high",
                    "message": f"Critical sensitivity product on route with risk {risk:g}",
                }
            )
        return tradeoffs

    def _sort_key(self, candidate: RankedCandidate) -> tuple[float, int]:
        preferred = self.constraints.prefer_carrier
        carrier_rank = 0 if preferred and candidate.route.carrier == preferred else 1
        return (-candidate.scores.overall, carrier_rank)

    def _risk_score(self, route: Route) -> float:
        sensitivity = SENSITIVITY_WEIGHTS.get(route.temperature_sensitivity, 1.0)
        return round(max(100 - _route_risk(route) * sensitivity, 0), 2)

    def _time_score(self, route: Route) -> int:
        if route.estimated_duration is None:
            return NEUTRAL_SCORE
        max_hours = route.max_transit_hours or self.constraints.max_hours or self.default_max_hours
        return _bracket((route.estimated_duration / 60.0) / max_hours)

    def _cost_score(self, route: Route) -> int:
        if route.cost_estimate is None:
            return NEUTRAL_SCORE
        max_cost = self.constraints.max_cost or self.default_max_cost
        return _bracket(route.cost_estimate / max_cost)

    def _priority_score(self, route: Route) -> int:
        priority = route.priority if route.priority is not None else DEFAULT_PRIORITY
        return max(0, min(100, priority * 10))

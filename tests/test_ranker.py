from datetime import datetime, timedelta, timezone

import pytest

from coldchain.data.repository import InMemoryRepository
from coldchain.models.domain import Route
from coldchain.services.routing import service as routing_service
from coldchain.services.routing.ranker import ConstraintRanker, RankingConstraints

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _candidate(
    rid: str,
    *,
    risk: int = 20,
    duration_min: float | None = 240,
    cost: float | None = 2000,
    priority: int | None = 5,
    sensitivity: str = "standard",
    carrier: str | None = None,
) -> Route:
    return Route(
        id=rid,
        name=f"Option {rid}",
        status="planned",
        priority=priority,
        cost_estimate=cost,
        max_transit_hours=8,
        estimated_duration=duration_min,
        risk_score=risk,
        temperature_sensitivity=sensitivity,
        carrier=carrier,
    )


def test_routes_over_max_risk_are_ineligible():
    ranker = ConstraintRanker(RankingConstraints(max_risk=50))

    result = ranker.rank([_candidate("safe", risk=20), _candidate("risky", risk=70)], now=NOW)

    assert result.recommended.route.id == "safe"
    assert [item.route.id for item in result.ineligible] == ["risky"]
    assert result.ineligible[0].reasons == ["Risk 70 exceeds maximum 50"]
    assert result.constraints["max_risk"] == 50


def test_default_max_risk_applies_when_unset():
    result = ConstraintRanker().rank([_candidate("hot", risk=85)], now=NOW)

    assert result.recommended is None
    assert result.ineligible[0].route.id == "hot"


def test_scores_follow_balanced_profile():
    scores = ConstraintRanker().score_route(_candidate("A", risk=20, duration_min=240, cost=2000, priority=5))

    # risk 80, time ratio 0.5 -> 100, cost ratio 0.2 -> 100, priority 50
    assert scores.risk == 80
    assert scores.time == 100
    assert scores.cost == 100
    assert scores.priority == 50
    assert scores.overall == pytest.approx(80 * 0.35 + 100 * 0.30 + 100 * 0.20 + 50 * 0.15)


def test_missing_inputs_score_neutral():
    scores = ConstraintRanker().score_route(_candidate("A", duration_min=None, cost=None, priority=None))

    assert scores.time == 50
    assert scores.cost == 50
    assert scores.priority == 50


def test_sensitivity_amplifies_risk():
    ranker = ConstraintRanker()

    critical = ranker.score_route(_candidate("A", risk=30, sensitivity="critical"))
    low = ranker.score_route(_candidate("B", risk=30, sensitivity="low"))

    assert critical.risk == 40
    assert low.risk == 85


def test_optimize_for_cost_prefers_cheaper_route():
    cheap_slow = _candidate("cheap", risk=30, duration_min=420, cost=1000)
    fast_pricey = _candidate("fast", risk=30, duration_min=120, cost=9000)

    by_cost = ConstraintRanker(RankingConstraints(optimize_for="cost")).rank([cheap_slow, fast_pricey], now=NOW)
    by_time = ConstraintRanker(RankingConstraints(optimize_for="time")).rank([cheap_slow, fast_pricey], now=NOW)

    assert by_cost.recommended.route.id == "cheap"
    assert by_time.recommended.route.id == "fast"
    assert by_cost.optimization_mode == "cost"


def test_hard_limits_produce_reasons():
    ranker = ConstraintRanker(
        RankingConstraints(max_hours=3, max_cost=1500, time_window_end=NOW + timedelta(hours=2))
    )

    candidate = ranker.evaluate(_candidate("A", duration_min=240, cost=2000), now=NOW)

    assert candidate.eligible is False
    assert len(candidate.reasons) == 3
    assert candidate.reasons[0].startswith("Duration 4.0h exceeds maximum 3h")


def test_preferred_carrier_breaks_ties():
    ranker = ConstraintRanker(RankingConstraints(prefer_carrier="Polar"))

    result = ranker.rank([_candidate("A", carrier="Frost"), _candidate("B", carrier="Polar")], now=NOW)

    assert result.recommended.route.id == "B"
    assert [item.route.id for item in result.alternatives] == ["A"]


def test_tradeoffs_describe_weak_points():
    tradeoffs = ConstraintRanker(RankingConstraints(max_cost=1000)).tradeoffs(
        _candidate("A", risk=85, duration_min=600, cost=1500, sensitivity="critical")
    )

    assert [item["factor"] for item in tradeoffs] == ["risk", "time", "cost", "sensitivity"]
    assert tradeoffs[0]["severity"] == "high"


def test_unknown_profile_is_rejected():
    with pytest.raises(ValueError):
        RankingConstraints(optimize_for="speed")


def test_service_ranks_planned_routes_and_skips_unknown_ids():
    repository = InMemoryRepository()
    repository.add_route(_candidate("A", risk=10))
    repository.add_route(_candidate("B", risk=40))

    by_default = routing_service.rank_routes(repository=repository, now=NOW)
    named = routing_service.rank_routes(["B", "missing"], repository=repository, now=NOW)

    assert by_default.recommended.route.id == "A"
    assert named.recommended.route.id == "B"
    assert named.alternatives == []

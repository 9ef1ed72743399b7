"""Risk scoring orchestration: fetch snapshots, score, write results back."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from ...config import settings
from ...data.repository import InMemoryRepository, get_repository
from ...models.domain import RiskAssessment, TelemetrySample
from ...timeutils import utcnow
from ..batch import BatchResult, run_parallel
from .route import RouteRiskResult, RouteRiskScorer
from .vehicle import VehicleRiskScorer

logger = logging.getLogger(__name__)


def score_vehicle(
    vehicle_id: str,
    *,
    repository: InMemoryRepository | None = None,
    scorer: VehicleRiskScorer | None = None,
    now: Optional[datetime] = None,
) -> RiskAssessment:
    repository = repository or get_repository()
    scorer = scorer or VehicleRiskScorer()
    now = now or utcnow()

    vehicle = repository.get_vehicle(vehicle_id)
    samples = repository.get_recent_telemetry(vehicle_id, timedelta(hours=scorer.lookback_hours), now=now)
    assessment = scorer.score(vehicle, samples, now=now)
    repository.persist_risk_assessment(vehicle, assessment)
    logger.info("Vehicle %s risk %s (%s) from %s samples", vehicle_id, assessment.score, assessment.level, len(samples))
    return assessment


def recompute_all_vehicles(
    *,
    repository: InMemoryRepository | None = None,
    now: Optional[datetime] = None,
    max_workers: int | None = None,
) -> BatchResult:
    """Score every known vehicle; each vehicle succeeds or fails on its own."""

    repository = repository or get_repository()
    now = now or utcnow()
    scorer = VehicleRiskScorer()
    vehicle_ids = [vehicle.id for vehicle in repository.list_vehicles()]
    return run_parallel(
        vehicle_ids,
        lambda vehicle_id: score_vehicle(vehicle_id, repository=repository, scorer=scorer, now=now),
        label="Vehicle risk recompute",
        max_workers=max_workers,
    )


def ingest_telemetry(
    vehicle_id: str,
    samples: Iterable[TelemetrySample],
    *,
    repository: InMemoryRepository | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Store samples and trigger a vehicle recompute when they warrant one.

    Monitoring samples always trigger a recompute; telemetry samples only when
    one of them is out of the vehicle's range.
    """

    repository = repository or get_repository()
    vehicle = repository.get_vehicle(vehicle_id)
    batch = [sample for sample in samples if sample.vehicle_id == vehicle_id]
    stored = repository.add_telemetry(batch)

    trigger = any(
        sample.source == "monitoring" or vehicle.out_of_range(sample.temperature_c) for sample in batch
    )
    assessment = score_vehicle(vehicle_id, repository=repository, now=now) if trigger else None
    return {"vehicle_id": vehicle_id, "processed": stored, "assessment": assessment}


def score_route(
    route_id: str,
    *,
    repository: InMemoryRepository | None = None,
    scorer: RouteRiskScorer | None = None,
    now: Optional[datetime] = None,
) -> RouteRiskResult:
    repository = repository or get_repository()
    scorer = scorer or RouteRiskScorer()
    now = now or utcnow()

    route = repository.get_route(route_id)
    telemetry, history = _route_signals(route, repository, scorer, now)
    result = scorer.assess(route, telemetry=telemetry, completed_routes=history, now=now)
    repository.persist_risk_assessment(route, result.assessment)
    logger.info("Route %s risk %s (%s)", route_id, result.score, result.level)
    return result


def suggest_route_action(
    route_id: str,
    *,
    repository: InMemoryRepository | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    repository = repository or get_repository()
    scorer = RouteRiskScorer()
    now = now or utcnow()

    route = repository.get_route(route_id)
    telemetry, history = _route_signals(route, repository, scorer, now)
    suggestion = scorer.suggest_action(route, telemetry=telemetry, completed_routes=history, now=now)
    repository.persist_risk_assessment(
        route, RiskAssessment(score=suggestion["risk_score"], level=suggestion["risk_level"])
    )
    return suggestion


def _route_signals(route, repository: InMemoryRepository, scorer: RouteRiskScorer, now: datetime):
    if route.vehicle is None:
        return [], []
    telemetry = repository.get_recent_telemetry(
        route.vehicle.id, timedelta(hours=settings.vehicle_lookback_hours), now=now
    )
    if not telemetry:
        # Staleness is measured from the last reading even when it predates the window.
        latest = repository.get_latest_telemetry(route.vehicle.id)
        telemetry = [latest] if latest is not None else []
    history = repository.get_vehicle_completed_routes(
        route.vehicle.id, now - timedelta(days=scorer.historical_window_days)
    )
    return telemetry, history

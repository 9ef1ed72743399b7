"""Routing orchestration service."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from ...data.repository import EntityNotFoundError, InMemoryRepository, get_repository
from ...models.domain import Route
from ...timeutils import utcnow
from .ranker import ConstraintRanker, RankedCandidate, RankingConstraints, RankingResult
from .sequencer import RouteSequencer, SequenceResult

logger = logging.getLogger(__name__)


def _apply(result: SequenceResult, repository: InMemoryRepository) -> Route:
    return repository.save_sequence(
        result.route_id,
        result.waypoints,
        distance=result.distance_km,
        estimated_duration=result.estimated_duration_min,
    )


def optimize_sequence(
    route_id: str,
    *,
    repository: InMemoryRepository | None = None,
    sequencer: RouteSequencer | None = None,
) -> SequenceResult:
    repository = repository or get_repository()
    sequencer = sequencer or RouteSequencer()
    route = repository.get_route(route_id)
    result = sequencer.optimize(route)
    if result.changed or result.distance_km != route.distance:
        _apply(result, repository)
    return result


def reorder_by_risk(
    route_id: str,
    *,
    repository: InMemoryRepository | None = None,
    sequencer: RouteSequencer | None = None,
) -> SequenceResult:
    repository = repository or get_repository()
    sequencer = sequencer or RouteSequencer()
    result = sequencer.reorder_by_risk(repository.get_route(route_id))
    _apply(result, repository)
    return result


def suggest_reroute(route_id: str, *, repository: InMemoryRepository | None = None) -> dict[str, Any]:
    repository = repository or get_repository()
    route = repository.get_route(route_id)
    return {
        "route_id": route.id,
        "route_name": route.name,
        "suggestions": RouteSequencer().suggest_reroute(route),
    }


def estimate_etas(
    route_id: str,
    *,
    repository: InMemoryRepository | None = None,
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    repository = repository or get_repository()
    route = repository.get_route(route_id)
    sequencer = RouteSequencer()
    now = now or utcnow()
    return [
        {
            "waypoint_id": wp.id,
            "position": wp.position,
            "status": wp.status,
            "eta": sequencer.estimate_eta(route, wp, now=now),
        }
        for wp in route.pending_waypoints
    ]


def _resolve_candidates(route_ids: Sequence[str] | None, repository: InMemoryRepository) -> list[Route]:
    if route_ids is None:
        return repository.list_routes(status="planned")
    candidates: list[Route] = []
    for route_id in route_ids:
        try:
            candidates.append(repository.get_route(route_id))
        except EntityNotFoundError as exc:
            logger.warning("Skipping ranking candidate: %s", exc)
    return candidates


def rank_routes(
    route_ids: Sequence[str] | None = None,
    constraints: RankingConstraints | None = None,
    *,
    repository: InMemoryRepository | None = None,
    now: Optional[datetime] = None,
) -> RankingResult:
    """Rank the named routes, or every planned route when none are named."""

    repository = repository or get_repository()
    candidates = _resolve_candidates(route_ids, repository)
    return ConstraintRanker(constraints).rank(candidates, now=now)


def compare_routes(
    route_ids: Sequence[str],
    constraints: RankingConstraints | None = None,
    *,
    repository: InMemoryRepository | None = None,
    now: Optional[datetime] = None,
) -> list[RankedCandidate]:
    repository = repository or get_repository()
    candidates = _resolve_candidates(route_ids, repository)
    return ConstraintRanker(constraints).compare(candidates, now=now)

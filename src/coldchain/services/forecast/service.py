"""Forecast orchestration over repository snapshots."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from ...data.repository import EntityNotFoundError, InMemoryRepository, get_repository
from ...models.domain import ForecastResult
from ...timeutils import utcnow
from .engine import ForecastEngine

logger = logging.getLogger(__name__)


def forecast_route(
    route_id: str,
    *,
    repository: InMemoryRepository | None = None,
    engine: ForecastEngine | None = None,
    now: Optional[datetime] = None,
) -> ForecastResult:
    repository = repository or get_repository()
    engine = engine or ForecastEngine()
    now = now or utcnow()

    route = repository.get_route(route_id)
    telemetry = _telemetry_for(route, repository, engine, now)
    return engine.forecast(route, telemetry=telemetry, now=now)


def early_warnings(
    route_ids: Sequence[str] | None = None,
    *,
    repository: InMemoryRepository | None = None,
    engine: ForecastEngine | None = None,
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    """Early warnings for the given routes, or for every in-progress route when none are named."""

    repository = repository or get_repository()
    engine = engine or ForecastEngine()
    now = now or utcnow()

    if route_ids is None:
        routes = repository.list_routes(status="in_progress")
    else:
        routes = []
        for route_id in route_ids:
            try:
                routes.append(repository.get_route(route_id))
            except EntityNotFoundError as exc:
                logger.warning("Skipping early-warning check: %s", exc)
    telemetry = {
        route.vehicle.id: _telemetry_for(route, repository, engine, now) for route in routes if route.vehicle
    }
    return engine.early_warnings(routes, telemetry_by_vehicle=telemetry, now=now)


def _telemetry_for(route, repository: InMemoryRepository, engine: ForecastEngine, now: datetime):
    if route.vehicle is None:
        return []
    window = timedelta(hours=max(engine.environment_window_hours, 24.0))
    return repository.get_recent_telemetry(route.vehicle.id, window, now=now)

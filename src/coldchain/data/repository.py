"""Snapshot repository interfaces and the in-memory store used by the service.

Durable storage is owned by an external system; the core only needs the read
and write-back operations declared by the protocols below.
"""

from __future__ import annotations

import functools
import logging
import threading
from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol, Sequence, Union

from ..models.domain import (
    AuditEntry,
    RiskAssessment,
    Route,
    Site,
    SubjectRef,
    TelemetrySample,
    Vehicle,
    Waypoint,
)
from ..timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


class EntityNotFoundError(LookupError):
    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} '{entity_id}' not found.")
        self.kind = kind
        self.entity_id = entity_id


class TelemetrySource(Protocol):
    def get_recent_telemetry(
        self, vehicle_id: str, window: timedelta, *, now: Optional[datetime] = None
    ) -> Sequence[TelemetrySample]: ...


class RouteSource(Protocol):
    def get_route(self, route_id: str) -> Route: ...

    def get_vehicle_completed_routes(self, vehicle_id: str, since: datetime) -> Sequence[Route]: ...


class RiskSink(Protocol):
    def persist_risk_assessment(self, entity: Union[Vehicle, Route], assessment: RiskAssessment) -> None: ...


class InMemoryRepository:
    """Thread-safe snapshot store for vehicles, sites, routes, telemetry and audit entries."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._vehicles: dict[str, Vehicle] = {}
        self._sites: dict[str, Site] = {}
        self._routes: dict[str, Route] = {}
        self._telemetry: dict[str, list[TelemetrySample]] = {}
        self._audit: list[AuditEntry] = []

    # Vehicles and sites -------------------------------------------------

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        with self._lock:
            self._vehicles[vehicle.id] = vehicle
            self._refresh_site_risk(vehicle.site_id)
        return vehicle

    def get_vehicle(self, vehicle_id: str) -> Vehicle:
        with self._lock:
            vehicle = self._vehicles.get(vehicle_id)
        if vehicle is None:
            raise EntityNotFoundError("Vehicle", vehicle_id)
        return vehicle

    def list_vehicles(self) -> list[Vehicle]:
        with self._lock:
            return list(self._vehicles.values())

    def add_site(self, site: Site) -> Site:
        with self._lock:
            self._sites[site.id] = site
            self._refresh_site_risk(site.id)
        return site

    def get_site(self, site_id: str) -> Site:
        with self._lock:
            site = self._sites.get(site_id)
        if site is None:
            raise EntityNotFoundError("Site", site_id)
        return site

    def _refresh_site_risk(self, site_id: Optional[str]) -> None:
        if site_id is None or site_id not in self._sites:
            return
        scores = [vehicle.risk_score or 0 for vehicle in self._vehicles.values() if vehicle.site_id == site_id]
        self._sites[site_id].risk_score = float(max(scores, default=0))

    # Telemetry ------------------------------------------------------------

    def add_telemetry(self, samples: Iterable[TelemetrySample]) -> int:
        count = 0
        with self._lock:
            for sample in samples:
                self._telemetry.setdefault(sample.vehicle_id, []).append(sample)
                count += 1
        return count

    def get_recent_telemetry(
        self, vehicle_id: str, window: timedelta, *, now: Optional[datetime] = None
    ) -> list[TelemetrySample]:
        cutoff = as_utc(now or utcnow()) - window
        with self._lock:
            samples = list(self._telemetry.get(vehicle_id, ()))
        recent = [sample for sample in samples if as_utc(sample.recorded_at) > cutoff]
        return sorted(recent, key=lambda sample: as_utc(sample.recorded_at))

    def get_latest_telemetry(self, vehicle_id: str) -> Optional[TelemetrySample]:
        with self._lock:
            samples = list(self._telemetry.get(vehicle_id, ()))
        return max(samples, key=lambda sample: as_utc(sample.recorded_at), default=None)

    def get_telemetry_since(self, vehicle_id: str, since: Optional[datetime]) -> list[TelemetrySample]:
        with self._lock:
            samples = list(self._telemetry.get(vehicle_id, ()))
        if since is not None:
            samples = [sample for sample in samples if as_utc(sample.recorded_at) >= as_utc(since)]
        return sorted(samples, key=lambda sample: as_utc(sample.recorded_at))

    # Routes -----------------------------------------------------------------

    def add_route(self, route: Route) -> Route:
        with self._lock:
            for waypoint in route.waypoints:
                stored = self._sites.get(waypoint.site.id)
                if stored is None:
                    self._sites[waypoint.site.id] = waypoint.site
                else:
                    waypoint.site = stored
            self._routes[route.id] = route
        return route

    def get_route(self, route_id: str) -> Route:
        with self._lock:
            route = self._routes.get(route_id)
        if route is None:
            raise EntityNotFoundError("Route", route_id)
        return route

    def list_routes(self, status: Optional[str] = None) -> list[Route]:
        with self._lock:
            routes = list(self._routes.values())
        if status is not None:
            routes = [route for route in routes if route.status == status]
        return routes

    def get_vehicle_completed_routes(self, vehicle_id: str, since: datetime) -> list[Route]:
        return [
            route
            for route in self.list_routes(status="completed")
            if route.vehicle is not None
            and route.vehicle.id == vehicle_id
            and (route.completed_at is None or as_utc(route.completed_at) > as_utc(since))
        ]

    def save_sequence(
        self,
        route_id: str,
        waypoints: Sequence[Waypoint],
        *,
        distance: Optional[float],
        estimated_duration: Optional[float],
    ) -> Route:
        with self._lock:
            route = self.get_route(route_id)
            route.waypoints = list(waypoints)
            route.distance = distance
            route.estimated_duration = estimated_duration
        return route

    def start_route(self, route_id: str, *, now: Optional[datetime] = None) -> Route:
        with self._lock:
            route = self.get_route(route_id)
            if not route.can_start:
                raise ValueError(f"Route {route_id} must be planned with an assigned vehicle before it can start.")
            route.started_at = as_utc(now or utcnow())
            route.status = "in_progress"
        return route

    def complete_route(self, route_id: str, *, now: Optional[datetime] = None) -> Route:
        with self._lock:
            route = self.get_route(route_id)
            if route.status != "in_progress":
                raise ValueError(f"Route {route_id} is not in progress.")
            route.completed_at = as_utc(now or utcnow())
            route.status = "completed"
        return route

    # Risk write-back --------------------------------------------------------

    def persist_risk_assessment(self, entity: Union[Vehicle, Route], assessment: RiskAssessment) -> None:
        with self._lock:
            entity.risk_score = assessment.score
            entity.risk_level = assessment.level
            if isinstance(entity, Vehicle):
                self._refresh_site_risk(entity.site_id)

    # Audit ------------------------------------------------------------------

    def record_audit(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            self._audit.append(entry)
        return entry

    def audit_for(self, subject: SubjectRef) -> list[AuditEntry]:
        with self._lock:
            entries = [entry for entry in self._audit if entry.subject == subject]
        return sorted(entries, key=lambda entry: as_utc(entry.recorded_at))


@functools.lru_cache(maxsize=1)
def get_repository() -> InMemoryRepository:
    logger.info("Initializing in-memory snapshot repository")
    return InMemoryRepository()

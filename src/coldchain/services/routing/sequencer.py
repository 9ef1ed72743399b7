"""Stop sequencing for a single route.

Two orderings are supported: a nearest-neighbour tour over the route's sites
(initial planning) and a risk-priority reorder of the pending stops
(operations). Both keep completed stops fixed at the front, renumber
positions densely from 1 and recompute distance and duration estimates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from ...config import settings
from ...models.domain import Route, Waypoint
from ...timeutils import utcnow
from ..geospatial import haversine_km, path_length_km

logger = logging.getLogger(__name__)

PRIORITIZE_RISK = 70
MONITOR_RISK = 50


@dataclass(slots=True)
class SequenceResult:
    route_id: str
    waypoints: list[Waypoint]
    distance_km: Optional[float]
    estimated_duration_min: Optional[int]
    changed: bool

    @property
    def site_order(self) -> list[str]:
        return [wp.site.id for wp in self.waypoints]


def _distance(a: Waypoint, b: Waypoint) -> float:
    return haversine_km(a.site.latitude, a.site.longitude, b.site.latitude, b.site.longitude)


def nearest_neighbor_order(waypoints: Sequence[Waypoint], start: Optional[Waypoint] = None) -> list[Waypoint]:
    """Greedy tour visiting every waypoint once.

    The tour begins at ``start`` when given (it is not part of the output),
    otherwise at the first waypoint. Ties are broken by waypoint id so repeated
    runs produce the same order.
    """

    remaining = list(waypoints)
    if not remaining:
        return []
    ordered: list[Waypoint] = []
    current = start
    if current is None:
        current = remaining.pop(0)
        ordered.append(current)
    while remaining:
        anchor = current
        nearest = min(remaining, key=lambda wp: (_distance(anchor, wp), wp.id))
        remaining.remove(nearest)
        ordered.append(nearest)
        current = nearest
    return ordered


class RouteSequencer:
    def __init__(
        self,
        *,
        average_speed_kmh: float | None = None,
        stop_dwell_hours: float | None = None,
        eta_minutes_per_stop: int | None = None,
    ) -> None:
        self.average_speed_kmh = average_speed_kmh if average_speed_kmh is not None else settings.average_speed_kmh
        self.stop_dwell_hours = stop_dwell_hours if stop_dwell_hours is not None else settings.stop_dwell_hours
        self.eta_minutes_per_stop = (
            eta_minutes_per_stop if eta_minutes_per_stop is not None else settings.eta_minutes_per_stop
        )

    def estimate(self, waypoints: Sequence[Waypoint]) -> tuple[float, int]:
        """Return (distance km, duration minutes) for visiting ``waypoints`` in order."""

        distance = path_length_km([(wp.site.latitude, wp.site.longitude) for wp in waypoints])
        hours = distance / self.average_speed_kmh + len(waypoints) * self.stop_dwell_hours
        return round(distance, 2), round(hours * 60)

    def optimize(self, route: Route) -> SequenceResult:
        current = route.ordered_waypoints
        if len(current) <= 2:
            return SequenceResult(
                route_id=route.id,
                waypoints=current,
                distance_km=route.distance,
                estimated_duration_min=route.estimated_duration,
                changed=False,
            )

        fixed = [wp for wp in current if wp.is_completed]
        movable = [wp for wp in current if not wp.is_completed]
        tour = nearest_neighbor_order(movable, start=fixed[-1] if fixed else None)
        result = self._finalize(route, current, fixed + tour)
        logger.info(
            "Optimized route %s: %s stops, %.2f km, %s min",
            route.id,
            len(result.waypoints),
            result.distance_km,
            result.estimated_duration_min,
        )
        return result

    def reorder_by_risk(self, route: Route) -> SequenceResult:
        current = route.ordered_waypoints
        completed = [wp for wp in current if wp.is_completed]
        in_service = [wp for wp in current if not wp.is_completed and not wp.is_pending]
        pending = sorted(
            (wp for wp in current if wp.is_pending),
            key=lambda wp: (-wp.site_risk_level, wp.position),
        )
        result = self._finalize(route, current, completed + in_service + pending)
        logger.info("Reordered route %s by risk; %s pending stops", route.id, len(pending))
        return result

    def suggest_reroute(self, route: Route) -> list[dict[str, Any]]:
        suggestions: list[dict[str, Any]] = []
        for wp in route.pending_waypoints:
            risk = wp.site_risk_level
            if risk > PRIORITIZE_RISK:
                suggestions.append(
                    {
                        "waypoint_id": wp.id,
                        "site_name": wp.site.name,
                        "risk_score": risk,
                        "priority": "high",
                        "action": "prioritize",
                        "recommendation": f"HIGH PRIORITY - Consider visiting {wp.site.name} immediately "
                        "due to high risk score",
                    }
                )
            elif risk > MONITOR_RISK:
                suggestions.append(
                    {
                        "waypoint_id": wp.id,
                        "site_name": wp.site.name,
                        "risk_score": risk,
                        "priority": "medium",
                        "action": "monitor",
                        "recommendation": f"MEDIUM PRIORITY - {wp.site.name} has elevated risk",
                    }
                )
        return sorted(suggestions, key=lambda item: -item["risk_score"])

    def estimate_eta(self, route: Route, waypoint: Waypoint, *, now: Optional[datetime] = None) -> Optional[datetime]:
        if not route.in_progress:
            return None
        remaining = waypoint.position - route.completed_stops
        return (now or utcnow()) + timedelta(minutes=self.eta_minutes_per_stop * remaining)

    def _finalize(self, route: Route, before: Sequence[Waypoint], order: Sequence[Waypoint]) -> SequenceResult:
        renumbered = [replace(wp, position=index) for index, wp in enumerate(order, start=1)]
        distance, duration = self.estimate(renumbered)
        changed = [wp.id for wp in before] != [wp.id for wp in order]
        return SequenceResult(
            route_id=route.id,
            waypoints=renumbered,
            distance_km=distance,
            estimated_duration_min=duration,
            changed=changed,
        )

from datetime import datetime, timedelta, timezone

from coldchain.models.domain import Route, Site, TelemetrySample, Vehicle, Waypoint
from coldchain.services.risk.route import RouteRiskScorer

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _site(sid: str, risk: float = 0.0, lat: float = 24.7, lon: float = 46.7) -> Site:
    return Site(id=sid, name=f"Site {sid}", latitude=lat, longitude=lon, risk_score=risk)


def _route(
    *,
    vehicle_risk: int = 0,
    status: str = "in_progress",
    started_hours_ago: float | None = 1.0,
    max_transit_hours: float | None = None,
    site_risks=(0, 0, 0, 0),
    completed: int = 0,
) -> Route:
    vehicle = Vehicle(id="V1", name="Reefer 1", min_temp=2.0, max_temp=8.0, risk_score=vehicle_risk)
    waypoints = [
        Waypoint(
            id=f"W{index}",
            route_id="R1",
            site=_site(f"S{index}", risk),
            position=index,
            status="completed" if index <= completed else "pending",
        )
        for index, risk in enumerate(site_risks, start=1)
    ]
    return Route(
        id="R1",
        name="Morning run",
        status=status,
        vehicle=vehicle,
        waypoints=waypoints,
        started_at=NOW - timedelta(hours=started_hours_ago) if started_hours_ago is not None else None,
        max_transit_hours=max_transit_hours,
    )


def _reading(temp: float, minutes_ago: int) -> TelemetrySample:
    return TelemetrySample(vehicle_id="V1", recorded_at=NOW - timedelta(minutes=minutes_ago), temperature_c=temp)


def test_overdue_route_with_risky_vehicle_is_high():
    route = _route(vehicle_risk=90, started_hours_ago=9, max_transit_hours=8)

    result = RouteRiskScorer().assess(route, telemetry=[], completed_routes=[], now=NOW)

    assert result.score > 60
    assert result.level in {"high", "critical"}
    assert result.factors["elapsed_transit"] == 55
    assert result.factors["environmental"] == 50
    types = [item["type"] for item in result.recommendations]
    assert "vehicle_risk" in types
    assert "elapsed_transit" in types


def test_quiet_route_scores_low():
    route = _route(site_risks=(0, 0), completed=1)
    telemetry = [_reading(5.0, 30), _reading(5.1, 20), _reading(5.0, 10)]

    result = RouteRiskScorer().assess(route, telemetry=telemetry, completed_routes=[], now=NOW)

    assert result.level == "low"
    assert result.factors["elapsed_transit"] == 0
    assert result.factors["pending_stops"] == 15


def test_high_risk_pending_sites_raise_pending_factor():
    route = _route(site_risks=(75, 65, 0))

    result = RouteRiskScorer().assess(route, now=NOW)

    assert result.factors["pending_stops"] == 70


def test_out_of_range_latest_reading_drives_environment():
    route = _route()
    telemetry = [_reading(5.0, 30), _reading(5.0, 20), _reading(12.0, 5)]

    result = RouteRiskScorer().assess(route, telemetry=telemetry, now=NOW)

    assert result.factors["environmental"] >= 60


def test_historical_excursions_count_recent_completed_routes():
    route = _route()
    history = []
    for index, notes in enumerate(["Temperature excursion at stop 2", None]):
        past = _route(status="completed", started_hours_ago=None, site_risks=(0,))
        past.id = f"H{index}"
        past.completed_at = NOW - timedelta(days=3)
        past.waypoints[0].notes = notes
        history.append(past)

    result = RouteRiskScorer().assess(route, completed_routes=history, now=NOW)

    assert result.factors["historical"] == 50


def test_planned_high_risk_route_suggests_delayed_start():
    route = _route(vehicle_risk=100, status="planned", started_hours_ago=None, site_risks=(90, 90, 90, 90))
    telemetry = [_reading(20.0, 340), _reading(2.0, 320), _reading(20.0, 300)]
    past = _route(status="completed", started_hours_ago=None, site_risks=(0,))
    past.id = "H1"
    past.completed_at = NOW - timedelta(days=1)
    past.waypoints[0].notes = "Excursion reported on arrival"

    result = RouteRiskScorer().assess(route, telemetry=telemetry, completed_routes=[past], now=NOW)

    assert result.score > 70
    assert result.recommendations[0]["priority"] == 1
    assert "delay_start" in [item["type"] for item in result.recommendations]


def test_suggest_action_includes_priority_stops():
    route = _route(vehicle_risk=90, started_hours_ago=9, max_transit_hours=8, site_risks=(80, 55, 10, 0))

    suggestion = RouteRiskScorer().suggest_action(route, now=NOW)

    assert suggestion["route_id"] == "R1"
    assert suggestion["action"]["type"] in {"EXPEDITE", "IMMEDIATE_ACTION"}
    stops = suggestion["priority_stops"]
    assert [stop["waypoint_id"] for stop in stops] == ["W1", "W2"]
    assert stops[0]["priority"] == "critical"
    assert stops[1]["priority"] == "elevated"


def test_route_without_vehicle_has_no_vehicle_factors():
    route = _route()
    route.vehicle = None

    result = RouteRiskScorer().assess(route, now=NOW)

    assert result.factors["vehicle_risk"] == 0
    assert result.factors["environmental"] == 0
    assert result.factors["historical"] == 0

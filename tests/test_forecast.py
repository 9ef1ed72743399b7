from datetime import datetime, timedelta, timezone

import pytest

from coldchain.data.repository import InMemoryRepository
from coldchain.models.domain import Route, Site, TelemetrySample, Vehicle, Waypoint
from coldchain.services.forecast import service as forecast_service
from coldchain.services.forecast.engine import ForecastEngine

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _route(rid: str, *, vehicle_id: str, vehicle_risk: int | None, status: str = "in_progress", started_hours_ago=20) -> Route:
    vehicle = Vehicle(id=vehicle_id, name=f"Reefer {vehicle_id}", min_temp=2.0, max_temp=8.0, risk_score=vehicle_risk)
    waypoints = [
        Waypoint(id=f"{rid}-W{i}", route_id=rid, site=Site(f"S{i}", f"Site {i}", 24.7 + i / 100, 46.7), position=i)
        for i in range(1, 5)
    ]
    return Route(
        id=rid,
        name=f"Route {rid}",
        status=status,
        vehicle=vehicle,
        waypoints=waypoints,
        started_at=NOW - timedelta(hours=started_hours_ago) if started_hours_ago is not None else None,
        max_transit_hours=24,
    )


def _readings(vehicle_id: str, temps) -> list[TelemetrySample]:
    return [
        TelemetrySample(vehicle_id=vehicle_id, recorded_at=NOW - timedelta(minutes=10 * (len(temps) - i)), temperature_c=t)
        for i, t in enumerate(temps)
    ]


def test_hot_route_forecasts_critical_excursion():
    route = _route("R1", vehicle_id="V1", vehicle_risk=100)

    result = ForecastEngine().forecast(route, telemetry=_readings("V1", [5.0, 15.0, 20.0]), now=NOW)

    assert result.excursion_probability == pytest.approx(0.95)
    assert result.early_warning is True
    assert result.risk_band == "high"
    assert result.risk_band_label == "High"
    assert result.recommendations[0]["type"] == "excursion_imminent"
    assert set(result.factors) == {
        "current_temp_deviation",
        "temp_variance_factor",
        "vehicle_risk_factor",
        "route_progress_factor",
        "time_in_transit_factor",
        "delay_factor",
        "remaining_stops_factor",
        "route_risk_factor",
    }


def test_calm_planned_route_is_low_band():
    route = _route("R2", vehicle_id="V2", vehicle_risk=0, status="planned", started_hours_ago=None)

    result = ForecastEngine().forecast(route, telemetry=_readings("V2", [5.0, 5.0, 5.0]), now=NOW)

    assert result.excursion_probability == pytest.approx(0.10)
    assert result.ontime_probability == pytest.approx(0.5)
    assert result.early_warning is False
    assert result.risk_band == "low"


def test_probabilities_are_bounded_and_rounded():
    route = _route("R3", vehicle_id="V3", vehicle_risk=100, started_hours_ago=200)
    route.risk_score = 100
    route.estimated_duration = 30

    result = ForecastEngine().forecast(route, telemetry=_readings("V3", [-80.0, 90.0, -80.0, 90.0]), now=NOW)

    assert 0.0 <= result.excursion_probability <= 1.0
    assert 0.0 <= result.ontime_probability <= 1.0
    assert round(result.excursion_probability, 2) == result.excursion_probability
    assert result.early_warning == (result.excursion_probability >= 0.6)


def test_unknown_signals_fall_back_to_defaults():
    route = _route("R4", vehicle_id="V4", vehicle_risk=None)

    factors = ForecastEngine().compute_factors(route, telemetry=[], now=NOW)

    assert factors["current_temp_deviation"] == pytest.approx(0.3)
    assert factors["vehicle_risk_factor"] == pytest.approx(0.3)
    assert factors["temp_variance_factor"] == 0.0


def test_early_warnings_only_returns_routes_over_threshold():
    hot = _route("R1", vehicle_id="V1", vehicle_risk=100)
    calm = _route("R2", vehicle_id="V2", vehicle_risk=0, started_hours_ago=1)
    telemetry = {"V1": _readings("V1", [5.0, 15.0, 20.0]), "V2": _readings("V2", [5.0, 5.0, 5.0])}

    warnings = ForecastEngine().early_warnings([hot, calm], telemetry_by_vehicle=telemetry, now=NOW)

    assert [item["route_id"] for item in warnings] == ["R1"]
    assert warnings[0]["warning_level"] == "critical"
    assert warnings[0]["vehicle_name"] == "Reefer V1"


def test_forecast_service_reads_repository_snapshot():
    repository = InMemoryRepository()
    route = _route("R1", vehicle_id="V1", vehicle_risk=100)
    repository.add_vehicle(route.vehicle)
    repository.add_route(route)
    repository.add_telemetry(_readings("V1", [5.0, 15.0, 20.0]))

    result = forecast_service.forecast_route("R1", repository=repository, now=NOW)
    warnings = forecast_service.early_warnings(["R1", "missing"], repository=repository, now=NOW)

    assert result.early_warning is True
    assert [item["route_id"] for item in warnings] == ["R1"]

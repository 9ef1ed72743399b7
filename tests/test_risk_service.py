from datetime import datetime, timedelta, timezone

import pytest

from coldchain.config import Settings
from coldchain.data.repository import EntityNotFoundError, InMemoryRepository
from coldchain.models.domain import Route, Site, TelemetrySample, Vehicle, Waypoint
from coldchain.services import batch
from coldchain.services.risk import service as risk_service

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _vehicle(vid: str, site_id: str | None = None) -> Vehicle:
    return Vehicle(id=vid, name=f"Reefer {vid}", min_temp=2.0, max_temp=8.0, site_id=site_id)


def _sample(vid: str, temp: float, minutes_ago: int = 5, source: str = "telemetry") -> TelemetrySample:
    return TelemetrySample(
        vehicle_id=vid, recorded_at=NOW - timedelta(minutes=minutes_ago), temperature_c=temp, source=source
    )


def _repository() -> InMemoryRepository:
    repository = InMemoryRepository()
    repository.add_site(Site(id="DC1", name="Riyadh DC", latitude=24.7, longitude=46.7))
    repository.add_vehicle(_vehicle("V1", site_id="DC1"))
    repository.add_vehicle(_vehicle("V2", site_id="DC1"))
    return repository


def test_score_vehicle_persists_and_updates_site_risk():
    repository = _repository()
    repository.add_telemetry([_sample("V1", 15.0, minutes) for minutes in (25, 20, 15, 10, 5)])

    assessment = risk_service.score_vehicle("V1", repository=repository, now=NOW)

    assert assessment.level == "high"
    assert repository.get_vehicle("V1").risk_score == assessment.score
    assert repository.get_site("DC1").risk_score == assessment.score


def test_ingest_in_range_telemetry_does_not_rescore():
    repository = _repository()

    result = risk_service.ingest_telemetry("V1", [_sample("V1", 5.0)], repository=repository, now=NOW)

    assert result["processed"] == 1
    assert result["assessment"] is None


def test_ingest_excursion_or_monitoring_triggers_rescore():
    repository = _repository()

    excursion = risk_service.ingest_telemetry("V1", [_sample("V1", 14.0)], repository=repository, now=NOW)
    monitoring = risk_service.ingest_telemetry(
        "V2", [_sample("V2", 5.0, source="monitoring")], repository=repository, now=NOW
    )

    assert excursion["assessment"] is not None
    assert excursion["assessment"].score > 0
    assert monitoring["assessment"] is not None


def test_ingest_drops_samples_for_other_vehicles():
    repository = _repository()

    result = risk_service.ingest_telemetry("V1", [_sample("V1", 5.0), _sample("V2", 5.0)], repository=repository)

    assert result["processed"] == 1


def test_recompute_all_vehicles_isolates_failures(monkeypatch):
    repository = _repository()
    original = risk_service.score_vehicle

    def flaky(vehicle_id, **kwargs):
        if vehicle_id == "V2":
            raise RuntimeError("sensor feed unavailable")
        return original(vehicle_id, **kwargs)

    monkeypatch.setattr(risk_service, "score_vehicle", flaky)

    result = risk_service.recompute_all_vehicles(repository=repository, now=NOW, max_workers=2)

    assert result.processed == 1
    assert len(result.errors) == 1
    assert "V2" in result.errors[0]
    assert set(result.results) == {"V1"}


def test_run_parallel_with_no_keys():
    result = batch.run_parallel([], lambda key: key, label="noop")

    assert result.processed == 0
    assert result.errors == []


def test_score_route_writes_back_assessment():
    repository = _repository()
    vehicle = repository.get_vehicle("V1")
    vehicle.risk_score = 90
    site = Site(id="S1", name="Pharmacy", latitude=24.8, longitude=46.6)
    repository.add_route(
        Route(
            id="R1",
            name="Overnight",
            status="in_progress",
            vehicle=vehicle,
            waypoints=[Waypoint(id=f"W{i}", route_id="R1", site=site, position=i) for i in range(1, 5)],
            started_at=NOW - timedelta(hours=9),
            max_transit_hours=8,
        )
    )

    result = risk_service.score_route("R1", repository=repository, now=NOW)
    suggestion = risk_service.suggest_route_action("R1", repository=repository, now=NOW)

    assert result.level == "high"
    assert repository.get_route("R1").risk_level == "high"
    assert suggestion["action"]["type"] == "EXPEDITE"


def test_route_environment_uses_last_reading_beyond_lookback():
    repository = _repository()
    site = Site(id="S1", name="Pharmacy", latitude=24.8, longitude=46.6)
    repository.add_route(
        Route(
            id="R1",
            name="Stale feed",
            status="in_progress",
            vehicle=repository.get_vehicle("V1"),
            waypoints=[Waypoint(id="W1", route_id="R1", site=site, position=1)],
            started_at=NOW - timedelta(hours=1),
        )
    )
    repository.add_telemetry([_sample("V1", 5.0, minutes_ago=30 * 60)])

    result = risk_service.score_route("R1", repository=repository, now=NOW)

    assert result.factors["environmental"] == 30


def test_unknown_entities_raise_not_found():
    repository = _repository()

    with pytest.raises(EntityNotFoundError):
        risk_service.score_vehicle("nope", repository=repository)
    with pytest.raises(EntityNotFoundError):
        risk_service.score_route("nope", repository=repository)


def test_start_route_requires_planned_route_with_vehicle():
    repository = _repository()
    repository.add_route(Route(id="R1", name="Unassigned", status="planned"))

    with pytest.raises(ValueError):
        repository.start_route("R1", now=NOW)

    repository.get_route("R1").vehicle = repository.get_vehicle("V1")
    started = repository.start_route("R1", now=NOW)
    assert started.status == "in_progress"
    assert started.started_at == NOW


def test_settings_parse_origins_from_env(monkeypatch):
    monkeypatch.setenv("COLDCHAIN_FRONTEND_ALLOWED_ORIGINS", '["https://ops.example.com", "https://fleet.example.com"]')
    monkeypatch.setenv("COLDCHAIN_LOG_LEVEL", "debug")

    configured = Settings()

    assert configured.frontend_allowed_origins == ("https://ops.example.com", "https://fleet.example.com")
    assert configured.log_level == "DEBUG"

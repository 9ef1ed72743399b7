from datetime import datetime, timedelta, timezone

import pytest

from coldchain.models.domain import TelemetrySample, Vehicle
from coldchain.services.risk.levels import RiskBands
from coldchain.services.risk.vehicle import VehicleRiskScorer

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _vehicle(min_temp=2.0, max_temp=8.0) -> Vehicle:
    return Vehicle(id="V1", name="Reefer 1", min_temp=min_temp, max_temp=max_temp)


def _samples(temps, *, minutes_apart: int = 5, end: datetime = NOW) -> list[TelemetrySample]:
    count = len(temps)
    return [
        TelemetrySample(
            vehicle_id="V1",
            recorded_at=end - timedelta(minutes=minutes_apart * (count - 1 - index)),
            temperature_c=temp,
        )
        for index, temp in enumerate(temps)
    ]


def test_empty_window_scores_zero_low():
    result = VehicleRiskScorer().score(_vehicle(), [], now=NOW)

    assert result.score == 0
    assert result.level == "low"


def test_stable_in_range_readings_score_low():
    result = VehicleRiskScorer().score(_vehicle(), _samples([5.0, 5.2, 4.9]), now=NOW)

    assert result.score == 0
    assert result.level == "low"


def test_sustained_excursion_scores_high():
    result = VehicleRiskScorer().score(_vehicle(), _samples([15.0] * 5), now=NOW)

    assert result.score > 60
    assert result.level == "high"


def test_factors_for_sustained_excursion():
    factors = VehicleRiskScorer().compute_factors(_vehicle(), _samples([15.0] * 5), now=NOW)

    assert factors["excursion"] == 100
    assert factors["severity"] == 70
    assert factors["variance"] == 0
    assert factors["trend"] == 100
    assert factors["freshness"] == 0


def test_samples_outside_lookback_are_ignored():
    old = _samples([15.0] * 5, end=NOW - timedelta(hours=30))

    result = VehicleRiskScorer().score(_vehicle(), old, now=NOW)

    assert result.score == 0


def test_severity_zero_without_limits():
    factors = VehicleRiskScorer().compute_factors(_vehicle(None, None), _samples([40.0, 41.0, 42.0]), now=NOW)

    assert factors["excursion"] == 0
    assert factors["severity"] == 0
    assert factors["trend"] == 0


def test_trend_ignores_drift_back_towards_midpoint():
    # Cooling from 7.5 back towards the 5 degree midpoint.
    factors = VehicleRiskScorer().compute_factors(_vehicle(), _samples([7.5, 7.0, 6.5, 6.0]), now=NOW)

    assert factors["trend"] == 0


def test_trend_scores_warming_away_from_midpoint():
    factors = VehicleRiskScorer().compute_factors(_vehicle(), _samples([5.5, 6.0, 7.0, 7.5]), now=NOW)

    assert factors["trend"] > 0


def test_trend_for_rising_excursion_uses_half_means_drift():
    factors = VehicleRiskScorer().compute_factors(_vehicle(), _samples([9.0, 10.0, 11.0, 12.0]), now=NOW)

    assert factors["trend"] == 40


@pytest.mark.parametrize(
    ("age_hours", "expected"),
    [(0.5, 0), (2, 25), (6, 50), (18, 75), (23.5, 75)],
)
def test_freshness_steps(age_hours, expected):
    samples = _samples([5.0], end=NOW - timedelta(hours=age_hours))

    factors = VehicleRiskScorer().compute_factors(_vehicle(), samples, now=NOW)

    assert factors["freshness"] == expected


def test_score_stays_within_bounds_for_extreme_readings():
    samples = _samples([-90.0, 95.0, -90.0, 95.0, -90.0, 95.0])

    result = VehicleRiskScorer().score(_vehicle(), samples, now=NOW)

    assert 0 <= result.score <= 100
    assert result.level in {"high", "critical"}


def test_custom_bands_change_level_only():
    samples = _samples([15.0] * 5)
    default = VehicleRiskScorer().score(_vehicle(), samples, now=NOW)
    strict = VehicleRiskScorer(bands=RiskBands(low=10, medium=20, high=30)).score(_vehicle(), samples, now=NOW)

    assert strict.score == default.score
    assert strict.level == "critical"


def test_sample_requires_location_or_sensor():
    with pytest.raises(ValueError):
        TelemetrySample(vehicle_id="V1", recorded_at=NOW)

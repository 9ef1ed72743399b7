"""Telemetry ingest and vehicle risk schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.domain import TelemetrySample


class TelemetrySampleIn(BaseModel):
    recorded_at: datetime
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    temperature_c: Optional[float] = Field(None, ge=-100, le=100)
    humidity: Optional[float] = Field(None, ge=0, le=100)
    speed_kph: Optional[float] = Field(None, ge=0, le=500)
    source: Literal["telemetry", "monitoring"] = "telemetry"

    @model_validator(mode="after")
    def _require_location_or_sensor(self) -> "TelemetrySampleIn":
        has_location = self.latitude is not None and self.longitude is not None
        has_sensor = any(value is not None for value in (self.temperature_c, self.humidity, self.speed_kph))
        if not (has_location or has_sensor):
            raise ValueError("Sample must have a location (lat/lon) or at least one sensor reading.")
        return self

    def to_domain(self, vehicle_id: str) -> TelemetrySample:
        return TelemetrySample(vehicle_id=vehicle_id, **self.model_dump())


class TelemetryBatchIn(BaseModel):
    samples: List[TelemetrySampleIn] = Field(..., min_length=1)


class RiskAssessmentModel(BaseModel):
    score: int = Field(..., ge=0, le=100)
    level: Literal["low", "medium", "high", "critical"]


class VehicleRiskResponse(BaseModel):
    vehicle_id: str
    risk: RiskAssessmentModel


class TelemetryIngestResponse(BaseModel):
    vehicle_id: str
    processed: int
    assessment: Optional[RiskAssessmentModel] = None


class BatchResponse(BaseModel):
    processed: int
    errors: List[str]

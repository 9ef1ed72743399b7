"""Vehicle risk and telemetry endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...schemas.telemetry import (
    BatchResponse,
    RiskAssessmentModel,
    TelemetryBatchIn,
    TelemetryIngestResponse,
    VehicleRiskResponse,
)
from ...services.risk.service import ingest_telemetry, recompute_all_vehicles, score_vehicle
from ..errors import service_errors

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


@router.post("/risk/recompute", response_model=BatchResponse, status_code=status.HTTP_200_OK)
def recompute_all() -> BatchResponse:
    with service_errors("recompute vehicle risk"):
        result = recompute_all_vehicles()
    return BatchResponse(processed=result.processed, errors=result.errors)


@router.post("/{vehicle_id}/risk", response_model=VehicleRiskResponse, status_code=status.HTTP_200_OK)
def score(vehicle_id: str) -> VehicleRiskResponse:
    with service_errors("score vehicle"):
        assessment = score_vehicle(vehicle_id)
    return VehicleRiskResponse(
        vehicle_id=vehicle_id,
        risk=RiskAssessmentModel(score=assessment.score, level=assessment.level),
    )


@router.post("/{vehicle_id}/telemetry", response_model=TelemetryIngestResponse, status_code=status.HTTP_200_OK)
def ingest(vehicle_id: str, payload: TelemetryBatchIn) -> TelemetryIngestResponse:
    """Store telemetry; the vehicle is re-scored when a sample warrants it."""
    with service_errors("ingest telemetry"):
        result = ingest_telemetry(vehicle_id, [sample.to_domain(vehicle_id) for sample in payload.samples])
    assessment = result["assessment"]
    return TelemetryIngestResponse(
        vehicle_id=vehicle_id,
        processed=result["processed"],
        assessment=RiskAssessmentModel(score=assessment.score, level=assessment.level) if assessment else None,
    )

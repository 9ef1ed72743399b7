"""Route risk, forecast, sequencing and ranking endpoints."""

from __future__ import annotations

from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Query, status

from ...data.repository import get_repository
from ...schemas.routing import CompareRequest, RankedCandidateModel, RankingRequest, RankingResponse, SequenceResponse
from ...services.forecast.service import early_warnings, forecast_route
from ...services.risk.service import score_route, suggest_route_action
from ...services.routing.service import (
    compare_routes,
    estimate_etas,
    optimize_sequence,
    rank_routes,
    reorder_by_risk,
    suggest_reroute,
)
from ..errors import service_errors

router = APIRouter(prefix="/routes", tags=["routes"])


@router.get("/early-warnings", status_code=status.HTTP_200_OK)
def get_early_warnings(
    route_ids: Optional[List[str]] = Query(default=None, description="Restrict the check to these routes"),
) -> list:
    with service_errors("compute early warnings"):
        warnings = early_warnings(route_ids)
    return [{**warning, "forecast": asdict(warning["forecast"])} for warning in warnings]


@router.post("/recommend", response_model=RankingResponse, status_code=status.HTTP_200_OK)
def recommend(payload: RankingRequest) -> RankingResponse:
    with service_errors("rank routes"):
        result = rank_routes(payload.route_ids, payload.constraints.to_domain())
    return RankingResponse(
        recommended=RankedCandidateModel.from_domain(result.recommended) if result.recommended else None,
        alternatives=[RankedCandidateModel.from_domain(item) for item in result.alternatives],
        ineligible=[RankedCandidateModel.from_domain(item) for item in result.ineligible],
        optimization_mode=result.optimization_mode,
        constraints=result.constraints,
    )


@router.post("/compare", response_model=List[RankedCandidateModel], status_code=status.HTTP_200_OK)
def compare(payload: CompareRequest) -> List[RankedCandidateModel]:
    with service_errors("compare routes"):
        ranked = compare_routes(payload.route_ids, payload.constraints.to_domain())
    return [RankedCandidateModel.from_domain(item) for item in ranked]


@router.post("/{route_id}/risk", status_code=status.HTTP_200_OK)
def route_risk(route_id: str) -> dict:
    with service_errors("score route"):
        result = score_route(route_id)
    return {
        "route_id": route_id,
        "risk_score": result.score,
        "risk_level": result.level,
        "factors": result.factors,
        "recommendations": result.recommendations,
    }


@router.get("/{route_id}/suggestions", status_code=status.HTTP_200_OK)
def route_suggestions(route_id: str) -> dict:
    with service_errors("suggest route action"):
        return suggest_route_action(route_id)


@router.get("/{route_id}/forecast", status_code=status.HTTP_200_OK)
def route_forecast(route_id: str) -> dict:
    with service_errors("forecast route"):
        return asdict(forecast_route(route_id))


@router.post("/{route_id}/optimize", response_model=SequenceResponse, status_code=status.HTTP_200_OK)
def optimize(route_id: str) -> SequenceResponse:
    with service_errors("optimize route"):
        return SequenceResponse.from_domain(optimize_sequence(route_id))


@router.post("/{route_id}/reorder", response_model=SequenceResponse, status_code=status.HTTP_200_OK)
def reorder(route_id: str) -> SequenceResponse:
    with service_errors("reorder route"):
        return SequenceResponse.from_domain(reorder_by_risk(route_id))


@router.get("/{route_id}/reroute", status_code=status.HTTP_200_OK)
def reroute(route_id: str) -> dict:
    with service_errors("suggest reroute"):
        return suggest_reroute(route_id)


@router.get("/{route_id}/eta", status_code=status.HTTP_200_OK)
def eta(route_id: str) -> dict:
    with service_errors("estimate arrival times"):
        return {"route_id": route_id, "stops": estimate_etas(route_id)}


@router.post("/{route_id}/start", status_code=status.HTTP_200_OK)
def start(route_id: str) -> dict:
    with service_errors("start route"):
        route = get_repository().start_route(route_id)
    return {"route_id": route.id, "status": route.status, "started_at": route.started_at}


@router.post("/{route_id}/complete", status_code=status.HTTP_200_OK)
def complete(route_id: str) -> dict:
    with service_errors("complete route"):
        route = get_repository().complete_route(route_id)
    return {"route_id": route.id, "status": route.status, "completed_at": route.completed_at}

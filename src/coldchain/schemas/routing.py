"""Route sequencing and ranking schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..services.routing.ranker import RankedCandidate, RankingConstraints
from ..services.routing.sequencer import SequenceResult


class RankingConstraintsIn(BaseModel):
    max_risk: Optional[float] = Field(None, ge=0, le=100)
    max_hours: Optional[float] = Field(None, gt=0)
    max_cost: Optional[float] = Field(None, gt=0)
    prefer_carrier: Optional[str] = None
    time_window_start: Optional[datetime] = None
    time_window_end: Optional[datetime] = None
    optimize_for: Literal["balanced", "risk", "time", "cost"] = "balanced"

    @model_validator(mode="after")
    def _window_order(self) -> "RankingConstraintsIn":
        if self.time_window_start and self.time_window_end and self.time_window_end <= self.time_window_start:
            raise ValueError("time_window_end must be after time_window_start")
        return self

    def to_domain(self) -> RankingConstraints:
        return RankingConstraints(**self.model_dump())


class RankingRequest(BaseModel):
    route_ids: Optional[List[str]] = Field(
        default=None,
        description="Candidate routes. When omitted every planned route is considered.",
    )
    constraints: RankingConstraintsIn = Field(default_factory=RankingConstraintsIn)


class CompareRequest(BaseModel):
    route_ids: List[str] = Field(..., min_length=1)
    constraints: RankingConstraintsIn = Field(default_factory=RankingConstraintsIn)


class CandidateScoresModel(BaseModel):
    overall: float
    risk: float
    time: float
    cost: float
    priority: float


class RankedCandidateModel(BaseModel):
    route_id: str
    route_name: str
    carrier: Optional[str] = None
    eligible: bool
    scores: CandidateScoresModel
    reasons: List[str]
    tradeoffs: List[Dict[str, str]]

    @classmethod
    def from_domain(cls, candidate: RankedCandidate) -> "RankedCandidateModel":
        scores = candidate.scores
        return cls(
            route_id=candidate.route.id,
            route_name=candidate.route.name,
            carrier=candidate.route.carrier,
            eligible=candidate.eligible,
            scores=CandidateScoresModel(
                overall=scores.overall,
                risk=scores.risk,
                time=scores.time,
                cost=scores.cost,
                priority=scores.priority,
            ),
            reasons=list(candidate.reasons),
            tradeoffs=list(candidate.tradeoffs),
        )


class RankingResponse(BaseModel):
    recommended: Optional[RankedCandidateModel] = None
    alternatives: List[RankedCandidateModel]
    ineligible: List[RankedCandidateModel]
    optimization_mode: str
    constraints: dict


class WaypointModel(BaseModel):
    id: str
    site_id: str
    site_name: str
    position: int
    status: Optional[str] = None


class SequenceResponse(BaseModel):
    route_id: str
    changed: bool
    distance_km: Optional[float] = None
    estimated_duration_min: Optional[float] = None
    waypoints: List[WaypointModel]

    @classmethod
    def from_domain(cls, result: SequenceResult) -> "SequenceResponse":
        return cls(
            route_id=result.route_id,
            changed=result.changed,
            distance_km=result.distance_km,
            estimated_duration_min=result.estimated_duration_min,
            waypoints=[
                WaypointModel(
                    id=wp.id,
                    site_id=wp.site.id,
                    site_name=wp.site.name,
                    position=wp.position,
                    status=wp.status,
                )
                for wp in result.waypoints
            ],
        )

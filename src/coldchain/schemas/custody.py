"""Custody ledger request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.domain import EVENT_TYPES, CustodyEvent


class CustodyEventIn(BaseModel):
    event_type: str
    recorded_at: Optional[datetime] = None
    route_id: Optional[str] = None
    waypoint_id: Optional[str] = None
    description: Optional[str] = None
    recorded_by: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    temperature_c: Optional[float] = Field(None, ge=-100, le=100)
    signature_required: bool = False
    signature_captured: bool = False

    @field_validator("event_type")
    @classmethod
    def _known_event_type(cls, value: str) -> str:
        if value not in EVENT_TYPES:
            raise ValueError(f"event_type must be one of: {', '.join(EVENT_TYPES)}")
        return value

    def append_kwargs(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"event_type"})


class CustodyBatchIn(BaseModel):
    events: List[CustodyEventIn] = Field(..., min_length=1)


class CustodyEventModel(BaseModel):
    id: str
    vehicle_id: str
    event_type: str
    recorded_at: datetime
    sequence: int
    previous_hash: Optional[str] = None
    event_hash: str
    route_id: Optional[str] = None
    waypoint_id: Optional[str] = None
    description: Optional[str] = None
    recorded_by: Optional[str] = None
    signature_required: bool = False
    signature_captured: bool = False
    deviation_reported: bool = False
    deviation_justification: Optional[str] = None

    @classmethod
    def from_domain(cls, event: CustodyEvent) -> "CustodyEventModel":
        return cls(
            id=event.id,
            vehicle_id=event.vehicle_id,
            event_type=event.event_type,
            recorded_at=event.recorded_at,
            sequence=event.sequence,
            previous_hash=event.previous_hash,
            event_hash=event.compute_hash(),
            route_id=event.route_id,
            waypoint_id=event.waypoint_id,
            description=event.description,
            recorded_by=event.recorded_by,
            signature_required=event.signature_required,
            signature_captured=event.signature_captured,
            deviation_reported=event.deviation_reported,
            deviation_justification=event.deviation_justification,
        )


class TamperCheckModel(BaseModel):
    event_id: str
    intact: bool
    previous_event_id: Optional[str] = None
    reason: str


class DeviationReportIn(BaseModel):
    description: str = Field(..., min_length=1)
    reporter: str = Field(..., min_length=1)
    justification: Optional[str] = None

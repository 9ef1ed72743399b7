"""Custody ledger endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Query, status

from ...schemas.custody import CustodyBatchIn, CustodyEventIn, CustodyEventModel, TamperCheckModel
from ...schemas.telemetry import BatchResponse
from ...services.custody.service import append_event, get_ledger, process_events_batch, tamper_check, verify_chain
from ..errors import service_errors

router = APIRouter(prefix="/custody", tags=["custody"])


@router.post(
    "/vehicles/{vehicle_id}/events",
    response_model=CustodyEventModel,
    status_code=status.HTTP_201_CREATED,
)
def append(vehicle_id: str, payload: CustodyEventIn) -> CustodyEventModel:
    with service_errors("append custody event"):
        event = append_event(vehicle_id, payload.event_type, **payload.append_kwargs())
    return CustodyEventModel.from_domain(event)


@router.post("/vehicles/{vehicle_id}/events/batch", response_model=BatchResponse, status_code=status.HTTP_200_OK)
def append_batch(vehicle_id: str, payload: CustodyBatchIn) -> BatchResponse:
    with service_errors("append custody events"):
        result = process_events_batch(
            vehicle_id,
            [{"event_type": item.event_type, **item.append_kwargs()} for item in payload.events],
        )
    return BatchResponse(processed=result.processed, errors=result.errors)


@router.get("/vehicles/{vehicle_id}/events", response_model=List[CustodyEventModel], status_code=status.HTTP_200_OK)
def list_events(vehicle_id: str) -> List[CustodyEventModel]:
    return [CustodyEventModel.from_domain(event) for event in get_ledger().events(vehicle_id)]


@router.get("/vehicles/{vehicle_id}/verify", status_code=status.HTTP_200_OK)
def verify(vehicle_id: str) -> dict:
    with service_errors("verify custody chain"):
        return verify_chain(vehicle_id).as_dict()


@router.get(
    "/vehicles/{vehicle_id}/events/{event_id}/tamper-check",
    response_model=TamperCheckModel,
    status_code=status.HTTP_200_OK,
)
def check_event(vehicle_id: str, event_id: str) -> TamperCheckModel:
    with service_errors("check custody event"):
        result = tamper_check(vehicle_id, event_id)
    return TamperCheckModel(
        event_id=result.event_id,
        intact=result.intact,
        previous_event_id=result.previous_event_id,
        reason=result.reason,
    )


@router.get(
    "/vehicles/{vehicle_id}/chain-of-custody",
    response_model=List[CustodyEventModel],
    status_code=status.HTTP_200_OK,
)
def chain_of_custody(
    vehicle_id: str,
    route_id: Optional[str] = Query(default=None, description="Only events recorded for this route"),
) -> List[CustodyEventModel]:
    events = get_ledger().chain_of_custody(vehicle_id, route_id)
    return [CustodyEventModel.from_domain(event) for event in events]

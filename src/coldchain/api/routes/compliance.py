"""Compliance verification, reporting and audit trail endpoints."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Query, status
from fastapi.responses import PlainTextResponse

from ...models.domain import SubjectRef
from ...schemas.custody import DeviationReportIn
from ...services.compliance.service import (
    create_deviation_report,
    export_audit_trail,
    generate_compliance_report,
    verify_chain_of_custody,
    verify_shipment_compliance,
)
from ..errors import service_errors

router = APIRouter(prefix="/compliance", tags=["compliance"])


@router.post("/routes/{route_id}/verify", status_code=status.HTTP_200_OK)
def verify_route(route_id: str) -> dict:
    with service_errors("verify shipment compliance"):
        return verify_shipment_compliance(route_id)


@router.get("/routes/{route_id}/report", status_code=status.HTTP_200_OK)
def route_report(route_id: str) -> dict:
    with service_errors("generate compliance report"):
        return generate_compliance_report(route_id)


@router.post("/vehicles/{vehicle_id}/verify-chain", status_code=status.HTTP_200_OK)
def verify_vehicle_chain(
    vehicle_id: str,
    route_id: Optional[str] = Query(default=None, description="Report the event window of this route"),
) -> dict:
    with service_errors("verify chain of custody"):
        return verify_chain_of_custody(vehicle_id, route_id)


@router.post(
    "/vehicles/{vehicle_id}/events/{event_id}/deviation",
    status_code=status.HTTP_201_CREATED,
)
def report_deviation(vehicle_id: str, event_id: str, payload: DeviationReportIn) -> dict:
    with service_errors("create deviation report"):
        return create_deviation_report(
            vehicle_id,
            event_id,
            description=payload.description,
            reporter=payload.reporter,
            justification=payload.justification,
        )


@router.get("/audit-trail/{kind}/{subject_id}", status_code=status.HTTP_200_OK)
def audit_trail(
    kind: Literal["vehicle", "route", "shipment_event"],
    subject_id: str,
    fmt: Literal["json", "csv"] = Query(default="json", alias="format"),
):
    with service_errors("export audit trail"):
        content = export_audit_trail(SubjectRef(kind, subject_id), fmt)
    if fmt == "csv":
        return PlainTextResponse(content, media_type="text/csv")
    return content

"""Shipment compliance checks, chain-of-custody reports and audit trail exports."""

from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Literal, Optional

from ...data.repository import EntityNotFoundError, InMemoryRepository, get_repository
from ...models.domain import AuditEntry, CustodyEvent, Route, SubjectRef
from ...persistence.filesystem import FileStorage
from ...timeutils import as_utc, hours_between, utcnow
from ..custody.ledger import CustodyLedger
from ..custody.service import get_ledger

logger = logging.getLogger(__name__)

ExportFormat = Literal["json", "csv"]

# Telemetry considered when a route has not started yet.
UNSTARTED_LOOKBACK = timedelta(days=7)
MAX_LISTED_EXCURSIONS = 10

DEVIATION_REQUIREMENTS = (
    {"id": "DEV-001", "description": "Root cause analysis", "required": True},
    {"id": "DEV-002", "description": "Corrective action plan", "required": True},
)


def _record(
    repository: InMemoryRepository,
    action: str,
    subject: SubjectRef,
    *,
    now: datetime,
    actor: str = "system",
    changes: Optional[dict[str, Any]] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> AuditEntry:
    entry = AuditEntry(
        id=uuid.uuid4().hex,
        action=action,
        subject=subject,
        recorded_at=now,
        actor=actor,
        changes=changes or {},
        metadata=metadata or {},
    )
    return repository.record_audit(entry)


def _route_events(route: Route, ledger: CustodyLedger) -> list[CustodyEvent]:
    """Events tagged with the route, falling back to the vehicle's whole chain."""

    if route.vehicle is None:
        return []
    events = ledger.events(route.vehicle.id)
    tagged = [event for event in events if event.route_id == route.id]
    return tagged or events


def serialize_event(event: CustodyEvent) -> dict[str, Any]:
    location = None
    if event.latitude is not None and event.longitude is not None:
        location = {"lat": event.latitude, "lng": event.longitude}
    return {
        "id": event.id,
        "sequence": event.sequence,
        "event_type": event.event_type,
        "description": event.description,
        "recorded_at": event.recorded_at,
        "recorded_by": event.recorded_by,
        "location": location,
        "temperature": event.temperature_c,
        "event_hash": event.compute_hash(),
        "previous_hash": event.previous_hash,
        "signature_required": event.signature_required,
        "signature_captured": event.signature_captured,
        "deviation_reported": event.deviation_reported,
    }


def serialize_audit_entry(entry: AuditEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "action": entry.action,
        "actor": entry.actor,
        "recorded_at": as_utc(entry.recorded_at).isoformat(),
        "changes": entry.changes,
        "metadata": entry.metadata,
    }


# Chain of custody ------------------------------------------------------------


def verify_chain_of_custody(
    vehicle_id: str,
    route_id: Optional[str] = None,
    *,
    repository: InMemoryRepository | None = None,
    ledger: CustodyLedger | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Verify the vehicle's hash chain and record the outcome in the audit log.

    Integrity is always checked over the vehicle's full chain; ``route_id``
    only narrows the first/last event window that is reported.
    """

    repository = repository or get_repository()
    ledger = ledger or get_ledger()
    now = now or utcnow()

    events = ledger.events(vehicle_id)
    if not events:
        return {
            "valid": True,
            "events_verified": 0,
            "first_event": None,
            "last_event": None,
            "broken_at": None,
            "message": "No events to verify",
        }

    verification = ledger.verify_chain(vehicle_id)
    scoped = [event for event in events if route_id is None or event.route_id == route_id] or events
    _record(
        repository,
        "chain_verified" if verification.valid else "chain_break",
        SubjectRef("vehicle", vehicle_id),
        now=now,
        metadata={
            "route_id": route_id,
            "events_count": len(events),
            "broken_at": verification.broken_at,
            "event_id": verification.event_id,
        },
    )
    return {
        "valid": verification.valid,
        "events_verified": verification.events_verified,
        "first_event": scoped[0].recorded_at,
        "last_event": scoped[-1].recorded_at,
        "broken_at": verification.event_id,
        "message": "Chain of custody verified" if verification.valid else "Chain integrity compromised",
    }


# Shipment checks --------------------------------------------------------------


def _check_temperature(route: Route, repository: InMemoryRepository, now: datetime) -> dict[str, Any]:
    vehicle = route.vehicle
    if vehicle is None:
        return {"check": "temperature", "passed": True, "message": "No vehicle assigned"}

    since = route.started_at or now - UNSTARTED_LOOKBACK
    excursions = [
        {"timestamp": sample.recorded_at, "temperature": sample.temperature_c, "source": sample.source}
        for sample in repository.get_telemetry_since(vehicle.id, since)
        if vehicle.out_of_range(sample.temperature_c)
    ]
    return {
        "check": "temperature",
        "passed": not excursions,
        "excursion_count": len(excursions),
        "excursions": excursions[:MAX_LISTED_EXCURSIONS],
        "message": "All readings within range" if not excursions else f"{len(excursions)} excursion(s) detected",
    }


def _check_chain(
    route: Route, repository: InMemoryRepository, ledger: CustodyLedger, now: datetime
) -> dict[str, Any]:
    if route.vehicle is None:
        return {"check": "chain_of_custody", "passed": True, "events_count": 0, "message": "No vehicle assigned"}
    verification = verify_chain_of_custody(
        route.vehicle.id, route.id, repository=repository, ledger=ledger, now=now
    )
    return {
        "check": "chain_of_custody",
        "passed": verification["valid"],
        "events_count": verification["events_verified"],
        "message": verification["message"],
    }


def _check_signatures(route: Route, ledger: CustodyLedger) -> dict[str, Any]:
    required = [event for event in _route_events(route, ledger) if event.signature_required]
    missing = [event for event in required if not event.signature_captured]
    return {
        "check": "signatures",
        "passed": not missing,
        "required_count": len(required),
        "captured_count": len(required) - len(missing),
        "missing_count": len(missing),
        "message": "All required signatures captured" if not missing else f"{len(missing)} signature(s) missing",
    }


def _check_time_window(route: Route) -> dict[str, Any]:
    if not route.max_transit_hours:
        return {"check": "time_window", "passed": True, "message": "No time constraints"}
    if route.started_at is None or route.completed_at is None:
        return {"check": "time_window", "passed": True, "message": "Route not yet completed"}

    actual = hours_between(route.started_at, route.completed_at)
    passed = actual <= route.max_transit_hours
    return {
        "check": "time_window",
        "passed": passed,
        "max_hours": route.max_transit_hours,
        "actual_hours": round(actual, 1),
        "message": (
            "Delivered within time window"
            if passed
            else f"Exceeded by {round(actual - route.max_transit_hours, 1)} hours"
        ),
    }


def verify_shipment_compliance(
    route_id: str,
    *,
    repository: InMemoryRepository | None = None,
    ledger: CustodyLedger | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    repository = repository or get_repository()
    ledger = ledger or get_ledger()
    now = now or utcnow()
    route = repository.get_route(route_id)

    findings = [
        _check_temperature(route, repository, now),
        _check_chain(route, repository, ledger, now),
        _check_signatures(route, ledger),
        _check_time_window(route),
    ]
    passed = all(finding["passed"] for finding in findings)

    _record(
        repository,
        "compliance_check" if passed else "compliance_violation",
        SubjectRef("route", route.id),
        now=now,
        metadata={
            "passed": passed,
            "failed_checks": [finding["check"] for finding in findings if not finding["passed"]],
        },
    )
    if not passed:
        logger.warning("Route %s failed compliance checks", route.id)

    return {
        "route_id": route.id,
        "route_name": route.name,
        "compliance_status": "compliant" if passed else "non_compliant",
        "checked_at": now,
        "findings": findings,
        "overall_passed": passed,
    }


# Reports and exports ------------------------------------------------------------


def generate_compliance_report(
    route_id: str,
    *,
    repository: InMemoryRepository | None = None,
    ledger: CustodyLedger | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    repository = repository or get_repository()
    ledger = ledger or get_ledger()
    now = now or utcnow()
    route = repository.get_route(route_id)
    vehicle = route.vehicle
    events = _route_events(route, ledger)

    temperature_log: list[dict[str, Any]] = []
    if vehicle is not None:
        since = route.started_at or now - UNSTARTED_LOOKBACK
        temperature_log = [
            {
                "timestamp": sample.recorded_at,
                "temperature": sample.temperature_c,
                "humidity": sample.humidity,
                "source": sample.source,
                "in_range": not vehicle.out_of_range(sample.temperature_c),
            }
            for sample in repository.get_telemetry_since(vehicle.id, since)
        ]

    verification = verify_shipment_compliance(route_id, repository=repository, ledger=ledger, now=now)
    return {
        "report_id": uuid.uuid4().hex,
        "generated_at": now,
        "route": {
            "id": route.id,
            "name": route.name,
            "status": route.status,
            "started_at": route.started_at,
            "completed_at": route.completed_at,
        },
        "vehicle": (
            {"id": vehicle.id, "name": vehicle.name, "temp_range": f"{vehicle.min_temp}°C - {vehicle.max_temp}°C"}
            if vehicle
            else None
        ),
        "temperature_log": temperature_log,
        "chain_of_custody": [serialize_event(event) for event in events],
        "deviations": [
            {
                "event_id": event.id,
                "event_type": event.event_type,
                "recorded_at": event.recorded_at,
                "justification": event.deviation_justification,
            }
            for event in events
            if event.deviation_reported
        ],
        "compliance_verification": verification,
        "audit_trail": [serialize_audit_entry(entry) for entry in repository.audit_for(SubjectRef("route", route.id))],
    }


def export_audit_trail(
    subject: SubjectRef,
    fmt: ExportFormat = "json",
    *,
    repository: InMemoryRepository | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any] | str:
    """Audit entries for ``subject`` as a JSON-ready dict or a CSV document."""

    repository = repository or get_repository()
    entries = repository.audit_for(subject)

    if fmt == "json":
        return {
            "exported_at": as_utc(now or utcnow()).isoformat(),
            "record_type": subject.kind,
            "record_id": subject.id,
            "audit_entries": [serialize_audit_entry(entry) for entry in entries],
        }
    if fmt == "csv":
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["ID", "Action", "Actor", "Recorded At", "Changes"])
        for entry in entries:
            writer.writerow(
                [entry.id, entry.action, entry.actor, as_utc(entry.recorded_at).isoformat(), json.dumps(entry.changes)]
            )
        return buffer.getvalue()
    raise ValueError(f"Unsupported export format: {fmt}")


def save_audit_trail(
    subject: SubjectRef,
    fmt: ExportFormat = "json",
    *,
    storage: FileStorage | None = None,
    repository: InMemoryRepository | None = None,
    now: Optional[datetime] = None,
) -> Path:
    storage = storage or FileStorage()
    content = export_audit_trail(subject, fmt, repository=repository, now=now)
    path = storage.export_path(f"audit_{subject.kind}_{subject.id}", fmt)
    if fmt == "csv":
        storage.write_csv(path, content)
    else:
        storage.write_json(path, content)
    logger.info("Exported audit trail for %s %s to %s", subject.kind, subject.id, path)
    return path


def create_deviation_report(
    vehicle_id: str,
    event_id: str,
    *,
    description: str,
    reporter: str,
    justification: Optional[str] = None,
    repository: InMemoryRepository | None = None,
    ledger: CustodyLedger | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    repository = repository or get_repository()
    ledger = ledger or get_ledger()
    now = now or utcnow()

    try:
        event = ledger.flag_deviation(vehicle_id, event_id, justification)
    except LookupError as exc:
        raise EntityNotFoundError("Custody event", event_id) from exc

    record = {
        "id": uuid.uuid4().hex,
        "record_type": "deviation_report",
        "reference": {"kind": "shipment_event", "id": event.id},
        "status": "pending",
        "requirements": [dict(item) for item in DEVIATION_REQUIREMENTS],
        "evidence": [
            {
                "type": "initial_report",
                "description": description,
                "reporter": reporter,
                "reported_at": as_utc(now).isoformat(),
            }
        ],
        "notes": f"Deviation reported for event {event.id}: {description}",
    }
    _record(
        repository,
        "deviation_reported",
        SubjectRef("shipment_event", event.id),
        now=now,
        actor=reporter,
        metadata={"deviation_record_id": record["id"], "description": description},
    )
    logger.warning("Deviation reported for event %s by %s", event.id, reporter)
    return record

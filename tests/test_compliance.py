import csv
import io
import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from coldchain.data.repository import EntityNotFoundError, InMemoryRepository
from coldchain.models.domain import Route, Site, SubjectRef, TelemetrySample, Vehicle, Waypoint
from coldchain.persistence.filesystem import FileStorage
from coldchain.services.compliance import service as compliance
from coldchain.services.custody.ledger import CustodyLedger

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
START = NOW - timedelta(hours=6)


def _setup(*, temps=(4.0, 5.0, 6.0), completed_after_hours: float = 5.0, signed: bool = True):
    repository = InMemoryRepository()
    ledger = CustodyLedger()
    vehicle = repository.add_vehicle(Vehicle(id="V1", name="Reefer 1", min_temp=2.0, max_temp=8.0))
    site = Site(id="S1", name="Clinic", latitude=24.7, longitude=46.7)
    route = Route(
        id="R1",
        name="Vaccine run",
        status="in_progress",
        vehicle=vehicle,
        waypoints=[Waypoint(id="W1", route_id="R1", site=site, position=1)],
        started_at=START,
        max_transit_hours=8,
    )
    repository.add_route(route)
    repository.add_telemetry(
        TelemetrySample(vehicle_id="V1", recorded_at=START + timedelta(hours=i + 1), temperature_c=temp)
        for i, temp in enumerate(temps)
    )
    repository.complete_route("R1", now=START + timedelta(hours=completed_after_hours))

    ledger.append("V1", "route_started", event_id="E1", recorded_at=START, route_id="R1")
    ledger.append("V1", "stop_arrival", event_id="E2", recorded_at=START + timedelta(hours=2), route_id="R1")
    ledger.append(
        "V1",
        "delivery_confirmed",
        event_id="E3",
        recorded_at=START + timedelta(hours=3),
        route_id="R1",
        signature_required=True,
        signature_captured=signed,
    )
    return repository, ledger


def _findings(result):
    return {finding["check"]: finding for finding in result["findings"]}


def test_clean_shipment_is_compliant_and_audited():
    repository, ledger = _setup()

    result = compliance.verify_shipment_compliance("R1", repository=repository, ledger=ledger, now=NOW)

    assert result["compliance_status"] == "compliant"
    assert set(_findings(result)) == {"temperature", "chain_of_custody", "signatures", "time_window"}
    actions = [entry.action for entry in repository.audit_for(SubjectRef("route", "R1"))]
    assert actions == ["compliance_check"]


def test_excursions_missing_signatures_and_late_delivery_fail():
    repository, ledger = _setup(temps=(4.0, 12.0, 1.0), completed_after_hours=9.5, signed=False)

    result = compliance.verify_shipment_compliance("R1", repository=repository, ledger=ledger, now=NOW)
    findings = _findings(result)

    assert result["overall_passed"] is False
    assert findings["temperature"]["excursion_count"] == 2
    assert findings["signatures"]["missing_count"] == 1
    assert findings["time_window"]["message"] == "Exceeded by 1.5 hours"
    assert findings["chain_of_custody"]["passed"] is True
    actions = [entry.action for entry in repository.audit_for(SubjectRef("route", "R1"))]
    assert actions == ["compliance_violation"]


def test_chain_verification_records_break():
    repository, ledger = _setup()
    events = ledger.events("V1")
    tampered = CustodyLedger.from_events([events[0], replace(events[1], previous_hash="0" * 64), events[2]])

    result = compliance.verify_chain_of_custody("V1", "R1", repository=repository, ledger=tampered, now=NOW)

    assert result["valid"] is False
    assert result["broken_at"] == "E2"
    assert result["message"] == "Chain integrity compromised"
    actions = [entry.action for entry in repository.audit_for(SubjectRef("vehicle", "V1"))]
    assert actions == ["chain_break"]


def test_chain_verification_without_events():
    repository = InMemoryRepository()

    result = compliance.verify_chain_of_custody("V9", repository=repository, ledger=CustodyLedger(), now=NOW)

    assert result["valid"] is True
    assert result["message"] == "No events to verify"


def test_compliance_report_bundles_logs():
    repository, ledger = _setup()
    ledger.flag_deviation("V1", "E2", "Arrived during power outage")

    report = compliance.generate_compliance_report("R1", repository=repository, ledger=ledger, now=NOW)

    assert report["vehicle"]["temp_range"] == "2.0°C - 8.0°C"
    assert len(report["temperature_log"]) == 3
    assert all(entry["in_range"] for entry in report["temperature_log"])
    assert [event["id"] for event in report["chain_of_custody"]] == ["E1", "E2", "E3"]
    assert report["deviations"][0]["event_id"] == "E2"
    assert report["compliance_verification"]["overall_passed"] is True
    assert [entry["action"] for entry in report["audit_trail"]] == ["compliance_check"]


def test_export_audit_trail_json_and_csv():
    repository, ledger = _setup()
    compliance.verify_shipment_compliance("R1", repository=repository, ledger=ledger, now=NOW)
    subject = SubjectRef("route", "R1")

    as_json = compliance.export_audit_trail(subject, "json", repository=repository, now=NOW)
    as_csv = compliance.export_audit_trail(subject, "csv", repository=repository, now=NOW)

    assert as_json["record_type"] == "route"
    assert as_json["audit_entries"][0]["action"] == "compliance_check"
    rows = list(csv.reader(io.StringIO(as_csv)))
    assert rows[0] == ["ID", "Action", "Actor", "Recorded At", "Changes"]
    assert rows[1][1] == "compliance_check"


def test_export_rejects_unknown_format():
    with pytest.raises(ValueError):
        compliance.export_audit_trail(SubjectRef("route", "R1"), "xml", repository=InMemoryRepository())


def test_save_audit_trail_writes_file(tmp_path: Path):
    repository, ledger = _setup()
    compliance.verify_shipment_compliance("R1", repository=repository, ledger=ledger, now=NOW)

    storage = FileStorage(root=tmp_path)
    path = compliance.save_audit_trail(SubjectRef("route", "R1"), "json", storage=storage, repository=repository, now=NOW)

    assert path.parent == storage.export_root
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["record_id"] == "R1"


def test_deviation_report_flags_event_and_audits():
    repository, ledger = _setup()

    record = compliance.create_deviation_report(
        "V1",
        "E2",
        description="Reefer alarm during unloading",
        reporter="j.doe",
        justification="Unit restarted within 5 minutes",
        repository=repository,
        ledger=ledger,
        now=NOW,
    )

    assert record["status"] == "pending"
    assert ledger.get("V1", "E2").deviation_reported is True
    entries = repository.audit_for(SubjectRef("shipment_event", "E2"))
    assert [(entry.action, entry.actor) for entry in entries] == [("deviation_reported", "j.doe")]


def test_deviation_report_unknown_event():
    with pytest.raises(EntityNotFoundError):
        compliance.create_deviation_report(
            "V1",
            "missing",
            description="n/a",
            reporter="ops",
            repository=InMemoryRepository(),
            ledger=CustodyLedger(),
        )

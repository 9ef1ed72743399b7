"""Append-only, hash-linked custody event ledger.

Events are stored per vehicle in insertion order and carry a per-vehicle
sequence number. Each new event records the hash of the vehicle's most
recently appended event, so any later edit to a stored ``previous_hash``
breaks verification from that point on.

Appends for one vehicle are serialized by that vehicle's lock; appends for
different vehicles never contend. Readers copy the chain under the same lock
and therefore always verify a consistent prefix.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from ...models.domain import CUSTODY_EVENT_TYPES, CustodyEvent
from ...timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChainVerification:
    valid: bool
    events_verified: int
    broken_at: Optional[int] = None
    event_id: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None

    @property
    def events(self) -> int:
        return self.events_verified

    def as_dict(self) -> dict[str, Any]:
        if self.valid:
            return {"valid": True, "events": self.events_verified}
        return {
            "valid": False,
            "events": self.events_verified,
            "broken_at": self.broken_at,
            "event_id": self.event_id,
            "expected": self.expected,
            "actual": self.actual,
        }


@dataclass(slots=True)
class TamperCheck:
    event_id: str
    intact: bool
    previous_event_id: Optional[str]
    reason: str


def chain_order(events: Iterable[CustodyEvent]) -> list[CustodyEvent]:
    return sorted(events, key=lambda event: (as_utc(event.recorded_at), event.sequence))


def verify_chain(events: Sequence[CustodyEvent]) -> ChainVerification:
    """Walk ``events`` in (timestamp, sequence) order and report the first broken link."""

    ordered = chain_order(events)
    expected: Optional[str] = None
    for index, event in enumerate(ordered):
        if event.previous_hash != expected:
            return ChainVerification(
                valid=False,
                events_verified=index,
                broken_at=index,
                event_id=event.id,
                expected=expected,
                actual=event.previous_hash,
            )
        expected = event.compute_hash()
    return ChainVerification(valid=True, events_verified=len(ordered))


def tamper_check(event: CustodyEvent, history: Sequence[CustodyEvent]) -> TamperCheck:
    """Check one event against the event that immediately precedes it in ``history``."""

    ordered = [item for item in chain_order(history) if item.vehicle_id == event.vehicle_id]
    key = (as_utc(event.recorded_at), event.sequence)
    earlier = [item for item in ordered if (as_utc(item.recorded_at), item.sequence) < key and item.id != event.id]
    previous = earlier[-1] if earlier else None

    if previous is None:
        if event.previous_hash is None:
            return TamperCheck(event.id, True, None, "First event in chain")
        return TamperCheck(event.id, False, None, "Event references a predecessor that does not exist")
    if event.previous_hash != previous.compute_hash():
        return TamperCheck(event.id, False, previous.id, "Previous hash does not match preceding event")
    return TamperCheck(event.id, True, previous.id, "Linked to preceding event")


class CustodyLedger:
    """Per-vehicle arena of custody events indexed by sequence number."""

    def __init__(self) -> None:
        self._chains: dict[str, list[CustodyEvent]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_events(cls, events: Iterable[CustodyEvent]) -> "CustodyLedger":
        """Load a previously persisted history, keeping each vehicle's insertion order."""

        ledger = cls()
        grouped: dict[str, list[CustodyEvent]] = {}
        for event in events:
            grouped.setdefault(event.vehicle_id, []).append(event)
        for vehicle_id, chain in grouped.items():
            ledger._chains[vehicle_id] = sorted(chain, key=lambda event: event.sequence)
        return ledger

    def _lock_for(self, vehicle_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(vehicle_id)
            if lock is None:
                lock = self._locks[vehicle_id] = threading.Lock()
            return lock

    def vehicle_ids(self) -> list[str]:
        with self._registry_lock:
            return list(self._chains)

    def append(
        self,
        vehicle_id: str,
        event_type: str,
        *,
        recorded_at: Optional[datetime] = None,
        event_id: Optional[str] = None,
        **attributes: Any,
    ) -> CustodyEvent:
        """Append an event linked to the vehicle's latest event.

        Reading the latest event, hashing it and storing the new event happen
        inside the vehicle's critical section.
        """

        with self._lock_for(vehicle_id):
            chain = self._chains.setdefault(vehicle_id, [])
            latest = chain[-1] if chain else None
            timestamp = as_utc(recorded_at or utcnow())
            if latest is not None and timestamp < latest.recorded_at:
                raise ValueError(
                    f"recorded_at {timestamp.isoformat()} precedes latest event {latest.id} "
                    f"for vehicle {vehicle_id} ({latest.recorded_at.isoformat()})"
                )
            event = CustodyEvent(
                id=event_id or uuid.uuid4().hex,
                vehicle_id=vehicle_id,
                event_type=event_type,
                recorded_at=timestamp,
                sequence=latest.sequence + 1 if latest else 0,
                previous_hash=latest.compute_hash() if latest else None,
                **attributes,
            )
            chain.append(event)
        logger.info("Appended %s event %s for vehicle %s (seq %s)", event_type, event.id, vehicle_id, event.sequence)
        return event

    def latest(self, vehicle_id: str) -> Optional[CustodyEvent]:
        with self._lock_for(vehicle_id):
            chain = self._chains.get(vehicle_id)
            return chain[-1] if chain else None

    def events(self, vehicle_id: str) -> list[CustodyEvent]:
        """Snapshot of the vehicle's chain in (timestamp, sequence) order."""

        with self._lock_for(vehicle_id):
            snapshot = list(self._chains.get(vehicle_id, ()))
        return chain_order(snapshot)

    def get(self, vehicle_id: str, event_id: str) -> Optional[CustodyEvent]:
        with self._lock_for(vehicle_id):
            for event in self._chains.get(vehicle_id, ()):
                if event.id == event_id:
                    return event
        return None

    def verify_chain(self, vehicle_id: str) -> ChainVerification:
        result = verify_chain(self.events(vehicle_id))
        if result.valid:
            logger.info("Custody chain for vehicle %s verified (%s events)", vehicle_id, result.events_verified)
        else:
            logger.warning(
                "Custody chain for vehicle %s broken at index %s (event %s)",
                vehicle_id,
                result.broken_at,
                result.event_id,
            )
        return result

    def tamper_check(self, event: CustodyEvent) -> TamperCheck:
        result = tamper_check(event, self.events(event.vehicle_id))
        if not result.intact:
            logger.warning("Tamper check failed for event %s: %s", event.id, result.reason)
        return result

    def chain_of_custody(self, vehicle_id: str, route_id: Optional[str] = None) -> list[CustodyEvent]:
        return [
            event
            for event in self.events(vehicle_id)
            if event.event_type in CUSTODY_EVENT_TYPES and (route_id is None or event.route_id == route_id)
        ]

    def flag_deviation(self, vehicle_id: str, event_id: str, justification: Optional[str] = None) -> CustodyEvent:
        """Mark an event as deviation-reported; hashed fields are left untouched."""

        with self._lock_for(vehicle_id):
            chain = self._chains.get(vehicle_id, [])
            for index, event in enumerate(chain):
                if event.id == event_id:
                    updated = replace(event, deviation_reported=True, deviation_justification=justification)
                    chain[index] = updated
                    return updated
        raise LookupError(f"Custody event '{event_id}' not found for vehicle '{vehicle_id}'.")

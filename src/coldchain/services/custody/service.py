"""Custody ledger access for the API and compliance layers."""

from __future__ import annotations

import functools
import logging
from typing import Any, Mapping, Sequence

from ...data.repository import EntityNotFoundError
from ...models.domain import CustodyEvent
from ..batch import BatchResult
from .ledger import ChainVerification, CustodyLedger, TamperCheck

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=1)
def get_ledger() -> CustodyLedger:
    return CustodyLedger()


def append_event(
    vehicle_id: str,
    event_type: str,
    *,
    ledger: CustodyLedger | None = None,
    **attributes: Any,
) -> CustodyEvent:
    ledger = ledger or get_ledger()
    return ledger.append(vehicle_id, event_type, **attributes)


def process_events_batch(
    vehicle_id: str,
    events: Sequence[Mapping[str, Any]],
    *,
    ledger: CustodyLedger | None = None,
) -> BatchResult:
    """Append events one by one; a rejected event is reported without stopping the rest."""

    ledger = ledger or get_ledger()
    result = BatchResult()
    for payload in events:
        data = dict(payload)
        event_type = data.pop("event_type", None)
        try:
            event = ledger.append(vehicle_id, event_type, **data)
        except (TypeError, ValueError) as exc:
            logger.warning("Rejected %s event for vehicle %s: %s", event_type, vehicle_id, exc)
            result.errors.append(f"Event {event_type}: {exc}")
            continue
        result.results[event.id] = event
        result.processed += 1
    return result


def verify_chain(vehicle_id: str, *, ledger: CustodyLedger | None = None) -> ChainVerification:
    ledger = ledger or get_ledger()
    return ledger.verify_chain(vehicle_id)


def tamper_check(vehicle_id: str, event_id: str, *, ledger: CustodyLedger | None = None) -> TamperCheck:
    ledger = ledger or get_ledger()
    event = ledger.get(vehicle_id, event_id)
    if event is None:
        raise EntityNotFoundError("Custody event", event_id)
    return ledger.tamper_check(event)

"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...data.repository import get_repository
from ...services.custody.service import get_ledger

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/store", status_code=status.HTTP_200_OK)
def health_store() -> dict:
    """Snapshot counts for the in-memory store and custody ledger."""
    repository = get_repository()
    ledger = get_ledger()
    return {
        "vehicles": len(repository.list_vehicles()),
        "routes": len(repository.list_routes()),
        "custody_chains": len(ledger.vehicle_ids()),
    }

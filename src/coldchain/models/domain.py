"""Domain models for vehicles, routes, telemetry and custody events."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Literal, Optional

from ..timeutils import as_utc

RiskLevel = Literal["low", "medium", "high", "critical"]
RouteStatus = Literal["draft", "planned", "in_progress", "completed", "cancelled"]
WaypointStatus = Literal["pending", "arrived", "completed", "skipped"]
TemperatureSensitivity = Literal["critical", "high", "standard", "low"]
SampleSource = Literal["telemetry", "monitoring"]
SubjectKind = Literal["vehicle", "route", "shipment_event"]

ROUTE_STATUSES: tuple[str, ...] = ("draft", "planned", "in_progress", "completed", "cancelled")
WAYPOINT_STATUSES: tuple[str, ...] = ("pending", "arrived", "completed", "skipped")
TEMPERATURE_SENSITIVITIES: tuple[str, ...] = ("critical", "high", "standard", "low")

EVENT_TYPES: tuple[str, ...] = (
    "route_started",
    "route_completed",
    "stop_arrival",
    "stop_departure",
    "temperature_reading",
    "temperature_excursion",
    "door_opened",
    "door_closed",
    "geofence_enter",
    "geofence_exit",
    "signature_captured",
    "delivery_confirmed",
    "delivery_refused",
    "incident_reported",
    "manual_check",
)
CUSTODY_EVENT_TYPES = frozenset({"stop_arrival", "stop_departure", "signature_captured", "delivery_confirmed"})

AUDIT_ACTIONS: tuple[str, ...] = (
    "create",
    "update",
    "delete",
    "view",
    "export",
    "login",
    "logout",
    "approve",
    "reject",
    "sign",
    "verify",
    "temperature_excursion",
    "deviation_reported",
    "chain_break",
    "chain_verified",
    "compliance_check",
    "compliance_violation",
)


@dataclass(slots=True, frozen=True)
class TelemetrySample:
    """A single sensor sample reported by a vehicle."""

    vehicle_id: str
    recorded_at: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    temperature_c: Optional[float] = None
    humidity: Optional[float] = None
    speed_kph: Optional[float] = None
    source: SampleSource = "telemetry"

    def __post_init__(self) -> None:
        has_location = self.latitude is not None and self.longitude is not None
        has_sensor = any(value is not None for value in (self.temperature_c, self.humidity, self.speed_kph))
        if not (has_location or has_sensor):
            raise ValueError("Telemetry sample must have a location (lat/lon) or at least one sensor reading.")

    @property
    def coordinates(self) -> Optional[tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


@dataclass(slots=True)
class Vehicle:
    """Refrigerated vehicle with its acceptable temperature band and derived risk."""

    id: str
    name: str = ""
    min_temp: Optional[float] = None
    max_temp: Optional[float] = None
    site_id: Optional[str] = None
    risk_score: Optional[int] = None
    risk_level: RiskLevel = "low"

    def out_of_range(self, temperature: Optional[float]) -> bool:
        if temperature is None:
            return False
        if self.min_temp is None and self.max_temp is None:
            return False
        return (self.min_temp is not None and temperature < self.min_temp) or (
            self.max_temp is not None and temperature > self.max_temp
        )


@dataclass(slots=True)
class Site:
    id: str
    name: str
    latitude: float
    longitude: float
    risk_score: float = 0.0


@dataclass(slots=True)
class Waypoint:
    id: str
    route_id: str
    site: Site
    position: int
    status: Optional[WaypointStatus] = "pending"
    arrival_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None
    notes: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status in (None, "pending")

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def site_risk_level(self) -> float:
        return self.site.risk_score or 0.0


@dataclass(slots=True)
class Route:
    """A planned or running delivery route with its ordered stops."""

    id: str
    name: str = ""
    status: RouteStatus = "draft"
    temperature_sensitivity: TemperatureSensitivity = "standard"
    priority: Optional[int] = 5
    cost_estimate: Optional[float] = None
    max_transit_hours: Optional[float] = None
    time_window_start: Optional[datetime] = None
    time_window_end: Optional[datetime] = None
    vehicle: Optional[Vehicle] = None
    waypoints: List[Waypoint] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    distance: Optional[float] = None
    estimated_duration: Optional[float] = None
    risk_score: Optional[int] = None
    risk_level: Optional[RiskLevel] = None
    carrier: Optional[str] = None

    def __post_init__(self) -> None:
        if self.status not in ROUTE_STATUSES:
            raise ValueError(f"Unknown route status '{self.status}'.")
        if self.status == "in_progress" and self.started_at is None:
            raise ValueError(f"Route {self.id} is in progress but has no start time.")
        if self.priority is not None and not 1 <= self.priority <= 10:
            raise ValueError(f"Route priority must be between 1 and 10, got {self.priority}.")

    @property
    def ordered_waypoints(self) -> list[Waypoint]:
        return sorted(self.waypoints, key=lambda wp: wp.position)

    @property
    def pending_waypoints(self) -> list[Waypoint]:
        return [wp for wp in self.ordered_waypoints if wp.is_pending]

    @property
    def total_stops(self) -> int:
        return len(self.waypoints)

    @property
    def completed_stops(self) -> int:
        return sum(1 for wp in self.waypoints if wp.is_completed)

    @property
    def progress_percentage(self) -> int:
        if not self.total_stops:
            return 0
        return round(self.completed_stops / self.total_stops * 100)

    @property
    def in_progress(self) -> bool:
        return self.status == "in_progress"

    @property
    def can_start(self) -> bool:
        return self.status == "planned" and self.vehicle is not None

    @property
    def had_excursion(self) -> bool:
        return any(wp.notes and "excursion" in wp.notes.lower() for wp in self.waypoints)


@dataclass(slots=True, frozen=True)
class CustodyEvent:
    """Immutable link in a vehicle's custody chain."""

    id: str
    vehicle_id: str
    event_type: str
    recorded_at: datetime
    sequence: int = 0
    previous_hash: Optional[str] = None
    route_id: Optional[str] = None
    waypoint_id: Optional[str] = None
    description: Optional[str] = None
    recorded_by: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    temperature_c: Optional[float] = None
    signature_required: bool = False
    signature_captured: bool = False
    deviation_reported: bool = False
    deviation_justification: Optional[str] = None

    def __post_init__(self) -> None:
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown custody event type '{self.event_type}'.")

    def compute_hash(self) -> str:
        timestamp = int(as_utc(self.recorded_at).timestamp())
        data = f"{self.id}|{self.vehicle_id}|{self.event_type}|{timestamp}|{self.previous_hash or ''}"
        return hashlib.sha256(data.encode("utf-8")).hexdigest()


@dataclass(slots=True, frozen=True)
class SubjectRef:
    """Typed reference to the entity an audit entry or compliance record is about."""

    kind: SubjectKind
    id: str


@dataclass(slots=True)
class AuditEntry:
    id: str
    action: str
    subject: SubjectRef
    recorded_at: datetime
    actor: str = "system"
    changes: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action '{self.action}'.")


@dataclass(slots=True, frozen=True)
class RiskAssessment:
    score: int
    level: RiskLevel


@dataclass(slots=True)
class ForecastResult:
    route_id: str
    excursion_probability: float
    ontime_probability: float
    risk_band: Literal["low", "medium", "high"]
    risk_band_label: str
    factors: dict[str, float]
    early_warning: bool
    recommendations: list[dict[str, Any]]
    generated_at: datetime

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from rescue_ops.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Priority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Provenance(str, Enum):
    """Which path produced a result."""

    LIVE = "live"
    ESTIMATED = "estimated"
    FALLBACK = "fallback"
    UNSTRUCTURED = "unstructured"


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def __post_init__(self) -> None:
        for name, value, bound in (("lat", self.lat, 90.0), ("lng", self.lng, 180.0)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value) or abs(value) > bound:
                raise ValidationError(f"{name} must be within [-{bound:g}, {bound:g}], got {value!r}")

    @classmethod
    def from_mapping(cls, data: Optional[Mapping]) -> "Coordinates":
        if not isinstance(data, Mapping):
            raise ValidationError("location must be an object with lat and lng")
        lat = data.get("lat", data.get("latitude"))
        lng = data.get("lng", data.get("longitude"))
        if lat is None or lng is None:
            raise ValidationError("location requires lat and lng")
        try:
            return cls(float(lat), float(lng))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid coordinates: {exc}") from exc

    def as_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class HelpRequest:
    id: str
    requester_id: str
    location: Coordinates
    type: str = "unknown"
    description: str = ""
    people_affected: int = 1
    injury_level: str = "unknown"
    accessibility: str = "unknown"
    status: RequestStatus = RequestStatus.OPEN
    created_at: datetime = field(default_factory=utcnow)
    assigned_responder_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("request id is required")
        if self.people_affected < 1:
            raise ValidationError("people_affected must be at least 1")
        object.__setattr__(self, "type", (self.type or "unknown").lower())
        object.__setattr__(self, "injury_level", (self.injury_level or "unknown").lower())
        object.__setattr__(self, "accessibility", (self.accessibility or "unknown").lower())


@dataclass(frozen=True)
class Responder:
    id: str
    name: str
    current_location: Optional[Coordinates] = None
    available: bool = True
    max_distance_km: float = 10.0
    total_assignments: int = 0
    completed_assignments: int = 0
    rating: float = 0.0
    device_token: Optional[str] = None
    expertise: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EtaEstimate:
    distance_km: float
    duration_minutes: int
    estimated_arrival: datetime
    provenance: Provenance
    error: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return self.provenance is not Provenance.LIVE


@dataclass(frozen=True)
class Assignment:
    id: str
    request_id: str
    responder_id: str
    victim_location: Coordinates
    eta: Optional[EtaEstimate] = None
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    created_at: datetime = field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    responder_location_known: bool = True
    notes: str = ""
    victim_final_status: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is not AssignmentStatus.COMPLETED


@dataclass(frozen=True)
class PriorityCluster:
    member_request_ids: FrozenSet[str]
    priority: Priority
    urgency_score: int
    centroid: Coordinates
    required_resources: FrozenSet[str]
    estimated_victims_count: int
    recommended_action: str
    combined_description: str = ""


@dataclass(frozen=True)
class AggregationResult:
    clusters: List[PriorityCluster]
    summary: str
    provenance: Provenance


@dataclass(frozen=True)
class ClusterSummary:
    total_people: int
    geographic_spread_km: float
    request_count: int
    hazard_types: List[str]
    available_resources: List[str]


@dataclass(frozen=True)
class Destination:
    id: str
    location: Coordinates
    label: Optional[str] = None


@dataclass(frozen=True)
class RouteLeg:
    origin: Coordinates
    destination: Coordinates
    distance_km: float
    duration_minutes: float


@dataclass(frozen=True)
class RouteResult:
    ordered_stops: Tuple[Coordinates, ...]
    total_distance_km: float
    total_duration_minutes: float
    sequence: Dict[str, int]
    legs: Tuple[RouteLeg, ...] = ()
    used_clustering: bool = False
    cluster_count: int = 0
    provenance: Provenance = Provenance.ESTIMATED
    error: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return self.provenance is not Provenance.LIVE


@dataclass(frozen=True)
class Facility:
    id: str
    name: str
    kind: str
    location: Coordinates
    rating: Optional[float] = None
    open_now: Optional[bool] = None
    distance_km: Optional[float] = None

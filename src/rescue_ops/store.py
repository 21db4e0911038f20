from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from rescue_ops.errors import NotFoundError, PersistenceError, ValidationError
from rescue_ops.models import (
    Assignment,
    AssignmentStatus,
    Coordinates,
    EtaEstimate,
    HelpRequest,
    Provenance,
    RequestStatus,
    Responder,
    utcnow,
)

REQUESTS = "requests"
RESPONDERS = "responders"
ASSIGNMENTS = "assignments"


def split_path(path: str) -> tuple[str, str]:
    parts = [part for part in str(path).split("/") if part]
    if len(parts) != 2:
        raise ValidationError(f"document path must look like 'collection/id', got {path!r}")
    return parts[0], parts[1]


class DocumentStore(Protocol):
    def get(self, path: str) -> Optional[Dict[str, Any]]:
        ...

    def set(self, path: str, value: Dict[str, Any]) -> None:
        ...

    def update(self, path: str, changes: Dict[str, Any]) -> None:
        ...

    def children(self, collection: str) -> Dict[str, Dict[str, Any]]:
        ...


class InMemoryDocumentStore:
    """Dict-backed store for development and tests."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        collection, key = split_path(path)
        with self._lock:
            document = self._data.get(collection, {}).get(key)
            return copy.deepcopy(document) if document is not None else None

    def set(self, path: str, value: Dict[str, Any]) -> None:
        collection, key = split_path(path)
        with self._lock:
            self._data.setdefault(collection, {})[key] = copy.deepcopy(value)

    def update(self, path: str, changes: Dict[str, Any]) -> None:
        collection, key = split_path(path)
        with self._lock:
            document = self._data.setdefault(collection, {}).setdefault(key, {})
            document.update(copy.deepcopy(changes))

    def children(self, collection: str) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._data.get(collection, {}))


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _location(value: Optional[Dict[str, Any]]) -> Optional[Coordinates]:
    return Coordinates.from_mapping(value) if value else None


def request_to_doc(request: HelpRequest) -> Dict[str, Any]:
    return {
        "requesterId": request.requester_id,
        "location": request.location.as_dict(),
        "type": request.type,
        "description": request.description,
        "peopleAffected": request.people_affected,
        "injuryLevel": request.injury_level,
        "accessibility": request.accessibility,
        "status": request.status.value,
        "createdAt": _ts(request.created_at),
        "assignedResponderId": request.assigned_responder_id,
        "updatedAt": _ts(request.updated_at),
    }


def request_from_doc(request_id: str, doc: Dict[str, Any]) -> HelpRequest:
    return HelpRequest(
        id=request_id,
        requester_id=doc.get("requesterId", ""),
        location=Coordinates.from_mapping(doc.get("location")),
        type=doc.get("type", "unknown"),
        description=doc.get("description", ""),
        people_affected=int(doc.get("peopleAffected") or 1),
        injury_level=doc.get("injuryLevel", "unknown"),
        accessibility=doc.get("accessibility", "unknown"),
        status=RequestStatus(doc.get("status", RequestStatus.OPEN.value)),
        created_at=_parse_ts(doc.get("createdAt")) or datetime.min,
        assigned_responder_id=doc.get("assignedResponderId"),
        updated_at=_parse_ts(doc.get("updatedAt")),
    )


def responder_to_doc(responder: Responder) -> Dict[str, Any]:
    return {
        "name": responder.name,
        "currentLocation": responder.current_location.as_dict() if responder.current_location else None,
        "available": responder.available,
        "maxDistance": responder.max_distance_km,
        "totalAssignments": responder.total_assignments,
        "completedAssignments": responder.completed_assignments,
        "rating": responder.rating,
        "deviceToken": responder.device_token,
        "expertise": list(responder.expertise),
    }


def responder_from_doc(responder_id: str, doc: Dict[str, Any]) -> Responder:
    return Responder(
        id=responder_id,
        name=doc.get("name", ""),
        current_location=_location(doc.get("currentLocation")),
        available=bool(doc.get("available", True)),
        max_distance_km=float(doc.get("maxDistance", 10.0)),
        total_assignments=int(doc.get("totalAssignments", 0)),
        completed_assignments=int(doc.get("completedAssignments", 0)),
        rating=float(doc.get("rating", 0.0)),
        device_token=doc.get("deviceToken"),
        expertise=tuple(doc.get("expertise") or ()),
    )


def eta_to_doc(eta: Optional[EtaEstimate]) -> Optional[Dict[str, Any]]:
    if eta is None:
        return None
    return {
        "distanceKm": eta.distance_km,
        "durationMinutes": eta.duration_minutes,
        "estimatedArrival": _ts(eta.estimated_arrival),
        "provenance": eta.provenance.value,
        "error": eta.error,
    }


def eta_from_doc(doc: Optional[Dict[str, Any]]) -> Optional[EtaEstimate]:
    if not doc:
        return None
    return EtaEstimate(
        distance_km=float(doc["distanceKm"]),
        duration_minutes=int(doc["durationMinutes"]),
        estimated_arrival=_parse_ts(doc["estimatedArrival"]),
        provenance=Provenance(doc.get("provenance", Provenance.ESTIMATED.value)),
        error=doc.get("error"),
    )


def assignment_to_doc(assignment: Assignment) -> Dict[str, Any]:
    return {
        "requestId": assignment.request_id,
        "responderId": assignment.responder_id,
        "victimLocation": assignment.victim_location.as_dict(),
        "eta": eta_to_doc(assignment.eta),
        "status": assignment.status.value,
        "createdAt": _ts(assignment.created_at),
        "acceptedAt": _ts(assignment.accepted_at),
        "completedAt": _ts(assignment.completed_at),
        "responderLocationKnown": assignment.responder_location_known,
        "notes": assignment.notes,
        "victimFinalStatus": assignment.victim_final_status,
    }


def assignment_from_doc(assignment_id: str, doc: Dict[str, Any]) -> Assignment:
    return Assignment(
        id=assignment_id,
        request_id=doc["requestId"],
        responder_id=doc["responderId"],
        victim_location=Coordinates.from_mapping(doc["victimLocation"]),
        eta=eta_from_doc(doc.get("eta")),
        status=AssignmentStatus(doc.get("status", AssignmentStatus.ASSIGNED.value)),
        created_at=_parse_ts(doc.get("createdAt")) or datetime.min,
        accepted_at=_parse_ts(doc.get("acceptedAt")),
        completed_at=_parse_ts(doc.get("completedAt")),
        responder_location_known=bool(doc.get("responderLocationKnown", True)),
        notes=doc.get("notes", ""),
        victim_final_status=doc.get("victimFinalStatus"),
    )


class CoordinationRepository:
    """Typed access to requests, responders and assignments in a DocumentStore."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def _write(self, method: str, path: str, value: Dict[str, Any]) -> None:
        try:
            getattr(self.store, method)(path, value)
        except (OSError, RuntimeError) as exc:
            raise PersistenceError(f"could not write {path}: {exc}") from exc

    # Requests

    def get_request(self, request_id: str) -> HelpRequest:
        doc = self.store.get(f"{REQUESTS}/{request_id}")
        if doc is None:
            raise NotFoundError("Request", request_id)
        return request_from_doc(request_id, doc)

    def list_requests(self, status: Optional[RequestStatus] = None) -> List[HelpRequest]:
        requests = [request_from_doc(key, doc) for key, doc in self.store.children(REQUESTS).items()]
        if status is not None:
            requests = [request for request in requests if request.status is status]
        return requests

    def save_request(self, request: HelpRequest) -> None:
        self._write("set", f"{REQUESTS}/{request.id}", request_to_doc(request))

    def update_request(self, request_id: str, **changes: Any) -> None:
        changes["updatedAt"] = _ts(utcnow())
        self._write("update", f"{REQUESTS}/{request_id}", changes)

    # Responders

    def get_responder(self, responder_id: str) -> Responder:
        doc = self.store.get(f"{RESPONDERS}/{responder_id}")
        if doc is None:
            raise NotFoundError("Responder", responder_id)
        return responder_from_doc(responder_id, doc)

    def list_responders(self) -> List[Responder]:
        return [responder_from_doc(key, doc) for key, doc in self.store.children(RESPONDERS).items()]

    def save_responder(self, responder: Responder) -> None:
        self._write("set", f"{RESPONDERS}/{responder.id}", responder_to_doc(responder))

    def update_responder(self, responder_id: str, **changes: Any) -> None:
        self._write("update", f"{RESPONDERS}/{responder_id}", changes)

    # Assignments

    def get_assignment(self, assignment_id: str) -> Assignment:
        doc = self.store.get(f"{ASSIGNMENTS}/{assignment_id}")
        if doc is None:
            raise NotFoundError("Assignment", assignment_id)
        return assignment_from_doc(assignment_id, doc)

    def list_assignments(
        self,
        request_id: Optional[str] = None,
        responder_id: Optional[str] = None,
    ) -> List[Assignment]:
        assignments = [assignment_from_doc(key, doc) for key, doc in self.store.children(ASSIGNMENTS).items()]
        if request_id is not None:
            assignments = [a for a in assignments if a.request_id == request_id]
        if responder_id is not None:
            assignments = [a for a in assignments if a.responder_id == responder_id]
        return assignments

    def save_assignment(self, assignment: Assignment) -> None:
        self._write("set", f"{ASSIGNMENTS}/{assignment.id}", assignment_to_doc(assignment))

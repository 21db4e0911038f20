from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rescue_ops.errors import (
    ConflictError,
    CoordinationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from rescue_ops.models import (
    AggregationResult,
    Assignment,
    Coordinates,
    EtaEstimate,
    Facility,
    HelpRequest,
    PriorityCluster,
    Responder,
    RouteResult,
    utcnow,
)
from rescue_ops.notifications import LoggingNotifier
from rescue_ops.providers import GeminiClient, GoogleMapsClient
from rescue_ops.system import DisasterResponseSystem

from .config import (
    DIRECTIONS_TIMEOUT_SECONDS,
    ENRICHMENT_TIMEOUT_SECONDS,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    LOG_LEVEL,
    MAPS_API_KEY,
)
from .db import SQLiteDocumentStore
from .schemas import (
    AvailabilityBody,
    CompleteBody,
    EtaBody,
    LocationUpdateBody,
    MatchBody,
    RegisterResponderBody,
    ReportRequestBody,
    RouteBody,
    StrategyBody,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Rescue Ops Coordination API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_system() -> DisasterResponseSystem:
    maps = GoogleMapsClient(MAPS_API_KEY) if MAPS_API_KEY else None
    gemini = GeminiClient(GEMINI_API_KEY, model=GEMINI_MODEL) if GEMINI_API_KEY else None
    if maps is None:
        logger.info("MAPS_API_KEY not set, routes and ETAs use the constant-speed model")
    if gemini is None:
        logger.info("GEMINI_API_KEY not set, aggregation uses fallback prioritization")
    return DisasterResponseSystem(
        store=SQLiteDocumentStore(),
        notifier=LoggingNotifier(),
        enrichment=gemini,
        directions=maps,
        distance_matrix=maps,
        facilities=maps,
        enrichment_timeout=ENRICHMENT_TIMEOUT_SECONDS,
        directions_timeout=DIRECTIONS_TIMEOUT_SECONDS,
    )


ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (PersistenceError, 500),
)


@app.exception_handler(CoordinationError)
def coordination_error_handler(request: Request, exc: CoordinationError) -> JSONResponse:
    status = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 502)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def eta_json(eta: Optional[EtaEstimate]) -> Optional[Dict[str, Any]]:
    if eta is None:
        return None
    return {
        "distanceKm": round(eta.distance_km, 2),
        "durationMinutes": eta.duration_minutes,
        "estimatedArrival": _iso(eta.estimated_arrival),
        "provenance": eta.provenance.value,
        "error": eta.error,
    }


def request_json(request: HelpRequest) -> Dict[str, Any]:
    return {
        "id": request.id,
        "userId": request.requester_id,
        "latitude": request.location.lat,
        "longitude": request.location.lng,
        "type": request.type,
        "description": request.description,
        "peopleAffected": request.people_affected,
        "injuryLevel": request.injury_level,
        "accessibility": request.accessibility,
        "status": request.status.value,
        "createdAt": _iso(request.created_at),
        "assignedVolunteerId": request.assigned_responder_id,
    }


def facility_json(facility: Facility) -> Dict[str, Any]:
    return {
        "id": facility.id,
        "name": facility.name,
        "location": facility.location.as_dict(),
        "rating": facility.rating,
        "openNow": facility.open_now,
        "distanceKm": round(facility.distance_km, 2) if facility.distance_km is not None else None,
    }


def responder_json(responder: Responder) -> Dict[str, Any]:
    return {
        "id": responder.id,
        "name": responder.name,
        "available": responder.available,
        "currentLocation": responder.current_location.as_dict() if responder.current_location else None,
        "maxDistance": responder.max_distance_km,
        "expertise": list(responder.expertise),
        "rating": responder.rating,
        "totalAssignments": responder.total_assignments,
        "completedAssignments": responder.completed_assignments,
    }


def assignment_json(assignment: Assignment) -> Dict[str, Any]:
    return {
        "id": assignment.id,
        "requestId": assignment.request_id,
        "volunteerId": assignment.responder_id,
        "victimLocation": assignment.victim_location.as_dict(),
        "status": assignment.status.value,
        "eta": eta_json(assignment.eta),
        "volunteerLocationKnown": assignment.responder_location_known,
        "createdAt": _iso(assignment.created_at),
        "acceptedAt": _iso(assignment.accepted_at),
        "completedAt": _iso(assignment.completed_at),
    }


def cluster_json(cluster: PriorityCluster) -> Dict[str, Any]:
    return {
        "requestIds": sorted(cluster.member_request_ids),
        "priority": cluster.priority.value,
        "urgencyScore": cluster.urgency_score,
        "combinedDescription": cluster.combined_description,
        "centroidLocation": cluster.centroid.as_dict(),
        "requiredResources": sorted(cluster.required_resources),
        "estimatedVictimsCount": cluster.estimated_victims_count,
        "recommendedAction": cluster.recommended_action,
    }


def aggregation_json(result: AggregationResult) -> Dict[str, Any]:
    return {
        "aggregated": [cluster_json(cluster) for cluster in result.clusters],
        "summary": result.summary,
        "provenance": result.provenance.value,
    }


def route_json(route: RouteResult) -> Dict[str, Any]:
    return {
        "route": [stop.as_dict() for stop in route.ordered_stops],
        "totalDistance": round(route.total_distance_km, 2),
        "totalDuration": round(route.total_duration_minutes),
        "sequence": route.sequence,
        "usedClustering": route.used_clustering,
        "clusters": route.cluster_count,
        "provenance": route.provenance.value,
        "error": route.error,
    }


def _point(lat: float, lng: float) -> Coordinates:
    return Coordinates(lat, lng)


@app.get("/health")
def health():
    return {"status": "ok"}


# Help requests


@app.post("/requests")
def report_request(body: ReportRequestBody, system: DisasterResponseSystem = Depends(get_system)):
    request = system.report_request(
        requester_id=body.user_id,
        location=_point(body.latitude, body.longitude),
        hazard_type=body.type,
        description=body.description,
        people_affected=body.people_affected,
        injury_level=body.injury_level,
        accessibility=body.accessibility,
    )
    return {"success": True, "requestId": request.id, "request": request_json(request)}


@app.get("/requests/open")
def open_requests(system: DisasterResponseSystem = Depends(get_system)):
    requests = system.open_requests()
    return {"count": len(requests), "requests": [request_json(r) for r in requests]}


@app.get("/requests/nearby")
def nearby_requests(lat: float, lng: float, radius: float = 5.0, system: DisasterResponseSystem = Depends(get_system)):
    requests = system.nearby_requests(_point(lat, lng), radius)
    return {"count": len(requests), "radius": radius, "requests": [request_json(r) for r in requests]}


@app.get("/requests/{request_id}")
def request_details(request_id: str, system: DisasterResponseSystem = Depends(get_system)):
    details = system.request_details(request_id)
    return {
        **request_json(details.request),
        "nearbyHospitals": [facility_json(f) for f in details.hospitals],
        "nearbyPoliceStations": [facility_json(f) for f in details.police_stations],
    }


# Responders


@app.post("/responders")
def register_responder(body: RegisterResponderBody, system: DisasterResponseSystem = Depends(get_system)):
    responder = system.register_responder(
        responder_id=body.user_id,
        name=body.name,
        max_distance_km=body.max_distance,
        device_token=body.device_token,
        expertise=body.expertise,
    )
    return {"success": True, "volunteerId": responder.id}


@app.get("/responders/nearby")
def nearby_responders(lat: float, lng: float, radius: float = 10.0, system: DisasterResponseSystem = Depends(get_system)):
    center = _point(lat, lng)
    responders = system.nearby_responders(center, radius)
    return {"count": len(responders), "radius": radius, "volunteers": [responder_json(r) for r in responders]}


@app.post("/responders/{responder_id}/location")
def update_location(
    responder_id: str,
    body: LocationUpdateBody,
    system: DisasterResponseSystem = Depends(get_system),
):
    system.update_responder_location(responder_id, _point(body.latitude, body.longitude))
    return {"success": True, "message": "Location updated"}


@app.put("/responders/{responder_id}/availability")
def update_availability(
    responder_id: str,
    body: AvailabilityBody,
    system: DisasterResponseSystem = Depends(get_system),
):
    responder = system.set_availability(responder_id, body.available)
    return {"success": True, "available": responder.available}


@app.get("/responders/{responder_id}/assignments")
def responder_assignments(responder_id: str, system: DisasterResponseSystem = Depends(get_system)):
    active, completed = system.responder_assignments(responder_id)
    return {
        "volunteerId": responder_id,
        "activeAssignments": [assignment_json(a) for a in active],
        "completedAssignments": [assignment_json(a) for a in completed],
        "total": len(active) + len(completed),
    }


@app.post("/responders/{responder_id}/accept/{assignment_id}")
def accept_assignment(responder_id: str, assignment_id: str, system: DisasterResponseSystem = Depends(get_system)):
    assignment = system.accept(assignment_id, responder_id)
    return {"success": True, "assignment": assignment_json(assignment), "eta": eta_json(assignment.eta)}


@app.post("/responders/{responder_id}/complete/{assignment_id}")
def complete_assignment(
    responder_id: str,
    assignment_id: str,
    body: CompleteBody,
    system: DisasterResponseSystem = Depends(get_system),
):
    assignment = system.complete(assignment_id, responder_id, notes=body.notes, victim_status=body.victim_safety_status)
    return {"success": True, "assignment": assignment_json(assignment)}


# Coordination


@app.post("/ai/aggregate")
def aggregate(system: DisasterResponseSystem = Depends(get_system)):
    result = system.aggregate()
    return {"totalRequests": len(system.open_requests()), **aggregation_json(result)}


@app.post("/ai/analyze/{request_id}")
def analyze(request_id: str, system: DisasterResponseSystem = Depends(get_system)):
    analysis, nearby = system.analyze_context(request_id)
    return {"requestId": request_id, "analysis": analysis, "nearbyRequestsCount": len(nearby)}


@app.post("/ai/strategy")
def strategy(body: StrategyBody, system: DisasterResponseSystem = Depends(get_system)):
    plan, summary = system.generate_strategy(body.request_ids, body.available_volunteer_ids)
    return {
        "strategy": plan,
        "cluster": {
            "totalPeople": summary.total_people,
            "geographicSpread": round(summary.geographic_spread_km, 2),
            "requestCount": summary.request_count,
            "priorities": summary.hazard_types,
            "availableResources": summary.available_resources,
        },
    }


@app.post("/ai/match")
def match(body: MatchBody, system: DisasterResponseSystem = Depends(get_system)):
    assignment = system.match(body.request_id, body.volunteer_id)
    return {
        "success": True,
        "assignmentId": assignment.id,
        "assignment": assignment_json(assignment),
        "eta": eta_json(assignment.eta),
    }


@app.post("/ai/route-optimize")
def route_optimize(body: RouteBody, system: DisasterResponseSystem = Depends(get_system)):
    route = system.optimize_route(_point(body.origin.lat, body.origin.lng), body.destination_ids, body.round_trip)
    return {"success": True, **route_json(route)}


@app.post("/ai/eta")
def eta(body: EtaBody, system: DisasterResponseSystem = Depends(get_system)):
    estimate = system.eta(_point(body.origin.lat, body.origin.lng), _point(body.destination.lat, body.destination.lng))
    return eta_json(estimate)


@app.get("/ai/dashboard")
def dashboard(system: DisasterResponseSystem = Depends(get_system)):
    board = system.dashboard()
    return {
        "timestamp": utcnow().isoformat(),
        "totalRequests": board.total_requests,
        **aggregation_json(board.aggregation),
        "criticalCount": board.critical_count,
        "highCount": board.high_count,
        "volunteersActiveCount": board.active_responders,
        "assignmentsInProgress": [
            {
                "assignmentId": tracked.assignment.id,
                "volunteerId": tracked.assignment.responder_id,
                "requestId": tracked.assignment.request_id,
                "eta": eta_json(tracked.eta),
            }
            for tracked in board.in_progress
        ],
    }

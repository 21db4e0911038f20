from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from rescue_ops.aggregation import DEFAULT_ENRICHMENT_TIMEOUT, AggregationEngine, summarize_cluster
from rescue_ops.errors import NotFoundError, ValidationError
from rescue_ops.eta import DEFAULT_DIRECTIONS_TIMEOUT, ETAEstimator
from rescue_ops.facilities import HOSPITAL, POLICE, FacilityFinder
from rescue_ops.geo import distance_km, within_radius
from rescue_ops.matching import MatchingEngine
from rescue_ops.models import (
    AggregationResult,
    Assignment,
    AssignmentStatus,
    ClusterSummary,
    Coordinates,
    Destination,
    EtaEstimate,
    Facility,
    HelpRequest,
    Priority,
    RequestStatus,
    Responder,
    RouteResult,
)
from rescue_ops.notifications import Notifier
from rescue_ops.providers import (
    DirectionsProvider,
    DistanceMatrixProvider,
    EnrichmentProvider,
    FacilityProvider,
)
from rescue_ops.routing import RouteOptimizer
from rescue_ops.scoring import UrgencyScorer
from rescue_ops.store import CoordinationRepository, DocumentStore

logger = logging.getLogger(__name__)

ALERT_RADIUS_KM = 5.0
CONTEXT_RADIUS_KM = 2.0
NEARBY_REQUEST_RADIUS_KM = 5.0
NEARBY_RESPONDER_RADIUS_KM = 10.0
NEARBY_ALERT_TITLE = "New Rescue Request Nearby"


@dataclass(frozen=True)
class TrackedAssignment:
    assignment: Assignment
    eta: Optional[EtaEstimate]


@dataclass(frozen=True)
class RequestDetails:
    request: HelpRequest
    hospitals: List[Facility]
    police_stations: List[Facility]


@dataclass(frozen=True)
class Dashboard:
    total_requests: int
    aggregation: AggregationResult
    critical_count: int
    high_count: int
    active_responders: int
    in_progress: List[TrackedAssignment]


class DisasterResponseSystem:
    def __init__(
        self,
        store: DocumentStore,
        notifier: Optional[Notifier] = None,
        enrichment: Optional[EnrichmentProvider] = None,
        directions: Optional[DirectionsProvider] = None,
        distance_matrix: Optional[DistanceMatrixProvider] = None,
        facilities: Optional[FacilityProvider] = None,
        facility_catalog: Sequence[Facility] = (),
        enrichment_timeout: float = DEFAULT_ENRICHMENT_TIMEOUT,
        directions_timeout: float = DEFAULT_DIRECTIONS_TIMEOUT,
        id_factory: Callable[[], str] = lambda: uuid4().hex,
    ) -> None:
        self.repository = CoordinationRepository(store)
        self.notifier = notifier
        self.scorer = UrgencyScorer()
        self.aggregator = AggregationEngine(enrichment, self.scorer, timeout=enrichment_timeout)
        self.router = RouteOptimizer(distance_matrix, timeout=directions_timeout)
        self.eta_estimator = ETAEstimator(directions, timeout=directions_timeout)
        self.facility_finder = FacilityFinder(facilities, facility_catalog, timeout=directions_timeout)
        self.matcher = MatchingEngine(self.repository, notifier, self.eta_estimator, id_factory=id_factory)
        self.id_factory = id_factory

    # Requests

    def report_request(
        self,
        requester_id: str,
        location: Coordinates,
        hazard_type: str = "unknown",
        description: str = "",
        people_affected: int = 1,
        injury_level: str = "unknown",
        accessibility: str = "unknown",
    ) -> HelpRequest:
        if not requester_id:
            raise ValidationError("requester_id is required")

        request = HelpRequest(
            id=self.id_factory(),
            requester_id=requester_id,
            location=location,
            type=hazard_type,
            description=description,
            people_affected=people_affected,
            injury_level=injury_level,
            accessibility=accessibility,
        )
        self.repository.save_request(request)
        self._alert_nearby_responders(request)
        return request

    def _alert_nearby_responders(self, request: HelpRequest) -> None:
        if self.notifier is None:
            return
        tokens = [
            responder.device_token
            for responder in self.nearby_responders(request.location, ALERT_RADIUS_KM)
            if responder.device_token
        ]
        if not tokens:
            return

        body = f"Someone needs help at ({request.location.lat:.3f}, {request.location.lng:.3f})"
        try:
            receipt = self.notifier.send_to_many(
                tokens, NEARBY_ALERT_TITLE, body, {"requestId": request.id, "type": request.type}
            )
        except Exception:
            logger.warning("Could not alert responders about request %s", request.id, exc_info=True)
            return
        logger.info("Alerted %d responders about request %s", receipt.success_count, request.id)

    def get_request(self, request_id: str) -> HelpRequest:
        return self.repository.get_request(request_id)

    def request_details(self, request_id: str) -> RequestDetails:
        request = self.get_request(request_id)
        return RequestDetails(
            request=request,
            hospitals=self.facility_finder.nearby(request.location, HOSPITAL),
            police_stations=self.facility_finder.nearby(request.location, POLICE),
        )

    def open_requests(self) -> List[HelpRequest]:
        return self.repository.list_requests(RequestStatus.OPEN)

    def nearby_requests(self, center: Coordinates, radius_km: float = NEARBY_REQUEST_RADIUS_KM) -> List[HelpRequest]:
        nearby = [r for r in self.open_requests() if within_radius(center, r.location, radius_km)]
        return self.scorer.rank(nearby)

    # Responders

    def register_responder(
        self,
        responder_id: str,
        name: str,
        max_distance_km: float = 10.0,
        device_token: Optional[str] = None,
        expertise: Iterable[str] = (),
    ) -> Responder:
        if not responder_id or not name:
            raise ValidationError("responder id and name are required")
        responder = Responder(
            id=responder_id,
            name=name,
            max_distance_km=max_distance_km,
            device_token=device_token,
            expertise=tuple(expertise),
        )
        self.repository.save_responder(responder)
        return responder

    def update_responder_location(self, responder_id: str, location: Coordinates) -> Responder:
        responder = self.repository.get_responder(responder_id)
        self.repository.update_responder(responder_id, currentLocation=location.as_dict())
        return replace(responder, current_location=location)

    def set_availability(self, responder_id: str, available: bool) -> Responder:
        if not isinstance(available, bool):
            raise ValidationError("available must be a boolean")
        responder = self.repository.get_responder(responder_id)
        self.repository.update_responder(responder_id, available=available)
        return replace(responder, available=available)

    def nearby_responders(
        self,
        center: Coordinates,
        radius_km: float = NEARBY_RESPONDER_RADIUS_KM,
    ) -> List[Responder]:
        located = [
            responder
            for responder in self.repository.list_responders()
            if responder.available and responder.current_location is not None
        ]
        nearby = [r for r in located if within_radius(center, r.current_location, radius_km)]
        nearby.sort(key=lambda responder: distance_km(center, responder.current_location))
        return nearby

    # Coordination

    def aggregate(self) -> AggregationResult:
        return self.aggregator.aggregate(self.open_requests())

    def analyze_context(self, request_id: str) -> Tuple[Dict[str, Any], List[HelpRequest]]:
        request = self.repository.get_request(request_id)
        nearby = [
            other
            for other in self.repository.list_requests()
            if other.id != request_id
            and other.status is not RequestStatus.COMPLETED
            and within_radius(request.location, other.location, CONTEXT_RADIUS_KM)
        ]
        return self.aggregator.analyze_context(request, nearby), nearby

    def generate_strategy(
        self,
        request_ids: Sequence[str],
        available_resources: Sequence[str] = (),
    ) -> Tuple[Dict[str, Any], ClusterSummary]:
        if not request_ids:
            raise ValidationError("request ids are required")
        wanted = set(request_ids)
        members = [request for request in self.repository.list_requests() if request.id in wanted]
        summary = summarize_cluster(members, available_resources)
        return self.aggregator.generate_strategy(summary), summary

    def optimize_route(
        self,
        origin: Coordinates,
        destination_ids: Sequence[str],
        round_trip: bool = False,
    ) -> RouteResult:
        if not destination_ids:
            raise ValidationError("destination ids are required")
        by_id = {request.id: request for request in self.repository.list_requests()}
        destinations = [
            Destination(id=request_id, location=by_id[request_id].location, label=by_id[request_id].type)
            for request_id in dict.fromkeys(destination_ids)
            if request_id in by_id
        ]
        if not destinations:
            raise NotFoundError("Requests", ", ".join(destination_ids))
        return self.router.optimize_route(origin, destinations, round_trip=round_trip)

    def eta(self, origin: Coordinates, destination: Coordinates) -> EtaEstimate:
        return self.eta_estimator.eta(origin, destination)

    def match(self, request_id: str, responder_id: str) -> Assignment:
        return self.matcher.match(request_id, responder_id)

    def accept(self, assignment_id: str, responder_id: str) -> Assignment:
        return self.matcher.accept(assignment_id, responder_id)

    def complete(self, assignment_id: str, responder_id: str, notes: str = "", victim_status: str = "safe") -> Assignment:
        return self.matcher.complete(assignment_id, responder_id, notes=notes, victim_status=victim_status)

    def responder_assignments(self, responder_id: str) -> Tuple[List[Assignment], List[Assignment]]:
        return self.matcher.responder_assignments(responder_id)

    def dashboard(self) -> Dashboard:
        open_requests = self.open_requests()
        aggregation = self.aggregator.aggregate(open_requests)
        responders = {responder.id: responder for responder in self.repository.list_responders()}

        in_progress = []
        for assignment in self.repository.list_assignments():
            if assignment.status is not AssignmentStatus.IN_PROGRESS:
                continue
            eta = assignment.eta
            responder = responders.get(assignment.responder_id)
            if responder is not None and responder.current_location is not None:
                eta = self.eta_estimator.eta(responder.current_location, assignment.victim_location)
            in_progress.append(TrackedAssignment(assignment=assignment, eta=eta))

        return Dashboard(
            total_requests=len(open_requests),
            aggregation=aggregation,
            critical_count=sum(1 for c in aggregation.clusters if c.priority is Priority.CRITICAL),
            high_count=sum(1 for c in aggregation.clusters if c.priority is Priority.HIGH),
            active_responders=sum(
                1 for r in responders.values() if r.available and r.current_location is not None
            ),
            in_progress=in_progress,
        )

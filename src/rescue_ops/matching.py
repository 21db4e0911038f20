"""
Responder-to-request matching and the assignment state machine.

    assigned --accept--> in_progress --complete--> completed

A request may carry at most one active assignment. ``match`` rejects a second
one with :class:`ConflictError` instead of superseding the first. The check
is read-then-write: callers running several workers must serialise ``match``
per request (for example with a conditional update in the store), the engine
itself holds no lock.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from rescue_ops.errors import ConflictError
from rescue_ops.eta import ETAEstimator
from rescue_ops.models import (
    Assignment,
    AssignmentStatus,
    Coordinates,
    EtaEstimate,
    HelpRequest,
    RequestStatus,
    Responder,
    utcnow,
)
from rescue_ops.notifications import Notifier
from rescue_ops.store import CoordinationRepository

logger = logging.getLogger(__name__)

# Stand-in origin for responders that never reported a position.
UNKNOWN_LOCATION = Coordinates(0.0, 0.0)

ASSIGNMENT_TITLE = "New Rescue Assignment"


def _new_id() -> str:
    return uuid4().hex


class MatchingEngine:
    def __init__(
        self,
        repository: CoordinationRepository,
        notifier: Optional[Notifier] = None,
        eta_estimator: Optional[ETAEstimator] = None,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.eta_estimator = eta_estimator or ETAEstimator()
        self.id_factory = id_factory

    def match(self, request_id: str, responder_id: str) -> Assignment:
        request = self.repository.get_request(request_id)
        responder = self.repository.get_responder(responder_id)

        if request.status is not RequestStatus.OPEN:
            raise ConflictError(f"Request {request_id} is {request.status.value}, only open requests can be matched")
        active = [a for a in self.repository.list_assignments(request_id=request_id) if a.is_active]
        if active:
            raise ConflictError(f"Request {request_id} already has active assignment {active[0].id}")

        origin = responder.current_location
        if origin is None:
            logger.warning("Responder %s has no known location, estimating ETA from (0, 0)", responder_id)
        eta = self.eta_estimator.eta(origin or UNKNOWN_LOCATION, request.location)

        assignment = Assignment(
            id=self.id_factory(),
            request_id=request_id,
            responder_id=responder_id,
            victim_location=request.location,
            eta=eta,
            responder_location_known=origin is not None,
        )
        self.repository.save_assignment(assignment)
        self.repository.update_request(
            request_id,
            status=RequestStatus.ASSIGNED.value,
            assignedResponderId=responder_id,
        )
        self.repository.update_responder(responder_id, totalAssignments=responder.total_assignments + 1)
        logger.info("Assigned responder %s to request %s as %s", responder_id, request_id, assignment.id)

        self._notify_assignment(responder, request, assignment, eta)
        return assignment

    def _notify_assignment(
        self,
        responder: Responder,
        request: HelpRequest,
        assignment: Assignment,
        eta: EtaEstimate,
    ) -> bool:
        if self.notifier is None or not responder.device_token:
            logger.info("Responder %s has no notification channel", responder.id)
            return False

        body = f"New assignment {round(eta.distance_km)}km away, ETA: {eta.duration_minutes} minutes"
        data = {
            "assignmentId": assignment.id,
            "requestId": request.id,
            "latitude": str(request.location.lat),
            "longitude": str(request.location.lng),
        }
        try:
            self.notifier.send_to_one(responder.device_token, ASSIGNMENT_TITLE, body, data)
        except Exception:
            logger.warning("Could not notify responder %s about %s", responder.id, assignment.id, exc_info=True)
            return False
        return True

    def _owned(self, assignment_id: str, responder_id: str) -> Assignment:
        assignment = self.repository.get_assignment(assignment_id)
        if assignment.responder_id != responder_id:
            raise ConflictError(f"Assignment {assignment_id} belongs to another responder")
        return assignment

    def accept(self, assignment_id: str, responder_id: str, now: Optional[datetime] = None) -> Assignment:
        assignment = self._owned(assignment_id, responder_id)
        if assignment.status is not AssignmentStatus.ASSIGNED:
            raise ConflictError(f"Assignment {assignment_id} is {assignment.status.value}, cannot accept")

        now = now or utcnow()
        responder = self.repository.get_responder(responder_id)
        eta = assignment.eta
        if responder.current_location is not None:
            eta = self.eta_estimator.eta(responder.current_location, assignment.victim_location, now)

        accepted = replace(assignment, status=AssignmentStatus.IN_PROGRESS, accepted_at=now, eta=eta)
        self.repository.save_assignment(accepted)
        self.repository.update_request(assignment.request_id, status=RequestStatus.IN_PROGRESS.value)
        logger.info("Responder %s accepted %s", responder_id, assignment_id)
        return accepted

    def complete(
        self,
        assignment_id: str,
        responder_id: str,
        notes: str = "",
        victim_status: str = "safe",
        now: Optional[datetime] = None,
    ) -> Assignment:
        assignment = self._owned(assignment_id, responder_id)
        if assignment.status is not AssignmentStatus.IN_PROGRESS:
            raise ConflictError(f"Assignment {assignment_id} is {assignment.status.value}, cannot complete")

        completed = replace(
            assignment,
            status=AssignmentStatus.COMPLETED,
            completed_at=now or utcnow(),
            notes=notes,
            victim_final_status=victim_status,
        )
        self.repository.save_assignment(completed)
        self.repository.update_request(
            assignment.request_id,
            status=RequestStatus.COMPLETED.value,
            updatedBy=responder_id,
        )
        responder = self.repository.get_responder(responder_id)
        self.repository.update_responder(responder_id, completedAssignments=responder.completed_assignments + 1)
        logger.info("Responder %s completed %s", responder_id, assignment_id)
        return completed

    def responder_assignments(self, responder_id: str) -> Tuple[List[Assignment], List[Assignment]]:
        """Active assignments with refreshed ETAs, and completed ones."""
        responder = self.repository.get_responder(responder_id)
        assignments = self.repository.list_assignments(responder_id=responder_id)

        active = []
        for assignment in assignments:
            if not assignment.is_active:
                continue
            if responder.current_location is not None:
                eta = self.eta_estimator.eta(responder.current_location, assignment.victim_location)
                assignment = replace(assignment, eta=eta)
            active.append(assignment)

        completed = [assignment for assignment in assignments if not assignment.is_active]
        return active, completed

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from rescue_ops.clustering import cluster_by_proximity
from rescue_ops.errors import ExternalServiceError, ValidationError
from rescue_ops.geo import AVERAGE_SPEED_KMH, distance_km, travel_minutes
from rescue_ops.models import Coordinates, Destination, Provenance, RouteLeg, RouteResult
from rescue_ops.providers import DistanceMatrixProvider

logger = logging.getLogger(__name__)

MAX_DIRECT_STOPS = 25
CLUSTER_RADIUS_KM = 5.0
CLUSTER_CAP = 25
DEFAULT_MATRIX_TIMEOUT = 10.0

# (distance_km, duration_minutes) for every ordered pair of points.
TravelMatrix = List[List[Tuple[float, float]]]


def nearest_neighbor_order(matrix: TravelMatrix) -> List[int]:
    """
    Greedy tour over ``matrix`` where row/column 0 is the start point.

    Returns the visiting order as 0-based destination indices (matrix index
    minus one). Ties go to the destination listed first.
    """
    remaining = list(range(1, len(matrix)))
    current = 0
    order: List[int] = []

    while remaining:
        nearest = remaining[0]
        nearest_distance = float("inf")
        for candidate in remaining:
            distance = matrix[current][candidate][0]
            if distance < nearest_distance:
                nearest_distance = distance
                nearest = candidate
        remaining.remove(nearest)
        order.append(nearest - 1)
        current = nearest

    return order


def _worst(provenances: Iterable[Provenance]) -> Provenance:
    seen = set(provenances)
    for candidate in (Provenance.FALLBACK, Provenance.ESTIMATED):
        if candidate in seen:
            return candidate
    return Provenance.LIVE


class RouteOptimizer:
    """Nearest-neighbor rescue tours, clustered when there are many stops."""

    def __init__(
        self,
        matrix_provider: Optional[DistanceMatrixProvider] = None,
        timeout: float = DEFAULT_MATRIX_TIMEOUT,
        speed_kmh: float = AVERAGE_SPEED_KMH,
    ) -> None:
        self.matrix_provider = matrix_provider
        self.timeout = timeout
        self.speed_kmh = speed_kmh

    def optimize_route(
        self,
        origin: Coordinates,
        destinations: Sequence[Destination],
        round_trip: bool = False,
    ) -> RouteResult:
        destinations = list(destinations)
        ids = [destination.id for destination in destinations]
        if len(set(ids)) != len(ids):
            raise ValidationError("destination ids must be unique")

        if not destinations:
            return RouteResult(ordered_stops=(origin,), total_distance_km=0.0, total_duration_minutes=0.0, sequence={})

        if len(destinations) > MAX_DIRECT_STOPS:
            return self._optimize_clustered(origin, destinations, round_trip)
        return self._optimize_direct(origin, destinations, round_trip)

    def local_matrix(self, points: Sequence[Coordinates]) -> TravelMatrix:
        matrix: TravelMatrix = []
        for a in points:
            row = []
            for b in points:
                distance = distance_km(a, b)
                row.append((distance, travel_minutes(distance, self.speed_kmh)))
            matrix.append(row)
        return matrix

    def travel_matrix(self, points: Sequence[Coordinates]) -> Tuple[TravelMatrix, Provenance, Optional[str]]:
        if self.matrix_provider is None:
            return self.local_matrix(points), Provenance.ESTIMATED, None

        try:
            legs = self.matrix_provider.matrix(points, timeout=self.timeout)
            if len(legs) != len(points) or any(len(row) != len(points) for row in legs):
                raise ExternalServiceError("distance matrix has the wrong shape")
            matrix = [[(leg.distance_m / 1000, leg.duration_s / 60) for leg in row] for row in legs]
        except Exception as exc:
            logger.warning("Distance matrix unavailable, routing on local geometry: %s", exc)
            return self.local_matrix(points), Provenance.FALLBACK, str(exc)

        return matrix, Provenance.LIVE, None

    def _optimize_direct(
        self,
        origin: Coordinates,
        destinations: List[Destination],
        round_trip: bool,
    ) -> RouteResult:
        points = [origin] + [destination.location for destination in destinations]
        matrix, provenance, error = self.travel_matrix(points)
        order = nearest_neighbor_order(matrix)

        path = [0] + [index + 1 for index in order]
        if round_trip:
            path.append(0)

        legs = []
        for src, dst in zip(path, path[1:]):
            distance, duration = matrix[src][dst]
            legs.append(RouteLeg(points[src], points[dst], distance, duration))

        sequence = {destinations[index].id: position for position, index in enumerate(order, start=1)}
        return RouteResult(
            ordered_stops=tuple(points[index] for index in path),
            total_distance_km=sum(leg.distance_km for leg in legs),
            total_duration_minutes=sum(leg.duration_minutes for leg in legs),
            sequence=sequence,
            legs=tuple(legs),
            provenance=provenance,
            error=error,
        )

    def _optimize_clustered(
        self,
        origin: Coordinates,
        destinations: List[Destination],
        round_trip: bool,
    ) -> RouteResult:
        groups = cluster_by_proximity(
            destinations,
            radius_km=CLUSTER_RADIUS_KM,
            max_cluster_size=CLUSTER_CAP,
            location=lambda destination: destination.location,
        )
        logger.info("Routing %d stops in %d proximity groups", len(destinations), len(groups))

        stops: List[Coordinates] = [origin]
        legs: List[RouteLeg] = []
        sequence: Dict[str, int] = {}
        provenances: List[Provenance] = []
        errors: List[str] = []

        for group in groups:
            partial = self._optimize_direct(stops[-1], group, round_trip=False)
            offset = len(stops) - 1
            stops.extend(partial.ordered_stops[1:])
            legs.extend(partial.legs)
            sequence.update({key: offset + position for key, position in partial.sequence.items()})
            provenances.append(partial.provenance)
            if partial.error:
                errors.append(partial.error)

        if round_trip:
            matrix, provenance, error = self.travel_matrix([stops[-1], origin])
            distance, duration = matrix[0][1]
            legs.append(RouteLeg(stops[-1], origin, distance, duration))
            stops.append(origin)
            provenances.append(provenance)
            if error:
                errors.append(error)

        return RouteResult(
            ordered_stops=tuple(stops),
            total_distance_km=sum(leg.distance_km for leg in legs),
            total_duration_minutes=sum(leg.duration_minutes for leg in legs),
            sequence=sequence,
            legs=tuple(legs),
            used_clustering=True,
            cluster_count=len(groups),
            provenance=_worst(provenances),
            error=errors[0] if errors else None,
        )

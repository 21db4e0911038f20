from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from rescue_ops.geo import AVERAGE_SPEED_KMH, distance_km, travel_minutes
from rescue_ops.models import Coordinates, EtaEstimate, Provenance, utcnow
from rescue_ops.providers import DirectionsProvider

logger = logging.getLogger(__name__)

DEFAULT_DIRECTIONS_TIMEOUT = 10.0


class ETAEstimator:
    """Live directions lookup, falling back to a constant-speed model."""

    def __init__(
        self,
        directions: Optional[DirectionsProvider] = None,
        timeout: float = DEFAULT_DIRECTIONS_TIMEOUT,
        speed_kmh: float = AVERAGE_SPEED_KMH,
    ) -> None:
        self.directions = directions
        self.timeout = timeout
        self.speed_kmh = speed_kmh

    def eta(self, origin: Coordinates, destination: Coordinates, now: Optional[datetime] = None) -> EtaEstimate:
        now = now or utcnow()
        if self.directions is None:
            return self.estimate(origin, destination, now)

        try:
            leg = self.directions.directions(origin, destination, timeout=self.timeout)
        except Exception as exc:
            logger.warning("Directions lookup failed, using constant-speed estimate: %s", exc)
            return self.estimate(origin, destination, now, provenance=Provenance.FALLBACK, error=str(exc))

        return EtaEstimate(
            distance_km=leg.distance_m / 1000,
            duration_minutes=round(leg.duration_s / 60),
            estimated_arrival=now + timedelta(seconds=leg.duration_s),
            provenance=Provenance.LIVE,
        )

    def estimate(
        self,
        origin: Coordinates,
        destination: Coordinates,
        now: Optional[datetime] = None,
        provenance: Provenance = Provenance.ESTIMATED,
        error: Optional[str] = None,
    ) -> EtaEstimate:
        now = now or utcnow()
        distance = distance_km(origin, destination)
        minutes = math.ceil(travel_minutes(distance, self.speed_kmh))
        return EtaEstimate(
            distance_km=distance,
            duration_minutes=minutes,
            estimated_arrival=now + timedelta(minutes=minutes),
            provenance=provenance,
            error=error,
        )

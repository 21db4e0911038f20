from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from rescue_ops.eta import DEFAULT_DIRECTIONS_TIMEOUT
from rescue_ops.geo import distance_km
from rescue_ops.models import Coordinates, Facility
from rescue_ops.providers import FacilityProvider

logger = logging.getLogger(__name__)

HOSPITAL = "hospital"
POLICE = "police"
FACILITY_RADIUS_KM = 5.0


class FacilityFinder:
    """Nearby hospitals and police stations, from a places provider or a local catalog."""

    def __init__(
        self,
        provider: Optional[FacilityProvider] = None,
        catalog: Sequence[Facility] = (),
        timeout: float = DEFAULT_DIRECTIONS_TIMEOUT,
    ) -> None:
        self.provider = provider
        self.catalog = list(catalog)
        self.timeout = timeout

    def nearby(self, center: Coordinates, kind: str, radius_km: float = FACILITY_RADIUS_KM) -> List[Facility]:
        if self.provider is None:
            return self.local(center, kind, radius_km)

        try:
            found = self.provider.nearby_facilities(center, kind, int(radius_km * 1000), timeout=self.timeout)
        except Exception as exc:
            logger.warning("Nearby %s lookup failed, using local catalog: %s", kind, exc)
            return self.local(center, kind, radius_km)

        return sorted(
            (replace(f, distance_km=distance_km(center, f.location)) for f in found),
            key=lambda f: f.distance_km,
        )

    def local(self, center: Coordinates, kind: str, radius_km: float = FACILITY_RADIUS_KM) -> List[Facility]:
        nearby = []
        for facility in self.catalog:
            if facility.kind != kind:
                continue
            distance = distance_km(center, facility.location)
            if distance <= radius_km:
                nearby.append(replace(facility, distance_km=distance))
        nearby.sort(key=lambda f: f.distance_km)
        return nearby

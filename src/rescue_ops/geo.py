from __future__ import annotations

import math
from typing import Sequence

from rescue_ops.models import Coordinates

EARTH_RADIUS_KM = 6371.0

# Walking pace through debris and flooded streets.
AVERAGE_SPEED_KMH = 5.0


def distance_km(origin: Coordinates, target: Coordinates) -> float:
    lat1, lon1 = math.radians(origin.lat), math.radians(origin.lng)
    lat2, lon2 = math.radians(target.lat), math.radians(target.lng)
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push a just outside [0, 1] for near-antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def cluster_spread(points: Sequence[Coordinates]) -> float:
    """Largest pairwise distance in km; 0 for fewer than two points."""
    spread = 0.0
    for i in range(len(points)):
        for j in range(i + 1, len(points)):
            spread = max(spread, distance_km(points[i], points[j]))
    return spread


def travel_minutes(distance: float, speed_kmh: float = AVERAGE_SPEED_KMH) -> float:
    return distance / speed_kmh * 60


def within_radius(center: Coordinates, point: Coordinates, radius_km: float) -> bool:
    return distance_km(center, point) <= radius_km

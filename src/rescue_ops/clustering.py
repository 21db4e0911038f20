from __future__ import annotations

from typing import Callable, List, Optional, Sequence, TypeVar

from rescue_ops.errors import ValidationError
from rescue_ops.geo import distance_km
from rescue_ops.models import Coordinates

T = TypeVar("T")

DEFAULT_RADIUS_KM = 2.0
# Batch size for route grouping at the default radius.
ROUTE_CLUSTER_SIZE = 10


def _identity(item):
    return item


def cluster_by_proximity(
    items: Sequence[T],
    radius_km: float = DEFAULT_RADIUS_KM,
    max_cluster_size: Optional[int] = None,
    location: Callable[[T], Coordinates] = _identity,
) -> List[List[T]]:
    """
    Greedy seed-absorption clustering.

    Items are visited in input order. Each unassigned item seeds a new cluster
    and absorbs the later unassigned items lying within ``radius_km`` of the
    seed (not of the cluster), until ``max_cluster_size`` is reached. The
    result depends on input order; callers wanting reproducible groups must
    keep their ordering stable.
    """
    if radius_km < 0:
        raise ValidationError("radius_km must be non-negative")
    if max_cluster_size is not None and max_cluster_size < 1:
        raise ValidationError("max_cluster_size must be at least 1")

    clusters: List[List[T]] = []
    used = [False] * len(items)

    for i, seed in enumerate(items):
        if used[i]:
            continue
        used[i] = True
        cluster = [seed]
        seed_location = location(seed)

        for j in range(i + 1, len(items)):
            if max_cluster_size is not None and len(cluster) >= max_cluster_size:
                break
            if used[j]:
                continue
            if distance_km(seed_location, location(items[j])) <= radius_km:
                cluster.append(items[j])
                used[j] = True

        clusters.append(cluster)

    return clusters

import math

import pytest

from rescue_ops.errors import ValidationError
from rescue_ops.geo import cluster_spread, distance_km, travel_minutes, within_radius
from rescue_ops.models import Coordinates


def test_distance_of_one_degree_latitude() -> None:
    assert distance_km(Coordinates(0, 0), Coordinates(1, 0)) == pytest.approx(111.195, abs=0.01)


def test_distance_is_symmetric_and_zero_on_same_point() -> None:
    a = Coordinates(14.5995, 120.9842)
    b = Coordinates(14.6760, 121.0437)
    assert distance_km(a, a) == 0
    assert distance_km(a, b) == pytest.approx(distance_km(b, a))


def test_within_radius_is_inclusive() -> None:
    center = Coordinates(0, 0)
    point = Coordinates(0, 0.01)
    assert within_radius(center, point, distance_km(center, point))
    assert not within_radius(center, point, 1.0)


def test_cluster_spread_is_largest_pairwise_distance() -> None:
    points = [Coordinates(0, 0), Coordinates(0, 0.01), Coordinates(0, 0.03)]
    assert cluster_spread(points) == pytest.approx(distance_km(points[0], points[2]))
    assert cluster_spread(points[:1]) == 0.0


def test_travel_minutes_uses_walking_pace() -> None:
    assert travel_minutes(5.0) == pytest.approx(60.0)
    assert travel_minutes(10.0, speed_kmh=40.0) == pytest.approx(15.0)


@pytest.mark.parametrize("lat,lng", [(91, 0), (0, -181), (math.nan, 0), (True, 0), ("1", 2)])
def test_coordinates_reject_invalid_values(lat, lng) -> None:
    with pytest.raises(ValidationError):
        Coordinates(lat, lng)


def test_coordinates_from_mapping_accepts_both_spellings() -> None:
    assert Coordinates.from_mapping({"lat": 1, "lng": 2}) == Coordinates(1.0, 2.0)
    assert Coordinates.from_mapping({"latitude": "1.5", "longitude": "2.5"}) == Coordinates(1.5, 2.5)
    with pytest.raises(ValidationError):
        Coordinates.from_mapping({"lat": 1})
    with pytest.raises(ValidationError):
        Coordinates.from_mapping(None)


def test_antipodal_pairs_never_raise() -> None:
    half_circumference = math.pi * 6371.0
    for step in range(0, 258):
        lat = -90 + step * 0.7
        distance = distance_km(Coordinates(lat, 10.0), Coordinates(-lat, -170.0))
        assert distance == pytest.approx(half_circumference, rel=1e-6)

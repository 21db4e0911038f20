import math
from datetime import datetime, timedelta, timezone

import pytest

from rescue_ops.errors import ExternalServiceError
from rescue_ops.eta import ETAEstimator
from rescue_ops.geo import distance_km
from rescue_ops.models import Coordinates, Provenance
from rescue_ops.providers import TravelLeg

NOW = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
ORIGIN = Coordinates(14.5995, 120.9842)
TARGET = Coordinates(14.6090, 120.9980)


class FixedDirections:
    def __init__(self, leg: TravelLeg) -> None:
        self.leg = leg
        self.timeouts = []

    def directions(self, origin, destination, *, timeout):
        self.timeouts.append(timeout)
        return self.leg


class FailingDirections:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def directions(self, origin, destination, *, timeout):
        raise self.exc


def test_estimate_without_provider_uses_walking_pace() -> None:
    eta = ETAEstimator().eta(ORIGIN, TARGET, now=NOW)
    distance = distance_km(ORIGIN, TARGET)

    assert eta.provenance is Provenance.ESTIMATED
    assert eta.distance_km == pytest.approx(distance)
    assert eta.duration_minutes == math.ceil(distance / 5.0 * 60)
    assert eta.estimated_arrival == NOW + timedelta(minutes=eta.duration_minutes)
    assert eta.error is None
    assert eta.is_degraded


def test_same_point_is_zero_minutes() -> None:
    eta = ETAEstimator().eta(ORIGIN, ORIGIN, now=NOW)
    assert eta.duration_minutes == 0
    assert eta.estimated_arrival == NOW


def test_live_directions() -> None:
    provider = FixedDirections(TravelLeg(distance_m=3200.0, duration_s=420.0))
    eta = ETAEstimator(provider, timeout=4.0).eta(ORIGIN, TARGET, now=NOW)

    assert provider.timeouts == [4.0]
    assert eta.provenance is Provenance.LIVE
    assert eta.distance_km == pytest.approx(3.2)
    assert eta.duration_minutes == 7
    assert eta.estimated_arrival == NOW + timedelta(seconds=420)
    assert not eta.is_degraded


@pytest.mark.parametrize("exc", [ExternalServiceError("ZERO_RESULTS"), TimeoutError("slow")])
def test_directions_failure_falls_back(exc) -> None:
    eta = ETAEstimator(FailingDirections(exc)).eta(ORIGIN, TARGET, now=NOW)

    assert eta.provenance is Provenance.FALLBACK
    assert eta.error == str(exc)
    assert eta.duration_minutes == math.ceil(distance_km(ORIGIN, TARGET) / 5.0 * 60)


@pytest.mark.parametrize(
    "exc",
    [OSError("network unreachable"), KeyError("routes"), ValueError("bad number"), RuntimeError("client closed")],
)
def test_any_directions_exception_falls_back(exc) -> None:
    eta = ETAEstimator(FailingDirections(exc)).eta(ORIGIN, TARGET, now=NOW)

    assert eta.provenance is Provenance.FALLBACK
    assert eta.error == str(exc)
    assert eta.estimated_arrival == NOW + timedelta(minutes=eta.duration_minutes)

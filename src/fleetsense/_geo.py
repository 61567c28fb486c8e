"""Geospatial helpers."""

from __future__ import annotations

import math
from collections.abc import Iterable

from fleetsense._constants import EARTH_RADIUS_KM


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two lat/lon points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres."""
    return haversine_km(lat1, lon1, lat2, lon2) * 1000.0


def path_length_km(points: Iterable[tuple[float, float]]) -> float:
    """Sum of great-circle legs along an ordered sequence of ``(lat, lon)`` points."""
    total = 0.0
    previous: tuple[float, float] | None = None
    for point in points:
        if previous is not None:
            total += haversine_km(previous[0], previous[1], point[0], point[1])
        previous = point
    return total


def midpoint(lat1: float, lon1: float, lat2: float, lon2: float) -> tuple[float, float]:
    """Equal-weight centroid of two points in coordinate space.

    Learned locations are tens of metres wide, so the planar mean is
    indistinguishable from the spherical one at that scale.
    """
    return (lat1 + lat2) / 2.0, (lon1 + lon2) / 2.0

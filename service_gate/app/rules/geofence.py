"""
Geofence geometry for location-based rules.
"""

import math
from dataclasses import dataclass
from enum import IntFlag


# Mean Earth radius in meters (IUGG)
EARTH_RADIUS_METERS = 6371008.8


@dataclass(frozen=True)
class Geofence:
    """A point on the Earth with an accuracy radius in meters."""
    latitude: float
    longitude: float
    radius: float

    def __post_init__(self):
        if self.radius < 0:
            raise ValueError(f"geofence radius must be non-negative, got {self.radius}")


class SetIntersection(IntFlag):
    """Relationship between two sets.

    No DISJOINT bit means the sets overlap. SUBSET and SUPERSET describe
    the first set relative to the second.
    """
    DISJOINT = 1
    SUBSET = 2
    SUPERSET = 4


def great_circle_distance(a: Geofence, b: Geofence) -> float:
    """Haversine distance between the centers of two geofences, in meters."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlng = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    # Clamp rounding noise so asin stays in its domain
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(h))


def intersection(a: Geofence, b: Geofence) -> SetIntersection:
    """Describe how geofence ``a`` relates to geofence ``b``."""
    distance = great_circle_distance(a, b)

    if distance >= a.radius + b.radius:
        return SetIntersection.DISJOINT

    result = SetIntersection(0)
    if a.radius - b.radius > distance:
        result |= SetIntersection.SUPERSET
    if b.radius - a.radius > distance:
        result |= SetIntersection.SUBSET
    return result

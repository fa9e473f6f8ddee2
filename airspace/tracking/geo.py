"""
Geographic eligibility and heading helpers.

A state vector is eligible when it lies within the monitoring radius
(great-circle distance) and its aircraft category is in the allowlist.
The filter works on any object exposing `latitude`, `longitude` and
`category` attributes, which in practice is a parsed StateVector.
"""

import math
from typing import Any, Iterable, Optional, Sequence, Tuple

EARTH_RADIUS_KM = 6371.0

DIRECTION_LABELS = {
    'en': ('N', 'NE', 'E', 'SE', 'S', 'SW', 'W', 'NW'),
    'de': ('N', 'NO', 'O', 'SO', 'S', 'SW', 'W', 'NW'),
}


def haversine_distance(
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> float:
    """
    Calculate great-circle distance between two points in kilometers.

    Uses the Haversine formula for accuracy over short to medium distances.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) *
        math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def direction_labels(language: str) -> Sequence[str]:
    """Compass labels for a display language, English when unknown."""
    return DIRECTION_LABELS.get(language, DIRECTION_LABELS['en'])


def degrees_to_direction(
    degrees: Optional[float],
    labels: Sequence[str] = DIRECTION_LABELS['en'],
) -> Optional[str]:
    """
    Convert a true track in degrees to one of 8 compass labels.

    Any angle is normalised into [0, 360) first, then rounded to the
    nearest 45 degree octant (so 22.5 maps to NE and 360 maps to N).
    Returns None when no heading is reported.
    """
    if degrees is None:
        return None
    try:
        degrees = float(degrees)
    except (TypeError, ValueError):
        return None
    if math.isnan(degrees) or math.isinf(degrees):
        return None

    degrees = degrees % 360.0
    index = int(math.floor(degrees / 45.0 + 0.5)) % 8
    return labels[index]


def _coordinate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


class GeoFilter:
    """
    Distance and category eligibility test around a monitoring center.

    Args:
        center: (lat, lon) of the monitoring center
        radius_km: inclusive radius in kilometers
        category_allowlist: accepted aircraft category codes; empty accepts all
    """

    def __init__(
        self,
        center: Tuple[float, float],
        radius_km: float,
        category_allowlist: Iterable[int] = (),
    ):
        self.center = center
        self.radius_km = radius_km
        self.category_allowlist = frozenset(category_allowlist)

    def distance_to(self, state: Any) -> Optional[float]:
        """Distance from the center in km, or None without a usable position."""
        lat = _coordinate(getattr(state, 'latitude', None))
        lon = _coordinate(getattr(state, 'longitude', None))
        if lat is None or lon is None:
            return None
        return haversine_distance(self.center[0], self.center[1], lat, lon)

    def within_radius(self, state: Any) -> bool:
        distance = self.distance_to(state)
        return distance is not None and distance <= self.radius_km

    def passes_category(self, state: Any) -> bool:
        category = getattr(state, 'category', None)
        if category is None or not self.category_allowlist:
            return True
        return category in self.category_allowlist

    def is_eligible(self, state: Any) -> bool:
        return self.within_radius(state) and self.passes_category(state)


def is_eligible(
    state: Any,
    center: Tuple[float, float],
    radius_km: float,
    category_allowlist: Iterable[int] = (),
) -> bool:
    """Functional form of GeoFilter.is_eligible."""
    return GeoFilter(center, radius_km, category_allowlist).is_eligible(state)

"""Point-to-point distance helpers."""

import math
from typing import Optional

from pydantic import ValidationError

from workmatch.domain.models import Coordinates

from .exceptions import InvalidCoordinatesError

EARTH_RADIUS_MILES = 3959.0


def haversine_miles(origin: Coordinates, destination: Coordinates) -> float:
    """Great-circle distance in miles between two points (haversine formula)."""
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(destination.latitude)
    d_lat = math.radians(destination.latitude - origin.latitude)
    d_lon = math.radians(destination.longitude - origin.longitude)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def degree_distance(origin: Coordinates, destination: Coordinates) -> float:
    """Euclidean distance in raw coordinate-degree space.

    Only the listing DISTANCE sort uses this. It is not a physical
    distance and disagrees with haversine_miles() away from the equator.
    """
    return math.hypot(
        destination.latitude - origin.latitude,
        destination.longitude - origin.longitude,
    )


def coordinates_from(
    latitude: Optional[float], longitude: Optional[float]
) -> Optional[Coordinates]:
    """Build Coordinates from loose values.

    Returns None when both values are missing.

    Raises:
        InvalidCoordinatesError: If only one value is given, or either is
            non-numeric, non-finite, or out of range
    """
    if latitude is None and longitude is None:
        return None

    if latitude is None or longitude is None:
        raise InvalidCoordinatesError(
            "latitude and longitude must be provided together"
        )

    try:
        return Coordinates(latitude=latitude, longitude=longitude)
    except ValidationError as e:
        raise InvalidCoordinatesError(
            f"Invalid coordinates ({latitude!r}, {longitude!r}): {e.errors()[0]['msg']}"
        ) from e

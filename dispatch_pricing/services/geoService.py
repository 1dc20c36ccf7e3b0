"""
Geo Service
===========

Geographic utility functions used by the pricing engine: great-circle
distance, nearest service hub, radius filtering and the coarse surge grid.

Uses the haversine formula for great-circle distance between two points
on Earth's surface.  Accurate enough for service radius calculations
(error < 0.5% for distances under 100 miles).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

T = TypeVar("T")

# Earth's mean radius in miles
EARTH_RADIUS_MILES: float = 3959.0


@dataclass(frozen=True)
class Hub:
    """A fixed operations base used for remote-area surcharges."""

    name: str
    lat: float
    lng: float


DEFAULT_HUBS: tuple[Hub, ...] = (
    Hub(name="NYC Hub", lat=40.7128, lng=-74.0060),
    Hub(name="LA Hub", lat=34.0522, lng=-118.2437),
    Hub(name="Chicago Hub", lat=41.8781, lng=-87.6298),
)


def haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points using the
    haversine formula.

    Args:
        lat1: Latitude of point 1 in decimal degrees.
        lon1: Longitude of point 1 in decimal degrees.
        lat2: Latitude of point 2 in decimal degrees.
        lon2: Longitude of point 2 in decimal degrees.

    Returns:
        Distance in miles.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_MILES * c


def nearest_hub_distance(
    lat: float,
    lng: float,
    hubs: Sequence[Hub] = DEFAULT_HUBS,
) -> float:
    """Distance in miles to the closest hub, or ``inf`` when there are none."""
    return min(
        (haversine_distance(lat, lng, hub.lat, hub.lng) for hub in hubs),
        default=math.inf,
    )


def zone_cell(lat: float, lng: float, cell_size: float = 0.1) -> tuple[int, int]:
    """Integer ``(row, col)`` of the grid cell containing a coordinate.

    Cells are ``cell_size`` degrees on each side, floored so that negative
    coordinates bucket consistently (e.g. -74.006 -> -741 at 0.1).
    """
    return math.floor(lat / cell_size), math.floor(lng / cell_size)


def zone_key(lat: float, lng: float, cell_size: float = 0.1) -> str:
    """Return the grid-cell key for a coordinate."""
    row, col = zone_cell(lat, lng, cell_size)
    return f"{row}_{col}"


def bounding_box(
    lat: float,
    lng: float,
    radius_miles: float,
) -> tuple[float, float, float, float]:
    """``(min_lat, max_lat, min_lng, max_lng)`` enclosing a radius.

    A coarse prefilter for queries; callers still apply the exact haversine
    check.  Longitude spans the whole globe when the circle reaches a pole.
    """
    angular = radius_miles / EARTH_RADIUS_MILES
    lat_delta = math.degrees(angular)
    cos_lat = math.cos(math.radians(lat))
    if cos_lat <= math.sin(angular):
        return lat - lat_delta, lat + lat_delta, -180.0, 180.0
    lng_delta = math.degrees(math.asin(math.sin(angular) / cos_lat))
    return lat - lat_delta, lat + lat_delta, lng - lng_delta, lng + lng_delta


def filter_within_radius(
    items: Iterable[T],
    center_lat: float,
    center_lng: float,
    radius_miles: float,
    position: Callable[[T], Optional[tuple[Any, Any]]],
) -> list[T]:
    """Keep the items whose position lies within ``radius_miles`` of a center.

    Args:
        items: Records to filter.
        center_lat: Latitude of the reference point.
        center_lng: Longitude of the reference point.
        radius_miles: Inclusive radius.
        position: Returns ``(lat, lng)`` for an item, or None when the item
            has no known location (such items are skipped).

    Returns:
        The matching items in their original order.
    """
    results: list[T] = []
    for item in items:
        pos = position(item)
        if pos is None or pos[0] is None or pos[1] is None:
            continue
        distance = haversine_distance(center_lat, center_lng, float(pos[0]), float(pos[1]))
        if distance <= radius_miles:
            results.append(item)
    return results

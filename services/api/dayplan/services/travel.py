"""Travel-time lookup.

The planner only needs "how many minutes from A to B by method M". Anything
that satisfies `TravelLookup` can be plugged in (a maps API client, a fixed
table in tests). The default estimator works from great-circle distance and
per-method speeds; `CachedTravelLookup` puts Redis in front of any lookup.
"""

import math
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ..errors import DayplanError, InvalidInputError, StorageError
from ..infra.redis_cache import cache_key, get_or_set_json_sync
from ..settings import settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Straight-line distance undercounts real routes
ROUTE_FACTOR = 1.3

# km/h
TRAVEL_SPEEDS = {
    "walk": 5.0,
    "bike": 15.0,
    "bus": 18.0,
    "train": 30.0,
    "car": 25.0,
}

# Fixed minutes per trip: parking, waiting, walking to the station
TRAVEL_OVERHEAD_MINUTES = {
    "walk": 0,
    "bike": 5,
    "bus": 8,
    "train": 10,
    "car": 5,
}

TRAVEL_METHODS = tuple(TRAVEL_SPEEDS)


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    name: Optional[str] = None

    def distance_km(self, other: "Location") -> float:
        """Haversine distance in kilometers."""
        lat1, lon1 = math.radians(self.latitude), math.radians(self.longitude)
        lat2, lon2 = math.radians(other.latitude), math.radians(other.longitude)

        dlat = lat2 - lat1
        dlon = lon2 - lon1

        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        c = 2 * math.asin(math.sqrt(a))

        return EARTH_RADIUS_KM * c


def home_location() -> Location:
    return Location(
        latitude=settings.home_latitude,
        longitude=settings.home_longitude,
        name=settings.home_name,
    )


class TravelLookup(Protocol):
    def __call__(self, origin: Location, destination: Location, method: str) -> int:
        ...


def validate_travel_method(method: str) -> str:
    if method not in TRAVEL_SPEEDS:
        raise InvalidInputError(
            f"Unknown travel method '{method}'",
            allowed=list(TRAVEL_METHODS),
        )
    return method


def lookup_minutes(lookup: TravelLookup, origin: Location, destination: Location, method: str) -> int:
    """Ask `lookup` for minutes; collaborator failures become StorageError (503)."""
    try:
        return int(lookup(origin, destination, method))
    except DayplanError:
        raise
    except Exception as e:
        logger.error(f"Travel lookup failed ({method}, {origin} -> {destination}): {e}")
        raise StorageError("Travel lookup failed", cause=e)


def estimate_travel_minutes(origin: Location, destination: Location, method: str) -> int:
    """Estimate door-to-door minutes, rounded up."""
    validate_travel_method(method)

    distance = origin.distance_km(destination)
    if distance == 0:
        return 0

    moving = (distance * ROUTE_FACTOR / TRAVEL_SPEEDS[method]) * 60
    total = math.ceil(moving + TRAVEL_OVERHEAD_MINUTES[method])
    return max(1, total)


class CachedTravelLookup:
    """Caches another lookup's answers in Redis, keyed by rounded coordinates."""

    def __init__(self, lookup: TravelLookup = estimate_travel_minutes, ttl_sec: Optional[int] = None):
        self.lookup = lookup
        self.ttl_sec = ttl_sec if ttl_sec is not None else settings.travel_cache_ttl_sec

    def _key(self, origin: Location, destination: Location, method: str) -> str:
        # ~11m precision is plenty for travel estimates
        return cache_key(
            "travel",
            method,
            f"{origin.latitude:.4f},{origin.longitude:.4f}",
            f"{destination.latitude:.4f},{destination.longitude:.4f}",
        )

    def __call__(self, origin: Location, destination: Location, method: str) -> int:
        validate_travel_method(method)
        key = self._key(origin, destination, method)
        minutes, hit = get_or_set_json_sync(
            key, self.ttl_sec, lambda: self.lookup(origin, destination, method)
        )
        if hit:
            logger.debug(f"Travel cache hit {key}")
        return int(minutes)


def get_travel_lookup() -> TravelLookup:
    """FastAPI dependency; override in tests for fixed durations."""
    return CachedTravelLookup()

"""Cached, batched travel-time lookups for the transit strategy.

The provider never fails a scheduling run: backend errors, missing elements
and a missing backend all degrade to a conservative default (or a straight
line estimate when configured) and are logged.
"""

from __future__ import annotations

import logging
import math
from typing import Protocol

from .errors import TravelTimeLookupError
from .models import Location, TransportMode

logger = logging.getLogger(__name__)

DEFAULT_TRAVEL_MINUTES = 60
MAX_DESTINATIONS_PER_REQUEST = 25

# Average door-to-door speeds (km/h) for the straight-line estimate.
ESTIMATE_SPEED_KMH = {
    TransportMode.DRIVING: 40.0,
    TransportMode.TRANSIT: 30.0,
    TransportMode.WALKING: 5.0,
    TransportMode.BICYCLING: 15.0,
}
EARTH_RADIUS_KM = 6371.0

CacheKey = tuple[str, str, str]


class TravelTimeCache(Protocol):
    def get(self, key: CacheKey) -> int | None: ...

    def set(self, key: CacheKey, minutes: int) -> None: ...


class DistanceMatrixBackend(Protocol):
    def durations(
        self,
        origin: Location,
        destinations: list[Location],
        mode: TransportMode,
    ) -> list[int | None]:
        """Minutes per destination (None where the service had no route)."""
        ...


class InMemoryTravelTimeCache:
    """Plain dict cache. One instance per request unless sharing is intended."""

    def __init__(self) -> None:
        self._values: dict[CacheKey, int] = {}

    def get(self, key: CacheKey) -> int | None:
        return self._values.get(key)

    def set(self, key: CacheKey, minutes: int) -> None:
        self._values[key] = int(minutes)

    def __len__(self) -> int:
        return len(self._values)


def haversine_km(a: Location, b: Location) -> float:
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def estimate_travel_minutes(origin: Location, destination: Location, mode: TransportMode) -> int:
    """Straight-line estimate rounded up to the next 10 minutes."""
    speed = ESTIMATE_SPEED_KMH.get(mode, ESTIMATE_SPEED_KMH[TransportMode.TRANSIT])
    minutes = haversine_km(origin, destination) / speed * 60
    return int(math.ceil(minutes / 10.0) * 10)


class TravelTimeProvider:
    def __init__(
        self,
        backend: DistanceMatrixBackend | None = None,
        *,
        cache: TravelTimeCache | None = None,
        default_minutes: int = DEFAULT_TRAVEL_MINUTES,
        batch_size: int = MAX_DESTINATIONS_PER_REQUEST,
        estimate_on_failure: bool = False,
    ):
        self.backend = backend
        self.cache = cache if cache is not None else InMemoryTravelTimeCache()
        self.default_minutes = default_minutes
        self.batch_size = max(1, min(batch_size, MAX_DESTINATIONS_PER_REQUEST))
        self.estimate_on_failure = estimate_on_failure

    @staticmethod
    def cache_key(origin: Location, destination: Location, mode: TransportMode) -> CacheKey:
        return (origin.key, destination.key, mode.value)

    def _fallback(self, origin: Location, destination: Location, mode: TransportMode) -> int:
        if self.estimate_on_failure:
            return estimate_travel_minutes(origin, destination, mode)
        return self.default_minutes

    def lookup(self, origin: Location, destination: Location, mode: TransportMode) -> int:
        return self.batch_lookup(origin, {"_": destination}, mode)["_"]

    def batch_lookup(
        self,
        origin: Location,
        destinations: dict[str, Location],
        mode: TransportMode,
    ) -> dict[str, int]:
        """Travel minutes from ``origin`` to every destination, keyed like ``destinations``."""
        result: dict[str, int] = {}
        misses: dict[str, Location] = {}
        for member_id, destination in destinations.items():
            if destination.key == origin.key:
                result[member_id] = 0
                continue
            cached = self.cache.get(self.cache_key(origin, destination, mode))
            if cached is not None:
                result[member_id] = cached
            else:
                misses.setdefault(destination.key, destination)

        fetched = self._fetch(origin, list(misses.values()), mode) if misses else {}
        for member_id, destination in destinations.items():
            if member_id in result:
                continue
            minutes = fetched.get(destination.key)
            result[member_id] = minutes if minutes is not None else self._fallback(origin, destination, mode)
        return result

    def _fetch(self, origin: Location, destinations: list[Location], mode: TransportMode) -> dict[str, int]:
        found: dict[str, int] = {}
        if self.backend is None:
            logger.warning(
                "no distance-matrix backend configured, using fallback travel time for %d destinations",
                len(destinations),
            )
            return found

        for offset in range(0, len(destinations), self.batch_size):
            batch = destinations[offset : offset + self.batch_size]
            try:
                durations = self.backend.durations(origin, batch, mode)
            except TravelTimeLookupError as exc:
                logger.warning("travel time lookup failed for %d destinations: %s", len(batch), exc)
                continue
            for destination, minutes in zip(batch, durations):
                if minutes is None:
                    logger.warning("no route from %s to %s (%s)", origin.key, destination.key, mode.value)
                    continue
                found[destination.key] = int(minutes)
                self.cache.set(self.cache_key(origin, destination, mode), int(minutes))
        return found

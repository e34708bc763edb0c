"""Tests for the cached, batched travel-time provider."""

from scheduling_core.errors import TravelTimeLookupError
from scheduling_core.models import Location, TransportMode
from scheduling_core.travel_time import (
    DEFAULT_TRAVEL_MINUTES,
    InMemoryTravelTimeCache,
    TravelTimeProvider,
    estimate_travel_minutes,
)

ORIGIN = Location(37.50, 127.00)


class RecordingBackend:
    def __init__(self, minutes=None, default=15, error=None):
        self.minutes = minutes or {}
        self.default = default
        self.error = error
        self.calls = []

    def durations(self, origin, destinations, mode):
        self.calls.append([d.key for d in destinations])
        if self.error is not None:
            raise self.error
        return [self.minutes.get(d.key, self.default) for d in destinations]


def _destinations(count):
    return {f"m{i}": Location(37.0 + i / 100, 126.0) for i in range(count)}


class TestBatchLookup:
    def test_batches_of_at_most_25(self):
        backend = RecordingBackend()
        provider = TravelTimeProvider(backend)
        result = provider.batch_lookup(ORIGIN, _destinations(30), TransportMode.TRANSIT)
        assert len(result) == 30
        assert [len(call) for call in backend.calls] == [25, 5]

    def test_batch_size_clamped(self):
        assert TravelTimeProvider(batch_size=100).batch_size == 25
        assert TravelTimeProvider(batch_size=0).batch_size == 1

    def test_cached_pairs_not_requested_again(self):
        backend = RecordingBackend()
        provider = TravelTimeProvider(backend)
        destinations = _destinations(3)
        provider.batch_lookup(ORIGIN, destinations, TransportMode.TRANSIT)
        provider.batch_lookup(ORIGIN, destinations, TransportMode.TRANSIT)
        assert len(backend.calls) == 1

    def test_cache_is_keyed_by_mode(self):
        backend = RecordingBackend()
        provider = TravelTimeProvider(backend)
        destinations = _destinations(2)
        provider.batch_lookup(ORIGIN, destinations, TransportMode.TRANSIT)
        provider.batch_lookup(ORIGIN, destinations, TransportMode.DRIVING)
        assert len(backend.calls) == 2

    def test_shared_cache(self):
        cache = InMemoryTravelTimeCache()
        first = TravelTimeProvider(RecordingBackend(), cache=cache)
        first.batch_lookup(ORIGIN, _destinations(4), TransportMode.TRANSIT)
        second_backend = RecordingBackend()
        TravelTimeProvider(second_backend, cache=cache).batch_lookup(ORIGIN, _destinations(4), TransportMode.TRANSIT)
        assert len(cache) == 4
        assert second_backend.calls == []

    def test_same_location_is_zero_without_request(self):
        backend = RecordingBackend()
        provider = TravelTimeProvider(backend)
        result = provider.batch_lookup(ORIGIN, {"m1": Location(37.50, 127.00)}, TransportMode.TRANSIT)
        assert result == {"m1": 0}
        assert backend.calls == []

    def test_shared_destinations_requested_once(self):
        backend = RecordingBackend(minutes={"37.6,127.1": 22})
        provider = TravelTimeProvider(backend)
        here = Location(37.6, 127.1)
        result = provider.batch_lookup(ORIGIN, {"a": here, "b": here}, TransportMode.TRANSIT)
        assert result == {"a": 22, "b": 22}
        assert backend.calls == [["37.6,127.1"]]

    def test_single_lookup(self):
        provider = TravelTimeProvider(RecordingBackend(minutes={"37.6,127.1": 42}))
        assert provider.lookup(ORIGIN, Location(37.6, 127.1), TransportMode.WALKING) == 42


class TestFallback:
    def test_no_backend_uses_default(self):
        provider = TravelTimeProvider()
        result = provider.batch_lookup(ORIGIN, _destinations(2), TransportMode.TRANSIT)
        assert set(result.values()) == {DEFAULT_TRAVEL_MINUTES}

    def test_backend_error_uses_default(self):
        provider = TravelTimeProvider(RecordingBackend(error=TravelTimeLookupError("quota exceeded")), default_minutes=45)
        result = provider.batch_lookup(ORIGIN, _destinations(2), TransportMode.TRANSIT)
        assert set(result.values()) == {45}

    def test_missing_route_not_cached(self):
        backend = RecordingBackend(minutes={"37.6,127.1": None})
        provider = TravelTimeProvider(backend)
        destination = {"m1": Location(37.6, 127.1)}
        assert provider.batch_lookup(ORIGIN, destination, TransportMode.TRANSIT) == {"m1": DEFAULT_TRAVEL_MINUTES}
        provider.batch_lookup(ORIGIN, destination, TransportMode.TRANSIT)
        assert len(backend.calls) == 2

    def test_estimate_on_failure(self):
        provider = TravelTimeProvider(estimate_on_failure=True)
        result = provider.batch_lookup(ORIGIN, {"m1": Location(37.50, 127.10)}, TransportMode.TRANSIT)
        assert result == {"m1": 20}

    def test_estimate_rounds_up_to_ten_minutes(self):
        destination = Location(37.50, 127.10)
        assert estimate_travel_minutes(ORIGIN, destination, TransportMode.TRANSIT) == 20
        assert estimate_travel_minutes(ORIGIN, destination, TransportMode.WALKING) == 110

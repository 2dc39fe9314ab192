"""
Shared fixtures: fixed clock, in-memory repository, recording notification sink
"""
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import TransientFailure
from notifications.dispatcher import AlertDispatcher
from services.performance import HistoricalPerformanceAggregator
from services.persistence import InMemoryShipmentRepository
from services.prediction import RuleBasedDelayPredictor
from services.shipment_service import ShipmentService

# A Tuesday
START = datetime(2024, 6, 4, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink:
    """Notification sink that keeps every event it is given"""

    def __init__(self):
        self.events = []

    async def publish(self, event) -> None:
        self.events.append(event)


class FailingSink:
    """Notification sink whose destination is always unreachable"""

    def __init__(self):
        self.attempts = 0

    async def publish(self, event) -> None:
        self.attempts += 1
        raise TransientFailure("Notification destination unreachable")


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def repository():
    return InMemoryShipmentRepository()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return FailingSink()


def build_service(repository, sink, clock, persistence_timeout=1.0):
    return ShipmentService(
        repository=repository,
        dispatcher=AlertDispatcher(sink, timeout_seconds=1.0),
        aggregator=HistoricalPerformanceAggregator(repository),
        predictor=RuleBasedDelayPredictor(),
        clock=clock,
        persistence_timeout=persistence_timeout,
    )


@pytest.fixture
def service(repository, sink, clock):
    return build_service(repository, sink, clock)


@pytest.fixture
def shipment_data():
    """Factory for shipment creation payloads; departs at START, due 24h later"""

    def _make(departure=START, duration_hours=24, **overrides):
        data = {
            "origin": {"party_id": "manufacturer-1", "name": "Acme Manufacturing"},
            "destination": {"party_id": "retailer-1", "name": "Corner Store"},
            "departure_time": departure.isoformat(),
            "expected_arrival": (departure + timedelta(hours=duration_hours)).isoformat(),
        }
        data.update(overrides)
        return data

    return _make


@pytest.fixture
def checkpoint_data():
    """Factory for checkpoint payloads"""

    def _make(name="Hamburg Hub", temperature=None, humidity=None, **overrides):
        data = {
            "handler": {"party_id": "distributor-1", "name": "Fast Freight", "role": "Distributor"},
            "location": {
                "name": name,
                "coordinates": {"latitude": 53.55, "longitude": 9.99},
            },
        }
        environment = {}
        if temperature is not None:
            environment["temperature"] = {"value": temperature, "unit": "Celsius"}
        if humidity is not None:
            environment["humidity"] = {"value": humidity}
        if environment:
            data["environment"] = environment
        data.update(overrides)
        return data

    return _make


@pytest.fixture
def service_factory(clock):
    """Build a service around other collaborators, sharing the fixed clock"""

    def _make(repository, sink, **kwargs):
        return build_service(repository, sink, clock, **kwargs)

    return _make

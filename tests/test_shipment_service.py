"""
Tests for the shipment service
"""
import asyncio
import threading
import time
from datetime import timedelta

import pytest

from core.errors import (
    AlertNotFoundError,
    InvalidStateError,
    PermissionDeniedError,
    ShipmentNotFoundError,
    ShipmentValidationError,
    TransientFailure,
)
from core.schemas import AlertType, Severity, Shipment, ShipmentFilter, ShipmentStatus
from services.performance import InMemoryPerformanceCache
from services.persistence import InMemoryShipmentRepository
from services.shipment_service import Caller
from services.sweep import DelaySweeper

from conftest import START

SENDER = Caller(party_id="manufacturer-1", role="Manufacturer")
RECIPIENT = Caller(party_id="retailer-1", role="Retailer")
ADMIN = Caller(party_id="ops-1", role="Admin")
STRANGER = Caller(party_id="someone-else", role="Customer")


class SlowRepository(InMemoryShipmentRepository):
    """Repository whose loads outlast the persistence timeout"""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    def load(self, shipment_id):
        time.sleep(self.delay)
        return super().load(shipment_id)


class SlowSaveRepository(InMemoryShipmentRepository):
    """Repository whose chosen saves, counted from 1, outlast the persistence timeout"""

    def __init__(self, delay, slow_saves):
        super().__init__()
        self.delay = delay
        self.slow_saves = set(slow_saves)
        self.saves = 0

    def save(self, shipment):
        self.saves += 1
        if self.saves in self.slow_saves:
            time.sleep(self.delay)
        super().save(shipment)


class BlockingLoadRepository(InMemoryShipmentRepository):
    """Repository where loading one shipment waits until the test releases it"""

    def __init__(self):
        super().__init__()
        self.blocked_id = None
        self.entered = threading.Event()
        self.release = threading.Event()

    def load(self, shipment_id):
        if shipment_id == self.blocked_id:
            self.entered.set()
            self.release.wait(timeout=5)
        return super().load(shipment_id)


class SlowInvalidationCache(InMemoryPerformanceCache):
    """Performance cache whose invalidation hangs, like an unresponsive Redis"""

    def __init__(self, delay):
        super().__init__(ttl_seconds=60)
        self.delay = delay

    def invalidate(self, party_id):
        time.sleep(self.delay)
        super().invalidate(party_id)


async def wait_for_event(event, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not event.is_set():
        assert time.monotonic() < deadline, "event never set"
        await asyncio.sleep(0.01)


class TestCreateShipment:
    """Test shipment creation"""

    @pytest.mark.asyncio
    async def test_create_shipment(self, service, repository, shipment_data):
        shipment = await service.create_shipment(shipment_data())

        assert shipment.status == ShipmentStatus.PENDING
        assert shipment.tracking_number.startswith("TRK-")
        assert shipment.created_at == START
        assert shipment.last_prediction is not None
        assert repository.load(shipment.id) == shipment

    @pytest.mark.asyncio
    async def test_arrival_before_departure_is_rejected(self, service, repository, shipment_data):
        with pytest.raises(ShipmentValidationError):
            await service.create_shipment(shipment_data(duration_hours=-1))
        assert len(repository) == 0

    @pytest.mark.asyncio
    async def test_duplicate_tracking_number(self, service, shipment_data):
        await service.create_shipment(shipment_data(tracking_number="TRK-DUP"))
        with pytest.raises(ShipmentValidationError):
            await service.create_shipment(shipment_data(tracking_number="TRK-DUP"))

    @pytest.mark.asyncio
    async def test_concurrent_creates_with_same_tracking_number(self, service, repository, shipment_data):
        results = await asyncio.gather(
            service.create_shipment(shipment_data(tracking_number="TRK-DUP")),
            service.create_shipment(shipment_data(tracking_number="TRK-DUP")),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, Shipment)]) == 1
        assert len([r for r in results if isinstance(r, ShipmentValidationError)]) == 1
        assert len(repository) == 1

    def test_repository_rejects_taken_tracking_number(self, repository, shipment_data):
        repository.save(Shipment.model_validate(shipment_data(tracking_number="TRK-TAKEN")))

        with pytest.raises(ShipmentValidationError):
            repository.save(Shipment.model_validate(shipment_data(tracking_number="TRK-TAKEN")))

    @pytest.mark.asyncio
    async def test_invalid_coordinates(self, service, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        data = checkpoint_data()
        data["location"]["coordinates"]["latitude"] = 91

        with pytest.raises(ShipmentValidationError):
            await service.append_checkpoint(shipment.id, data)
        assert (await service.get_shipment(shipment.id)).checkpoints == []

    @pytest.mark.asyncio
    async def test_unknown_shipment(self, service):
        with pytest.raises(ShipmentNotFoundError):
            await service.get_shipment("missing")


class TestCheckpoints:
    """Test checkpoint recording through the service"""

    @pytest.mark.asyncio
    async def test_first_checkpoint_starts_transit(self, service, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())

        updated = await service.append_checkpoint(shipment.id, checkpoint_data())

        assert updated.status == ShipmentStatus.IN_TRANSIT
        assert updated.current_location.name == "Hamburg Hub"

    @pytest.mark.asyncio
    async def test_hot_reading_raises_alert(self, service, sink, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())

        updated = await service.append_checkpoint(shipment.id, checkpoint_data(temperature=60))

        assert len(updated.alerts) == 1
        assert updated.alerts[0].type == AlertType.ENVIRONMENTAL
        assert updated.alerts[0].severity == Severity.HIGH
        assert [e.alert.id for e in sink.events] == [updated.alerts[0].id]

    @pytest.mark.asyncio
    async def test_humid_reading_does_not_alert(self, service, sink, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        updated = await service.append_checkpoint(shipment.id, checkpoint_data(humidity=95))
        assert updated.alerts == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_alert_survives_unreachable_sink(
        self, service_factory, repository, failing_sink, shipment_data, checkpoint_data
    ):
        service = service_factory(repository, failing_sink)
        shipment = await service.create_shipment(shipment_data())

        await service.append_checkpoint(shipment.id, checkpoint_data(temperature=60))

        assert failing_sink.attempts == 1
        assert len(repository.load(shipment.id).alerts) == 1

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_not_lost(self, service, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())

        await asyncio.gather(*[
            service.append_checkpoint(shipment.id, checkpoint_data(name=f"Hub {i}"))
            for i in range(10)
        ])

        stored = await service.get_shipment(shipment.id)
        assert len(stored.checkpoints) == 10

    @pytest.mark.asyncio
    async def test_terminal_shipment_rejects_checkpoint(self, service, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        await service.cancel(shipment.id, SENDER)

        with pytest.raises(InvalidStateError):
            await service.append_checkpoint(shipment.id, checkpoint_data())

    @pytest.mark.asyncio
    async def test_non_finite_readings_are_rejected(self, service, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        infinite_pressure = checkpoint_data(temperature=4)
        infinite_pressure["environment"]["pressure"] = float("-inf")

        with pytest.raises(ShipmentValidationError):
            await service.append_checkpoint(shipment.id, checkpoint_data(temperature=float("nan")))
        with pytest.raises(ShipmentValidationError):
            await service.append_checkpoint(shipment.id, infinite_pressure)

        stored = await service.get_shipment(shipment.id)
        assert stored.checkpoints == []
        assert stored.status == ShipmentStatus.PENDING


class TestTransitions:
    """Test delivery and cancellation through the service"""

    @pytest.mark.asyncio
    async def test_recipient_marks_delivered(self, service, clock, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data())
        clock.advance(hours=20)

        delivered = await service.mark_delivered(shipment.id, RECIPIENT)

        assert delivered.status == ShipmentStatus.DELIVERED
        assert delivered.actual_arrival == clock.now
        assert delivered.duration_hours == 20
        assert delivered.overrun_hours == 0

    @pytest.mark.asyncio
    async def test_sender_cannot_mark_delivered(self, service, repository, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data())

        with pytest.raises(PermissionDeniedError):
            await service.mark_delivered(shipment.id, SENDER)
        assert repository.load(shipment.id).status == ShipmentStatus.IN_TRANSIT

    @pytest.mark.asyncio
    async def test_admin_may_do_anything(self, service, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data())
        assert (await service.mark_delivered(shipment.id, ADMIN)).status == ShipmentStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_only_sender_cancels(self, service, shipment_data):
        shipment = await service.create_shipment(shipment_data())

        with pytest.raises(PermissionDeniedError):
            await service.cancel(shipment.id, STRANGER)
        assert (await service.cancel(shipment.id, SENDER)).status == ShipmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_pending_cannot_be_delivered(self, service, shipment_data):
        shipment = await service.create_shipment(shipment_data())
        with pytest.raises(InvalidStateError):
            await service.mark_delivered(shipment.id, RECIPIENT)

    @pytest.mark.asyncio
    async def test_delivery_refreshes_sender_history(self, service, clock, shipment_data, checkpoint_data):
        first = await service.create_shipment(shipment_data())
        await service.append_checkpoint(first.id, checkpoint_data())
        clock.advance(hours=30)
        await service.mark_delivered(first.id, RECIPIENT)

        second = await service.create_shipment(shipment_data(departure=clock.now))
        prediction = await service.predict_delay(second.id)

        assert "Historical delays" in prediction.factors
        assert (await service.get_shipment(second.id)).last_prediction == prediction

    @pytest.mark.asyncio
    async def test_hung_cache_does_not_block_delivery(
        self, service_factory, repository, sink, shipment_data, checkpoint_data
    ):
        service = service_factory(repository, sink, persistence_timeout=0.1)
        service.aggregator.cache = SlowInvalidationCache(delay=0.5)
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data())

        started = time.monotonic()
        delivered = await service.mark_delivered(shipment.id, RECIPIENT)

        assert time.monotonic() - started < 0.4
        assert delivered.status == ShipmentStatus.DELIVERED
        assert repository.load(shipment.id).status == ShipmentStatus.DELIVERED


class TestDelaySweep:
    """Test overrun detection through the service"""

    @pytest.mark.asyncio
    async def test_overdue_shipment_is_delayed_once(self, service, sink, clock, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data())
        clock.now = shipment.expected_arrival + timedelta(hours=30)

        report = await service.evaluate_delay_sweep()
        again = await service.evaluate_delay_sweep()

        stored = await service.get_shipment(shipment.id)
        assert report.delayed == [shipment.id]
        assert again.delayed == []
        assert stored.status == ShipmentStatus.DELAYED
        assert len(stored.alerts) == 1
        assert stored.alerts[0].severity == Severity.CRITICAL
        assert "30 hours" in stored.alerts[0].message
        assert len(sink.events) == 1

    @pytest.mark.asyncio
    async def test_delayed_shipment_can_still_be_delivered(self, service, clock, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data())
        clock.now = shipment.expected_arrival + timedelta(hours=2)
        await service.evaluate_delay(shipment.id)

        delivered = await service.mark_delivered(shipment.id, RECIPIENT)
        assert delivered.status == ShipmentStatus.DELIVERED
        assert delivered.overrun_hours == 2

    @pytest.mark.asyncio
    async def test_sweep_skips_terminal_and_pending(self, service, clock, shipment_data):
        pending = await service.create_shipment(shipment_data())
        cancelled = await service.create_shipment(shipment_data())
        await service.cancel(cancelled.id, SENDER)
        clock.advance(days=5)

        report = await service.evaluate_delay_sweep()

        assert report.evaluated == 1
        assert report.delayed == []
        assert (await service.get_shipment(pending.id)).status == ShipmentStatus.PENDING

    @pytest.mark.asyncio
    async def test_sweeper_runs_once(self, service, clock, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data())
        clock.advance(days=2)

        sweeper = DelaySweeper(service, interval_seconds=60)
        report = await sweeper.sweep_once()

        assert report.delayed == [shipment.id]
        assert sweeper.get_monitoring_status()["runs"] == 1

    @pytest.mark.asyncio
    async def test_cancelled_sweep_leaves_shipments_whole(
        self, service_factory, sink, clock, shipment_data, checkpoint_data
    ):
        repository = BlockingLoadRepository()
        service = service_factory(repository, sink)
        first = await service.create_shipment(shipment_data())
        second = await service.create_shipment(shipment_data())
        for shipment in (first, second):
            await service.append_checkpoint(shipment.id, checkpoint_data())
        clock.advance(days=3)
        repository.blocked_id = second.id

        sweep = asyncio.ensure_future(service.evaluate_delay_sweep())
        try:
            await wait_for_event(repository.entered)
            sweep.cancel()
            with pytest.raises(asyncio.CancelledError):
                await sweep
        finally:
            repository.release.set()

        delayed = repository.load(first.id)
        untouched = repository.load(second.id)
        assert delayed.status == ShipmentStatus.DELAYED
        assert len(delayed.alerts) == 1
        assert untouched.status == ShipmentStatus.IN_TRANSIT
        assert untouched.alerts == []

    @pytest.mark.asyncio
    async def test_sweep_cancelled_during_save_is_reverted(
        self, service_factory, sink, clock, shipment_data, checkpoint_data
    ):
        repository = SlowSaveRepository(delay=0.4, slow_saves={3})
        service = service_factory(repository, sink)
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data())
        clock.advance(days=3)

        sweep = asyncio.ensure_future(service.evaluate_delay_sweep())
        await asyncio.sleep(0.2)
        sweep.cancel()
        with pytest.raises(asyncio.CancelledError):
            await sweep

        await asyncio.sleep(0.4)
        stored = repository.load(shipment.id)
        assert stored.status == ShipmentStatus.IN_TRANSIT
        assert stored.alerts == []
        assert sink.events == []

        assert await service.evaluate_delay(shipment.id) is not None
        assert repository.load(shipment.id).status == ShipmentStatus.DELAYED


class TestAnalytics:
    """Test prediction, anomalies and risk through the service"""

    @pytest.mark.asyncio
    async def test_detect_anomalies_is_read_only(self, service, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data(temperature=60))

        anomalies = await service.detect_anomalies(shipment.id)
        await service.detect_anomalies(shipment.id)

        assert len(anomalies) == 1
        assert len((await service.get_shipment(shipment.id)).alerts) == 1

    @pytest.mark.asyncio
    async def test_risk_score_is_cached(self, service, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        await service.append_checkpoint(shipment.id, checkpoint_data(temperature=60))

        score = await service.risk_score(shipment.id)

        assert score.factors.anomaly_count == 1
        assert 0 <= score.score <= 100
        assert (await service.get_shipment(shipment.id)).last_risk_score == score


class TestAlertsAndTracking:

    @pytest.mark.asyncio
    async def test_resolve_alert(self, service, clock, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data())
        updated = await service.append_checkpoint(shipment.id, checkpoint_data(temperature=60))
        alert_id = updated.alerts[0].id

        resolved = await service.resolve_alert(shipment.id, alert_id)

        assert resolved.is_resolved
        assert resolved.resolved_at == clock.now
        assert (await service.get_shipment(shipment.id)).open_alerts == []
        with pytest.raises(InvalidStateError):
            await service.resolve_alert(shipment.id, alert_id)

    @pytest.mark.asyncio
    async def test_unknown_alert(self, service, shipment_data):
        shipment = await service.create_shipment(shipment_data())
        with pytest.raises(AlertNotFoundError):
            await service.resolve_alert(shipment.id, "missing")

    @pytest.mark.asyncio
    async def test_track_by_tracking_number(self, service, clock, shipment_data, checkpoint_data):
        shipment = await service.create_shipment(shipment_data(tracking_number="TRK-PUBLIC"))
        await service.append_checkpoint(shipment.id, checkpoint_data())
        clock.advance(hours=6)

        view = await service.track("TRK-PUBLIC")

        assert view.status == ShipmentStatus.IN_TRANSIT
        assert view.progress_percentage == 25
        assert len(view.checkpoints) == 1

        with pytest.raises(ShipmentNotFoundError):
            await service.track("TRK-NOPE")

    @pytest.mark.asyncio
    async def test_list_shipments_filters(self, service, shipment_data):
        await service.create_shipment(shipment_data())
        cancelled = await service.create_shipment(shipment_data())
        await service.cancel(cancelled.id, SENDER)

        result = await service.list_shipments(ShipmentFilter(status=ShipmentStatus.CANCELLED))
        assert [s.id for s in result] == [cancelled.id]


class TestCollaboratorTimeouts:

    @pytest.mark.asyncio
    async def test_slow_repository_is_transient(self, service_factory, sink, shipment_data):
        repository = SlowRepository(delay=0.5)
        service = service_factory(repository, sink, persistence_timeout=0.05)
        shipment = await service.create_shipment(shipment_data())

        with pytest.raises(TransientFailure):
            await service.get_shipment(shipment.id)

    @pytest.mark.asyncio
    async def test_late_save_does_not_overwrite_later_append(
        self, service_factory, sink, shipment_data, checkpoint_data
    ):
        repository = SlowSaveRepository(delay=0.4, slow_saves={2})
        service = service_factory(repository, sink, persistence_timeout=0.3)
        shipment = await service.create_shipment(shipment_data())

        with pytest.raises(TransientFailure):
            await service.append_checkpoint(shipment.id, checkpoint_data(name="A"))
        await service.append_checkpoint(shipment.id, checkpoint_data(name="B"))

        stored = repository.load(shipment.id)
        assert [c.location.name for c in stored.checkpoints] == ["B"]

    @pytest.mark.asyncio
    async def test_timed_out_save_leaves_shipment_unchanged(
        self, service_factory, sink, shipment_data, checkpoint_data
    ):
        repository = SlowSaveRepository(delay=0.3, slow_saves={2})
        service = service_factory(repository, sink, persistence_timeout=0.1)
        shipment = await service.create_shipment(shipment_data())

        with pytest.raises(TransientFailure):
            await service.append_checkpoint(shipment.id, checkpoint_data(temperature=60))
        await asyncio.sleep(0.4)

        stored = repository.load(shipment.id)
        assert stored.status == ShipmentStatus.PENDING
        assert stored.checkpoints == []
        assert stored.alerts == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_timed_out_create_is_undone(self, service_factory, sink, shipment_data):
        repository = SlowSaveRepository(delay=0.3, slow_saves={1})
        service = service_factory(repository, sink, persistence_timeout=0.1)

        with pytest.raises(TransientFailure):
            await service.create_shipment(shipment_data(tracking_number="TRK-LATE"))
        await asyncio.sleep(0.4)

        assert repository.find_by_tracking_number("TRK-LATE") is None
        assert len(repository) == 0

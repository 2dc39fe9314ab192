"""
Shipment service: the engine's inbound operations.

Each operation on a shipment runs load -> mutate a private copy -> save inside
that shipment's lock, so concurrent checkpoints and transitions on the same
shipment never lose updates while different shipments proceed in parallel.
Every persistence call is bounded by a timeout; a timeout surfaces as
``TransientFailure`` and leaves stored state untouched, even when the
abandoned write lands later. Notifications are published after the lock is
released and after the alert is saved.
"""
import asyncio
import logging
import uuid
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from config.settings import Settings
from core.errors import (
    AlertNotFoundError,
    InternalInvariantViolation,
    InvalidStateError,
    PermissionDeniedError,
    ShipmentNotFoundError,
    ShipmentValidationError,
    TransientFailure,
)
from core.schemas import (
    Alert,
    Anomaly,
    CheckpointCreate,
    HistoricalPerformance,
    Party,
    PartyRole,
    Prediction,
    RiskScore,
    Shipment,
    ShipmentCreate,
    ShipmentFilter,
    TrackingView,
    utcnow,
)
from notifications.dispatcher import AlertDispatcher
from notifications.notification_service import NotificationSink, build_notification_sink
from services import lifecycle
from services.anomaly import detect_anomalies
from services.journal import append_checkpoint
from services.performance import (
    HistoricalPerformanceAggregator,
    InMemoryPerformanceCache,
    RedisPerformanceCache,
)
from services.persistence import ShipmentRepository
from services.prediction import DelayPredictor, create_predictor
from services.risk import calculate_risk_score

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass(frozen=True)
class Caller:
    """Calling party as reported by the identity collaborator"""
    party_id: str
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == PartyRole.ADMIN.value


@dataclass
class SweepReport:
    """Outcome of one delay sweep"""
    evaluated: int = 0
    delayed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def generate_tracking_number() -> str:
    return f"TRK-{uuid.uuid4().hex[:12].upper()}"


class ShipmentService:
    """Service class for shipment operations"""

    def __init__(
        self,
        repository: ShipmentRepository,
        dispatcher: AlertDispatcher,
        aggregator: HistoricalPerformanceAggregator,
        predictor: DelayPredictor,
        clock: Callable[[], datetime] = utcnow,
        persistence_timeout: float = 5.0,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.aggregator = aggregator
        self.predictor = predictor
        self.clock = clock
        self.persistence_timeout = persistence_timeout
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._settling: Dict[str, "asyncio.Task[None]"] = {}

    # Plumbing

    def _lock_for(self, shipment_id: str) -> asyncio.Lock:
        lock = self._locks.get(shipment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[shipment_id] = lock
        return lock

    @asynccontextmanager
    async def _exclusive(self, shipment_id: str) -> AsyncIterator[None]:
        """Hold the shipment's lock, once any abandoned save on it has settled"""
        async with self._lock_for(shipment_id):
            settling = self._settling.get(shipment_id)
            if settling is not None:
                try:
                    await asyncio.wait_for(asyncio.shield(settling), timeout=self.persistence_timeout)
                except asyncio.TimeoutError:
                    raise TransientFailure(
                        f"Shipment {shipment_id} still has a save in flight", shipment_id=shipment_id
                    ) from None
            yield

    async def _call(self, func: Callable[..., Any], *args: Any, description: str) -> Any:
        """Run a blocking collaborator call off the event loop, bounded by the timeout"""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.persistence_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"{description} timed out after {self.persistence_timeout}s")
            raise TransientFailure(f"{description} timed out") from None

    async def _load(self, shipment_id: str) -> Shipment:
        shipment = await self._call(
            self.repository.load, shipment_id, description=f"Loading shipment {shipment_id}"
        )
        if shipment is None:
            raise ShipmentNotFoundError(shipment_id)
        return shipment

    async def _load_for_update(self, shipment_id: str) -> Tuple[Shipment, Shipment]:
        """Working copy plus the stored version it started from"""
        shipment = await self._load(shipment_id)
        return shipment, shipment.model_copy(deep=True)

    async def _save(self, shipment: Shipment, previous: Optional[Shipment]) -> None:
        """Persist ``shipment`` over ``previous`` (None when it is new).

        The worker thread of a save abandoned by timeout or cancellation may
        still write. It settles in the background: a late write is reverted to
        ``previous``, and later operations on the shipment wait for that.
        """
        try:
            lifecycle.check_invariants(shipment)
        except InternalInvariantViolation as e:
            logger.error(f"Refusing to save shipment {shipment.id}: {e}")
            raise

        write = asyncio.ensure_future(asyncio.to_thread(self.repository.save, shipment))
        try:
            await asyncio.wait_for(asyncio.shield(write), timeout=self.persistence_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Saving shipment {shipment.id} timed out after {self.persistence_timeout}s")
            self._abandon(write, shipment.id, previous)
            raise TransientFailure(f"Saving shipment {shipment.id} timed out", shipment_id=shipment.id) from None
        except asyncio.CancelledError:
            self._abandon(write, shipment.id, previous)
            raise

    def _abandon(self, write: "asyncio.Future[None]", shipment_id: str, previous: Optional[Shipment]) -> None:
        self._settling[shipment_id] = asyncio.ensure_future(self._settle(write, shipment_id, previous))

    async def _settle(self, write: "asyncio.Future[None]", shipment_id: str, previous: Optional[Shipment]) -> None:
        try:
            try:
                await write
            except Exception as e:
                logger.info(f"Abandoned save of shipment {shipment_id} did not complete: {e}")
                return

            logger.warning(f"Abandoned save of shipment {shipment_id} landed late, restoring previous version")
            try:
                if previous is None:
                    await asyncio.to_thread(self.repository.delete, shipment_id)
                else:
                    await asyncio.to_thread(self.repository.save, previous)
            except Exception as e:
                logger.error(f"Could not restore shipment {shipment_id} after a late save: {e}")
        finally:
            if self._settling.get(shipment_id) is asyncio.current_task():
                del self._settling[shipment_id]

    async def _performance(self, party_id: str) -> HistoricalPerformance:
        return await self._call(
            self.aggregator.performance_of, party_id, description=f"Historical performance of {party_id}"
        )

    @staticmethod
    def _parse(schema: Type[SchemaT], data: Union[SchemaT, dict], shipment_id: Optional[str] = None) -> SchemaT:
        if isinstance(data, schema):
            return data
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise ShipmentValidationError(
                f"Invalid {schema.__name__}: {e}",
                shipment_id=shipment_id,
                errors=e.errors(include_url=False, include_context=False),
            ) from e

    @staticmethod
    def _authorize(caller: Optional[Caller], party: Party, action: str, shipment_id: str) -> None:
        # No caller means an internal/system invocation
        if caller is None or caller.is_admin:
            return
        if caller.party_id != party.party_id:
            raise PermissionDeniedError(
                f"Party {caller.party_id} may not {action} shipment {shipment_id}",
                shipment_id=shipment_id,
            )

    # Shipments

    async def create_shipment(self, data: Union[ShipmentCreate, dict]) -> Shipment:
        """Create a new shipment in Pending status"""
        shipment_data = self._parse(ShipmentCreate, data)
        tracking_number = shipment_data.tracking_number or generate_tracking_number()

        existing = await self._call(
            self.repository.find_by_tracking_number, tracking_number,
            description=f"Looking up tracking number {tracking_number}",
        )
        if existing is not None:
            raise ShipmentValidationError(f"Tracking number {tracking_number} already in use")

        now = self.clock()
        shipment = Shipment(
            tracking_number=tracking_number,
            origin=shipment_data.origin,
            destination=shipment_data.destination,
            departure_time=shipment_data.departure_time,
            expected_arrival=shipment_data.expected_arrival,
            product=shipment_data.product,
            vehicle=shipment_data.vehicle,
            route=shipment_data.route,
            special_instructions=shipment_data.special_instructions,
            handling_requirements=list(shipment_data.handling_requirements),
            extensions=dict(shipment_data.extensions),
            created_at=now,
            updated_at=now,
        )

        try:
            performance = await self._performance(shipment.origin.party_id)
            shipment.last_prediction = self.predictor.predict(shipment, performance, now)
        except TransientFailure as e:
            logger.warning(f"Skipping initial prediction for shipment {shipment.id}: {e}")

        async with self._exclusive(shipment.id):
            await self._save(shipment, None)

        logger.info(f"Created shipment {shipment.id} ({tracking_number}) "
                    f"from {shipment_data.origin.party_id} to {shipment_data.destination.party_id}")
        return shipment

    async def get_shipment(self, shipment_id: str) -> Shipment:
        """Get a shipment by ID"""
        return await self._load(shipment_id)

    async def list_shipments(self, filters: Optional[ShipmentFilter] = None) -> List[Shipment]:
        """Get shipments with optional filtering"""
        return await self._call(
            self.repository.query, filters or ShipmentFilter(), description="Querying shipments"
        )

    async def track(self, tracking_number: str) -> TrackingView:
        """Public tracking snapshot"""
        shipment = await self._call(
            self.repository.find_by_tracking_number, tracking_number,
            description=f"Looking up tracking number {tracking_number}",
        )
        if shipment is None:
            raise ShipmentNotFoundError(tracking_number)

        return TrackingView(
            tracking_number=shipment.tracking_number,
            status=shipment.status,
            expected_arrival=shipment.expected_arrival,
            current_location=shipment.current_location,
            checkpoints=shipment.checkpoints,
            progress_percentage=self.progress(shipment),
        )

    def progress(self, shipment: Shipment) -> int:
        return lifecycle.progress_percentage(shipment, self.clock())

    # Journal and state machine

    async def append_checkpoint(self, shipment_id: str, data: Union[CheckpointCreate, dict]) -> Shipment:
        """Add a checkpoint; raises alerts for high-severity readings on it"""
        checkpoint = self._parse(CheckpointCreate, data, shipment_id=shipment_id)

        async with self._exclusive(shipment_id):
            shipment, previous = await self._load_for_update(shipment_id)
            now = self.clock()
            append_checkpoint(shipment, checkpoint, now)
            alerts = self.dispatcher.record_anomalies(shipment, detect_anomalies(shipment), now)
            await self._save(shipment, previous)

        logger.info(
            f"Checkpoint {len(shipment.checkpoints)} added to shipment {shipment_id} "
            f"at {checkpoint.location.name}"
        )
        if alerts:
            await self.dispatcher.dispatch(shipment, alerts)
        return shipment

    async def mark_delivered(self, shipment_id: str, caller: Optional[Caller] = None) -> Shipment:
        """Confirm delivery; only the recipient (or an admin) may do this"""
        async with self._exclusive(shipment_id):
            shipment, previous = await self._load_for_update(shipment_id)
            self._authorize(caller, shipment.destination, "complete", shipment_id)
            lifecycle.mark_delivered(shipment, self.clock())
            await self._save(shipment, previous)

        party_id = shipment.origin.party_id
        try:
            await self._call(
                self.aggregator.invalidate, party_id, description=f"Invalidating history of {party_id}"
            )
        except TransientFailure as e:
            logger.warning(f"History of {party_id} may be stale until its cache expires: {e}")
        return shipment

    async def cancel(self, shipment_id: str, caller: Optional[Caller] = None) -> Shipment:
        """Cancel a shipment; only the sender (or an admin) may do this"""
        async with self._exclusive(shipment_id):
            shipment, previous = await self._load_for_update(shipment_id)
            self._authorize(caller, shipment.origin, "cancel", shipment_id)
            lifecycle.cancel(shipment, self.clock())
            await self._save(shipment, previous)
        return shipment

    async def evaluate_delay(self, shipment_id: str) -> Optional[Alert]:
        """Move an overdue in-transit shipment to Delayed; returns the overrun alert if one was raised"""
        async with self._exclusive(shipment_id):
            shipment, previous = await self._load_for_update(shipment_id)
            alert = lifecycle.evaluate_delay(shipment, self.clock())
            if alert is None:
                return None
            await self._save(shipment, previous)

        logger.info(f"Shipment {shipment_id} marked delayed: {alert.message}")
        await self.dispatcher.dispatch(shipment, [alert])
        return alert

    async def evaluate_delay_sweep(self) -> SweepReport:
        """Evaluate every non-terminal shipment once.

        Shipments are handled one at a time; cancelling the sweep leaves each
        shipment either fully evaluated or untouched.
        """
        report = SweepReport()
        shipment_ids = await self._call(self.repository.list_open, description="Listing open shipments")

        for shipment_id in shipment_ids:
            try:
                alert = await self.evaluate_delay(shipment_id)
            except ShipmentNotFoundError:
                continue
            except (TransientFailure, InternalInvariantViolation) as e:
                logger.warning(f"Delay evaluation failed for shipment {shipment_id}: {e}")
                report.failed.append(shipment_id)
                continue
            report.evaluated += 1
            if alert is not None:
                report.delayed.append(shipment_id)

        if report.delayed or report.failed:
            logger.info(
                f"Delay sweep: {report.evaluated} evaluated, {len(report.delayed)} delayed, "
                f"{len(report.failed)} failed"
            )
        return report

    async def resolve_alert(self, shipment_id: str, alert_id: str) -> Alert:
        """Mark an alert resolved; allowed on terminal shipments too"""
        async with self._exclusive(shipment_id):
            shipment, previous = await self._load_for_update(shipment_id)
            alert = next((a for a in shipment.alerts if a.id == alert_id), None)
            if alert is None:
                raise AlertNotFoundError(shipment_id, alert_id)
            if alert.is_resolved:
                raise InvalidStateError(f"Alert {alert_id} is already resolved", shipment_id=shipment_id)
            now = self.clock()
            alert.is_resolved = True
            alert.resolved_at = now
            shipment.updated_at = now
            await self._save(shipment, previous)

        logger.info(f"Resolved alert {alert_id} on shipment {shipment_id}")
        return alert

    # Analytics

    async def predict_delay(self, shipment_id: str) -> Prediction:
        """Recompute the delay prediction and cache it on the shipment"""
        async with self._exclusive(shipment_id):
            shipment, previous = await self._load_for_update(shipment_id)
            performance = await self._performance(shipment.origin.party_id)
            prediction = self.predictor.predict(shipment, performance, self.clock())
            shipment.last_prediction = prediction
            await self._save(shipment, previous)
        return prediction

    async def detect_anomalies(self, shipment_id: str) -> List[Anomaly]:
        """Anomalies on the latest checkpoint (read-only)"""
        shipment = await self._load(shipment_id)
        return detect_anomalies(shipment)

    async def risk_score(self, shipment_id: str) -> RiskScore:
        """Recompute prediction, anomalies and risk score; caches prediction and score"""
        async with self._exclusive(shipment_id):
            shipment, previous = await self._load_for_update(shipment_id)
            now = self.clock()
            performance = await self._performance(shipment.origin.party_id)
            prediction = self.predictor.predict(shipment, performance, now)
            score = calculate_risk_score(prediction, detect_anomalies(shipment), performance, now)
            shipment.last_prediction = prediction
            shipment.last_risk_score = score
            await self._save(shipment, previous)
        return score


def build_shipment_service(
    config: Settings,
    repository: Optional[ShipmentRepository] = None,
    sink: Optional[NotificationSink] = None,
    clock: Callable[[], datetime] = utcnow,
) -> ShipmentService:
    """Wire a service from settings; collaborators not given are built from config"""
    if repository is None:
        from core.database import (
            SqlAlchemyShipmentRepository,
            create_db_engine,
            create_session_factory,
            create_tables,
        )

        engine = create_db_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO)
        create_tables(engine)
        repository = SqlAlchemyShipmentRepository(create_session_factory(engine))

    if config.REDIS_URL:
        cache = RedisPerformanceCache.from_url(config.REDIS_URL, config.PERFORMANCE_CACHE_TTL_SECONDS)
    else:
        cache = InMemoryPerformanceCache(config.PERFORMANCE_CACHE_TTL_SECONDS)

    return ShipmentService(
        repository=repository,
        dispatcher=AlertDispatcher(
            sink or build_notification_sink(config),
            timeout_seconds=config.NOTIFICATION_TIMEOUT_SECONDS,
        ),
        aggregator=HistoricalPerformanceAggregator(repository, window=config.PERFORMANCE_WINDOW, cache=cache),
        predictor=create_predictor(config.PREDICTION_METHOD, config.LOCAL_TIMEZONE),
        clock=clock,
        persistence_timeout=config.PERSISTENCE_TIMEOUT_SECONDS,
    )

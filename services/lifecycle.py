"""
Shipment state machine.

Pending -> InTransit -> {Delivered | Delayed | Cancelled}, with Delayed -> Delivered.
Delivered and Cancelled are terminal. Functions here mutate the shipment they
are given; callers decide whether the result gets persisted.
"""
import logging
import math
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from core.errors import InternalInvariantViolation, InvalidStateError
from core.schemas import Alert, AlertType, Severity, Shipment, ShipmentStatus

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[ShipmentStatus, FrozenSet[ShipmentStatus]] = {
    ShipmentStatus.PENDING: frozenset({ShipmentStatus.IN_TRANSIT, ShipmentStatus.CANCELLED}),
    ShipmentStatus.IN_TRANSIT: frozenset({
        ShipmentStatus.DELIVERED,
        ShipmentStatus.DELAYED,
        ShipmentStatus.CANCELLED,
    }),
    ShipmentStatus.DELAYED: frozenset({ShipmentStatus.DELIVERED}),
    ShipmentStatus.DELIVERED: frozenset(),
    ShipmentStatus.CANCELLED: frozenset(),
}

CRITICAL_OVERRUN_HOURS = 24


def can_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    return target in TRANSITIONS[current]


def _transition(shipment: Shipment, target: ShipmentStatus, now: datetime) -> ShipmentStatus:
    previous = shipment.status
    if not can_transition(previous, target):
        raise InvalidStateError(
            f"Cannot move shipment from {previous.value} to {target.value}",
            shipment_id=shipment.id,
        )
    shipment.status = target
    shipment.updated_at = now
    logger.info(f"Shipment {shipment.id}: {previous.value} -> {target.value}")
    return previous


def mark_delivered(shipment: Shipment, now: datetime) -> None:
    """Confirm delivery; only legal from InTransit or Delayed"""
    _transition(shipment, ShipmentStatus.DELIVERED, now)
    shipment.actual_arrival = now


def cancel(shipment: Shipment, now: datetime) -> None:
    """Cancel a shipment that has not been delivered or delayed"""
    _transition(shipment, ShipmentStatus.CANCELLED, now)


def overrun_hours(shipment: Shipment, now: datetime) -> int:
    """Whole hours past the expected arrival, 0 when not yet due"""
    overdue = (now - shipment.expected_arrival).total_seconds()
    return max(0, int(overdue // 3600))


def evaluate_delay(shipment: Shipment, now: datetime) -> Optional[Alert]:
    """Move an overdue in-transit shipment to Delayed.

    Returns the overrun alert appended to the shipment, or None when nothing
    changed. Never moves a shipment out of Delayed, so repeated evaluation
    raises at most one alert.
    """
    if shipment.status != ShipmentStatus.IN_TRANSIT:
        return None
    if now <= shipment.expected_arrival:
        return None

    hours = overrun_hours(shipment, now)
    _transition(shipment, ShipmentStatus.DELAYED, now)

    alert = Alert(
        severity=Severity.CRITICAL if hours > CRITICAL_OVERRUN_HOURS else Severity.HIGH,
        type=AlertType.DELAY,
        message=f"Shipment is delayed by {hours} hours",
        triggered_at=now,
    )
    shipment.alerts.append(alert)
    return alert


def progress_percentage(shipment: Shipment, now: datetime) -> int:
    """Display progress; only delivery confirmation reaches 100"""
    if shipment.status == ShipmentStatus.PENDING:
        return 0
    if shipment.status == ShipmentStatus.DELIVERED:
        return 100

    window = (shipment.expected_arrival - shipment.departure_time).total_seconds()
    if window <= 0:
        raise InternalInvariantViolation(
            "Expected arrival is not after departure time", shipment_id=shipment.id
        )
    elapsed = (now - shipment.departure_time).total_seconds()
    return min(99, max(0, math.floor(elapsed / window * 100)))


def check_invariants(shipment: Shipment) -> None:
    """Raise InternalInvariantViolation when the shipment's core fields disagree"""
    delivered = shipment.status == ShipmentStatus.DELIVERED
    if delivered != (shipment.actual_arrival is not None):
        raise InternalInvariantViolation(
            f"Shipment {shipment.id} has status {shipment.status.value} "
            f"but actual arrival {shipment.actual_arrival}",
            shipment_id=shipment.id,
        )
    if shipment.expected_arrival <= shipment.departure_time:
        raise InternalInvariantViolation(
            f"Shipment {shipment.id} expected arrival is not after departure",
            shipment_id=shipment.id,
        )

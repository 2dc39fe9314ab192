"""
Checkpoint journal: the only way checkpoints get onto a shipment
"""
import logging
from datetime import datetime

from core.errors import InvalidStateError
from core.schemas import Checkpoint, CheckpointCreate, CurrentLocation, Shipment, ShipmentStatus

logger = logging.getLogger(__name__)


def append_checkpoint(shipment: Shipment, data: CheckpointCreate, now: datetime) -> Checkpoint:
    """Append a checkpoint to ``shipment`` in place and return the stored entry.

    Moves the derived current location to the checkpoint and starts transit
    when the shipment is still pending. Terminal shipments reject the append.
    """
    if shipment.is_terminal:
        raise InvalidStateError(
            f"Cannot add checkpoint to shipment in status {shipment.status.value}",
            shipment_id=shipment.id,
        )

    checkpoint = Checkpoint(
        handler=data.handler,
        location=data.location,
        timestamp=data.timestamp or now,
        remarks=data.remarks,
        environment=data.environment,
        photos=data.photos,
        recorded_at=now,
    )
    shipment.checkpoints.append(checkpoint)

    shipment.current_location = CurrentLocation(
        name=checkpoint.location.name,
        coordinates=checkpoint.location.coordinates,
        last_updated=now,
    )

    if shipment.status == ShipmentStatus.PENDING:
        shipment.status = ShipmentStatus.IN_TRANSIT
        logger.info(f"Shipment {shipment.id} started transit at {checkpoint.location.name}")

    shipment.updated_at = now
    return checkpoint

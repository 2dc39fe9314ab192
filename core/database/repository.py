"""
SQLAlchemy-backed shipment repository
"""
import logging
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import sessionmaker

from core.errors import ShipmentValidationError, TransientFailure
from core.models import ShipmentRecord
from core.schemas import Shipment, ShipmentFilter, ShipmentStatus

from .connection import session_scope

logger = logging.getLogger(__name__)

_TERMINAL = (ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED)


class SqlAlchemyShipmentRepository:
    """Stores each shipment aggregate as one row"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def load(self, shipment_id: str) -> Optional[Shipment]:
        try:
            with session_scope(self.session_factory) as db:
                record = db.get(ShipmentRecord, shipment_id)
                return record.to_shipment() if record else None
        except DBAPIError as e:
            raise TransientFailure(f"Could not load shipment {shipment_id}: {e}", shipment_id=shipment_id) from e

    def save(self, shipment: Shipment) -> None:
        try:
            with session_scope(self.session_factory) as db:
                record = db.get(ShipmentRecord, shipment.id)
                if record is None:
                    db.add(ShipmentRecord.from_shipment(shipment))
                else:
                    record.apply(shipment)
            logger.debug(f"Saved shipment {shipment.id} ({shipment.status.value})")
        except IntegrityError as e:
            raise ShipmentValidationError(
                f"Tracking number {shipment.tracking_number} already in use", shipment_id=shipment.id
            ) from e
        except DBAPIError as e:
            raise TransientFailure(f"Could not save shipment {shipment.id}: {e}", shipment_id=shipment.id) from e

    def delete(self, shipment_id: str) -> None:
        try:
            with session_scope(self.session_factory) as db:
                record = db.get(ShipmentRecord, shipment_id)
                if record is not None:
                    db.delete(record)
        except DBAPIError as e:
            raise TransientFailure(f"Could not delete shipment {shipment_id}: {e}", shipment_id=shipment_id) from e

    def query_delivered(self, party_id: str, limit: int) -> List[Shipment]:
        try:
            with session_scope(self.session_factory) as db:
                records = (
                    db.query(ShipmentRecord)
                    .filter(
                        ShipmentRecord.origin_party == party_id,
                        ShipmentRecord.status == ShipmentStatus.DELIVERED,
                    )
                    .order_by(desc(ShipmentRecord.actual_arrival))
                    .limit(limit)
                    .all()
                )
                return [record.to_shipment() for record in records]
        except DBAPIError as e:
            raise TransientFailure(f"Could not query history for {party_id}: {e}") from e

    def list_open(self) -> List[str]:
        try:
            with session_scope(self.session_factory) as db:
                rows = (
                    db.query(ShipmentRecord.id)
                    .filter(ShipmentRecord.status.notin_(_TERMINAL))
                    .order_by(ShipmentRecord.expected_arrival)
                    .all()
                )
                return [row.id for row in rows]
        except DBAPIError as e:
            raise TransientFailure(f"Could not list open shipments: {e}") from e

    def find_by_tracking_number(self, tracking_number: str) -> Optional[Shipment]:
        try:
            with session_scope(self.session_factory) as db:
                record = (
                    db.query(ShipmentRecord)
                    .filter(ShipmentRecord.tracking_number == tracking_number)
                    .first()
                )
                return record.to_shipment() if record else None
        except DBAPIError as e:
            raise TransientFailure(f"Could not look up tracking number {tracking_number}: {e}") from e

    def query(self, filters: ShipmentFilter) -> List[Shipment]:
        try:
            with session_scope(self.session_factory) as db:
                query = db.query(ShipmentRecord)

                if filters.status:
                    query = query.filter(ShipmentRecord.status == filters.status)

                if filters.origin_party:
                    query = query.filter(ShipmentRecord.origin_party == filters.origin_party)

                if filters.destination_party:
                    query = query.filter(ShipmentRecord.destination_party == filters.destination_party)

                records = (
                    query.order_by(desc(ShipmentRecord.created_at))
                    .offset(filters.offset)
                    .limit(filters.limit)
                    .all()
                )
                return [record.to_shipment() for record in records]
        except DBAPIError as e:
            raise TransientFailure(f"Could not query shipments: {e}") from e

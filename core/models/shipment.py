"""
Persisted shipment record.

The full shipment aggregate is stored as a JSON document; the columns the
repository filters and orders on are duplicated alongside it.
"""
from sqlalchemy import Column, String, DateTime, JSON, Enum, Index
from sqlalchemy.sql import func

from core.schemas import Shipment, ShipmentStatus

from .base import Base


def _naive_utc(value):
    return value.replace(tzinfo=None) if value is not None else None


class ShipmentRecord(Base):
    """Shipment document row"""
    __tablename__ = "shipments"

    id = Column(String(32), primary_key=True)
    tracking_number = Column(String(100), unique=True, nullable=False, index=True)

    origin_party = Column(String(100), nullable=False, index=True)
    destination_party = Column(String(100), nullable=False, index=True)
    status = Column(Enum(ShipmentStatus), nullable=False, index=True)

    # Stored as naive UTC
    departure_time = Column(DateTime, nullable=False)
    expected_arrival = Column(DateTime, nullable=False)
    actual_arrival = Column(DateTime)

    document = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_shipment_origin_status_arrival', 'origin_party', 'status', 'actual_arrival'),
        Index('idx_shipment_status_expected', 'status', 'expected_arrival'),
    )

    def apply(self, shipment: Shipment) -> None:
        """Copy a shipment aggregate onto this row"""
        self.id = shipment.id
        self.tracking_number = shipment.tracking_number
        self.origin_party = shipment.origin.party_id
        self.destination_party = shipment.destination.party_id
        self.status = shipment.status
        self.departure_time = _naive_utc(shipment.departure_time)
        self.expected_arrival = _naive_utc(shipment.expected_arrival)
        self.actual_arrival = _naive_utc(shipment.actual_arrival)
        self.document = shipment.model_dump(mode="json")
        self.created_at = _naive_utc(shipment.created_at)
        self.updated_at = _naive_utc(shipment.updated_at)

    @classmethod
    def from_shipment(cls, shipment: Shipment) -> "ShipmentRecord":
        record = cls()
        record.apply(shipment)
        return record

    def to_shipment(self) -> Shipment:
        return Shipment.model_validate(self.document)

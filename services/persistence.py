"""
Persistence interface consumed by the tracking engine, plus an in-memory implementation
"""
import logging
import threading
from typing import Dict, List, Optional, Protocol, runtime_checkable

from core.errors import ShipmentValidationError
from core.schemas import Shipment, ShipmentFilter, ShipmentStatus

logger = logging.getLogger(__name__)


@runtime_checkable
class ShipmentRepository(Protocol):
    """Storage for shipment aggregates.

    Implementations return detached copies: mutating a loaded shipment has no
    effect until it is passed back to ``save``. Unreachable storage is reported
    as ``TransientFailure``.
    """

    def load(self, shipment_id: str) -> Optional[Shipment]: ...

    def save(self, shipment: Shipment) -> None:
        """Insert or replace; a tracking number held by another shipment raises ``ShipmentValidationError``"""
        ...

    def delete(self, shipment_id: str) -> None: ...

    def query_delivered(self, party_id: str, limit: int) -> List[Shipment]:
        """Delivered shipments sent by ``party_id``, most recent arrival first"""
        ...

    def list_open(self) -> List[str]:
        """Ids of every shipment not in a terminal status"""
        ...

    def find_by_tracking_number(self, tracking_number: str) -> Optional[Shipment]: ...

    def query(self, filters: ShipmentFilter) -> List[Shipment]: ...


class InMemoryShipmentRepository:
    """Thread-safe dictionary-backed repository"""

    def __init__(self):
        self._shipments: Dict[str, Shipment] = {}
        self._lock = threading.Lock()

    def load(self, shipment_id: str) -> Optional[Shipment]:
        with self._lock:
            shipment = self._shipments.get(shipment_id)
            return shipment.model_copy(deep=True) if shipment else None

    def save(self, shipment: Shipment) -> None:
        with self._lock:
            for other in self._shipments.values():
                if other.tracking_number == shipment.tracking_number and other.id != shipment.id:
                    raise ShipmentValidationError(
                        f"Tracking number {shipment.tracking_number} already in use", shipment_id=shipment.id
                    )
            self._shipments[shipment.id] = shipment.model_copy(deep=True)

    def delete(self, shipment_id: str) -> None:
        with self._lock:
            self._shipments.pop(shipment_id, None)

    def query_delivered(self, party_id: str, limit: int) -> List[Shipment]:
        with self._lock:
            delivered = [
                s for s in self._shipments.values()
                if s.origin.party_id == party_id and s.status == ShipmentStatus.DELIVERED
            ]
        delivered.sort(key=lambda s: s.actual_arrival, reverse=True)
        return [s.model_copy(deep=True) for s in delivered[:limit]]

    def list_open(self) -> List[str]:
        with self._lock:
            return [s.id for s in self._shipments.values() if not s.is_terminal]

    def find_by_tracking_number(self, tracking_number: str) -> Optional[Shipment]:
        with self._lock:
            for shipment in self._shipments.values():
                if shipment.tracking_number == tracking_number:
                    return shipment.model_copy(deep=True)
        return None

    def query(self, filters: ShipmentFilter) -> List[Shipment]:
        with self._lock:
            shipments = list(self._shipments.values())

        if filters.status:
            shipments = [s for s in shipments if s.status == filters.status]
        if filters.origin_party:
            shipments = [s for s in shipments if s.origin.party_id == filters.origin_party]
        if filters.destination_party:
            shipments = [s for s in shipments if s.destination.party_id == filters.destination_party]

        shipments.sort(key=lambda s: s.created_at, reverse=True)
        page = shipments[filters.offset:filters.offset + filters.limit]
        return [s.model_copy(deep=True) for s in page]

    def __len__(self) -> int:
        return len(self._shipments)

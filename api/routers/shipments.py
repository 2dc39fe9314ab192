"""
Shipment management endpoints
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_shipment_service, require_caller
from core.schemas import (
    Alert,
    Anomaly,
    CheckpointCreate,
    Prediction,
    RiskScore,
    Shipment,
    ShipmentCreate,
    ShipmentFilter,
    ShipmentStatus,
    TrackingView,
)
from services.shipment_service import Caller, ShipmentService

logger = logging.getLogger(__name__)

router = APIRouter()
tracking_router = APIRouter()


@router.post("/", response_model=Shipment, status_code=status.HTTP_201_CREATED)
async def create_shipment(
    shipment: ShipmentCreate,
    service: ShipmentService = Depends(get_shipment_service),
):
    """Create a new shipment"""
    return await service.create_shipment(shipment)


@router.get("/", response_model=List[Shipment])
async def get_shipments(
    status_filter: Optional[ShipmentStatus] = Query(None, alias="status"),
    origin_party: Optional[str] = Query(None),
    destination_party: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Get shipments with filtering and pagination"""
    filters = ShipmentFilter(
        status=status_filter,
        origin_party=origin_party,
        destination_party=destination_party,
        limit=limit,
        offset=offset,
    )
    return await service.list_shipments(filters)


@router.get("/{shipment_id}", response_model=Shipment)
async def get_shipment(shipment_id: str, service: ShipmentService = Depends(get_shipment_service)):
    return await service.get_shipment(shipment_id)


@router.post("/{shipment_id}/checkpoints", response_model=Shipment, status_code=status.HTTP_201_CREATED)
async def add_checkpoint(
    shipment_id: str,
    checkpoint: CheckpointCreate,
    service: ShipmentService = Depends(get_shipment_service),
):
    """Record a custody handoff with optional environmental readings"""
    return await service.append_checkpoint(shipment_id, checkpoint)


@router.put("/{shipment_id}/deliver", response_model=Shipment)
async def mark_delivered(
    shipment_id: str,
    service: ShipmentService = Depends(get_shipment_service),
    caller: Caller = Depends(require_caller),
):
    return await service.mark_delivered(shipment_id, caller)


@router.put("/{shipment_id}/cancel", response_model=Shipment)
async def cancel_shipment(
    shipment_id: str,
    service: ShipmentService = Depends(get_shipment_service),
    caller: Caller = Depends(require_caller),
):
    return await service.cancel(shipment_id, caller)


@router.get("/{shipment_id}/prediction", response_model=Prediction)
async def predict_delay(shipment_id: str, service: ShipmentService = Depends(get_shipment_service)):
    """Recompute the delay prediction"""
    return await service.predict_delay(shipment_id)


@router.get("/{shipment_id}/anomalies", response_model=List[Anomaly])
async def get_anomalies(shipment_id: str, service: ShipmentService = Depends(get_shipment_service)):
    return await service.detect_anomalies(shipment_id)


@router.get("/{shipment_id}/risk", response_model=RiskScore)
async def get_risk_score(shipment_id: str, service: ShipmentService = Depends(get_shipment_service)):
    return await service.risk_score(shipment_id)


@router.post("/{shipment_id}/alerts/{alert_id}/resolve", response_model=Alert)
async def resolve_alert(
    shipment_id: str,
    alert_id: str,
    service: ShipmentService = Depends(get_shipment_service),
):
    return await service.resolve_alert(shipment_id, alert_id)


@tracking_router.get("/{tracking_number}", response_model=TrackingView)
async def track_shipment(tracking_number: str, service: ShipmentService = Depends(get_shipment_service)):
    """Public tracking by tracking number"""
    return await service.track(tracking_number)

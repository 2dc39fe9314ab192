"""
Health check endpoints
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_shipment_service
from core.errors import TransientFailure
from core.schemas import ShipmentFilter, utcnow
from services.shipment_service import ShipmentService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def health_check():
    """System health check"""
    return {
        "status": "healthy",
        "service": "Shipment Tracking & Risk Engine",
        "timestamp": utcnow().isoformat(),
    }


@router.get("/liveness")
async def liveness_probe():
    return {"status": "alive", "timestamp": utcnow().isoformat()}


@router.get("/readiness")
async def readiness_probe(service: ShipmentService = Depends(get_shipment_service)):
    """Ready once the shipment store answers"""
    try:
        await service.list_shipments(ShipmentFilter(limit=1))
    except TransientFailure as e:
        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(status_code=503, detail="Service not ready")
    return {"status": "ready", "timestamp": utcnow().isoformat()}

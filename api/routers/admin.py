"""
Operational endpoints: delay sweep and notification queue state
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_caller, get_shipment_service, get_sweeper
from core.errors import PermissionDeniedError
from services.shipment_service import Caller, ShipmentService
from services.sweep import DelaySweeper

router = APIRouter()


def require_admin(caller: Optional[Caller] = Depends(get_caller)) -> Caller:
    if caller is None or not caller.is_admin:
        raise PermissionDeniedError("Admin role required")
    return caller


@router.post("/sweep")
async def run_delay_sweep(
    service: ShipmentService = Depends(get_shipment_service),
    _: Caller = Depends(require_admin),
):
    """Run one delay sweep now"""
    report = await service.evaluate_delay_sweep()
    return {"evaluated": report.evaluated, "delayed": report.delayed, "failed": report.failed}


@router.post("/shipments/{shipment_id}/evaluate-delay")
async def evaluate_delay(
    shipment_id: str,
    service: ShipmentService = Depends(get_shipment_service),
    _: Caller = Depends(require_admin),
):
    alert = await service.evaluate_delay(shipment_id)
    return {"shipment_id": shipment_id, "alert": alert.model_dump(mode="json") if alert else None}


@router.get("/status")
async def monitoring_status(
    request: Request,
    sweeper: Optional[DelaySweeper] = Depends(get_sweeper),
    _: Caller = Depends(require_admin),
):
    sink = getattr(request.app.state, "notification_sink", None)
    return {
        "delay_sweep": sweeper.get_monitoring_status() if sweeper else None,
        "notifications": sink.get_stats() if hasattr(sink, "get_stats") else None,
    }

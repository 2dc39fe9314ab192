"""
Dependency providers for request handlers
"""
from typing import Optional

from fastapi import Depends, Header, Request

from core.errors import PermissionDeniedError
from services.shipment_service import Caller, ShipmentService
from services.sweep import DelaySweeper


def get_shipment_service(request: Request) -> ShipmentService:
    """Read the shipment service from app state"""
    return request.app.state.shipment_service


def get_sweeper(request: Request) -> Optional[DelaySweeper]:
    return getattr(request.app.state, "delay_sweeper", None)


def get_caller(
    x_party_id: Optional[str] = Header(None),
    x_party_role: Optional[str] = Header(None),
) -> Optional[Caller]:
    """Calling party from identity headers; absent headers mean an anonymous caller"""
    if not x_party_id:
        return None
    return Caller(party_id=x_party_id, role=x_party_role)


def require_caller(caller: Optional[Caller] = Depends(get_caller)) -> Caller:
    if caller is None:
        raise PermissionDeniedError("X-Party-Id header required")
    return caller

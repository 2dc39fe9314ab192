"""
Persistence models for the Shipment Tracking & Risk Engine
"""
from .base import Base
from .shipment import ShipmentRecord

__all__ = [
    "Base",
    "ShipmentRecord",
]

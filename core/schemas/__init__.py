"""
Pydantic schemas for the Shipment Tracking & Risk Engine
"""
from .base import BaseSchema, FrozenSchema, UTCDateTime, as_utc, utcnow
from .prediction import (
    Anomaly,
    AnomalyType,
    HistoricalPerformance,
    Prediction,
    RULE_BASED_METHOD,
    RiskFactors,
    RiskScore,
    Severity,
)
from .shipment import (
    Alert,
    AlertType,
    Checkpoint,
    CheckpointCreate,
    Coordinates,
    CurrentLocation,
    Distance,
    DistanceUnit,
    EnvironmentalReading,
    Handler,
    Humidity,
    Location,
    Party,
    PartyRole,
    PhotoRef,
    ProductRef,
    Route,
    RoutePoint,
    Shipment,
    ShipmentCreate,
    ShipmentFilter,
    ShipmentStatus,
    Temperature,
    TemperatureUnit,
    TrackingView,
    VehicleInfo,
)

__all__ = [
    "BaseSchema",
    "FrozenSchema",
    "UTCDateTime",
    "as_utc",
    "utcnow",
    # Prediction schemas
    "Anomaly",
    "AnomalyType",
    "HistoricalPerformance",
    "Prediction",
    "RULE_BASED_METHOD",
    "RiskFactors",
    "RiskScore",
    "Severity",
    # Shipment schemas
    "Alert",
    "AlertType",
    "Checkpoint",
    "CheckpointCreate",
    "Coordinates",
    "CurrentLocation",
    "Distance",
    "DistanceUnit",
    "EnvironmentalReading",
    "Handler",
    "Humidity",
    "Location",
    "Party",
    "PartyRole",
    "PhotoRef",
    "ProductRef",
    "Route",
    "RoutePoint",
    "Shipment",
    "ShipmentCreate",
    "ShipmentFilter",
    "ShipmentStatus",
    "Temperature",
    "TemperatureUnit",
    "TrackingView",
    "VehicleInfo",
]

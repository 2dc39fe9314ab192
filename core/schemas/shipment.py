"""
Pydantic schemas for shipments, checkpoints and alerts
"""
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import Field, model_validator

from .base import BaseSchema, FrozenSchema, UTCDateTime, utcnow
from .prediction import Prediction, RiskScore, Severity


def new_id() -> str:
    return uuid.uuid4().hex


class ShipmentStatus(str, Enum):
    """Shipment status enumeration"""
    PENDING = "Pending"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"
    DELAYED = "Delayed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED)


class AlertType(str, Enum):
    """What raised an alert"""
    DELAY = "Delay"
    ENVIRONMENTAL = "EnvironmentalAlert"


class PartyRole(str, Enum):
    """Roles supplied by the identity collaborator"""
    MANUFACTURER = "Manufacturer"
    DISTRIBUTOR = "Distributor"
    RETAILER = "Retailer"
    CUSTOMER = "Customer"
    ADMIN = "Admin"


class TemperatureUnit(str, Enum):
    CELSIUS = "Celsius"
    FAHRENHEIT = "Fahrenheit"
    KELVIN = "Kelvin"


class DistanceUnit(str, Enum):
    KILOMETRES = "km"
    MILES = "mi"
    METRES = "m"


_KM_PER_UNIT = {
    DistanceUnit.KILOMETRES: 1.0,
    DistanceUnit.MILES: 1.609344,
    DistanceUnit.METRES: 0.001,
}

_TEMPERATURE_SYMBOL = {
    TemperatureUnit.CELSIUS: "°C",
    TemperatureUnit.FAHRENHEIT: "°F",
    TemperatureUnit.KELVIN: "K",
}


# Measurements
class Temperature(FrozenSchema):
    value: float
    unit: TemperatureUnit = TemperatureUnit.CELSIUS

    @property
    def celsius(self) -> float:
        if self.unit == TemperatureUnit.FAHRENHEIT:
            return (self.value - 32.0) * 5.0 / 9.0
        if self.unit == TemperatureUnit.KELVIN:
            return self.value - 273.15
        return self.value

    def __str__(self) -> str:
        return f"{self.value:g}{_TEMPERATURE_SYMBOL[self.unit]}"


class Humidity(FrozenSchema):
    value: float
    unit: str = Field(default="%", pattern="^%$")

    def __str__(self) -> str:
        return f"{self.value:g}%"


class Distance(FrozenSchema):
    value: float = Field(..., ge=0)
    unit: DistanceUnit = DistanceUnit.KILOMETRES

    @property
    def kilometres(self) -> float:
        return self.value * _KM_PER_UNIT[self.unit]


class EnvironmentalReading(FrozenSchema):
    """Sensor reading captured with a checkpoint"""
    temperature: Optional[Temperature] = None
    humidity: Optional[Humidity] = None
    pressure: Optional[float] = None
    vibration: Optional[float] = None


# Places and parties
class Coordinates(FrozenSchema):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class Location(FrozenSchema):
    name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    coordinates: Coordinates


class RoutePoint(FrozenSchema):
    name: str = Field(..., min_length=1, max_length=255)
    coordinates: Optional[Coordinates] = None


class Route(FrozenSchema):
    origin: Optional[RoutePoint] = None
    destination: Optional[RoutePoint] = None
    distance: Optional[Distance] = None
    estimated_duration_hours: Optional[float] = Field(None, ge=0)


class Party(FrozenSchema):
    """A shipping party (sender or recipient)"""
    party_id: str = Field(..., min_length=1, max_length=100)
    name: Optional[str] = None
    organization: Optional[str] = None


class Handler(FrozenSchema):
    """Party that handled the goods at a checkpoint"""
    party_id: str = Field(..., min_length=1, max_length=100)
    name: Optional[str] = None
    role: Optional[str] = None


class ProductRef(FrozenSchema):
    product_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    batch_number: Optional[str] = None


class VehicleInfo(FrozenSchema):
    vehicle_number: Optional[str] = None
    vehicle_type: Optional[str] = None
    driver_name: Optional[str] = None
    driver_contact: Optional[str] = None


class PhotoRef(FrozenSchema):
    """Opaque reference into content-addressed storage"""
    content_id: str = Field(..., min_length=1)
    url: Optional[str] = None
    caption: Optional[str] = None
    uploaded_at: Optional[UTCDateTime] = None


# Checkpoints
class CheckpointCreate(FrozenSchema):
    """Inbound checkpoint data"""
    handler: Handler
    location: Location
    timestamp: Optional[UTCDateTime] = Field(None, description="Defaults to the time of recording")
    remarks: Optional[str] = Field(None, max_length=2000)
    environment: Optional[EnvironmentalReading] = None
    photos: Tuple[PhotoRef, ...] = ()


class Checkpoint(FrozenSchema):
    """Immutable journal entry"""
    id: str = Field(default_factory=new_id)
    handler: Handler
    location: Location
    timestamp: UTCDateTime
    remarks: Optional[str] = None
    environment: Optional[EnvironmentalReading] = None
    photos: Tuple[PhotoRef, ...] = ()
    recorded_at: UTCDateTime = Field(default_factory=utcnow)


class CurrentLocation(FrozenSchema):
    name: str
    coordinates: Coordinates
    last_updated: UTCDateTime


# Alerts
class Alert(BaseSchema):
    """Alert raised on a shipment; resolution is an explicit action"""
    id: str = Field(default_factory=new_id)
    severity: Severity
    type: AlertType
    message: str
    triggered_at: UTCDateTime = Field(default_factory=utcnow)
    resolved_at: Optional[UTCDateTime] = None
    is_resolved: bool = False


# Shipments
class ShipmentCreate(FrozenSchema):
    """Schema for creating a new shipment"""
    tracking_number: Optional[str] = Field(None, min_length=1, max_length=100)
    origin: Party
    destination: Party
    departure_time: UTCDateTime
    expected_arrival: UTCDateTime
    product: Optional[ProductRef] = None
    vehicle: Optional[VehicleInfo] = None
    route: Optional[Route] = None
    special_instructions: Optional[str] = None
    handling_requirements: List[str] = Field(default_factory=list)
    extensions: Dict[str, Any] = Field(default_factory=dict, description="Opaque custom fields")

    @model_validator(mode="after")
    def arrival_after_departure(self) -> "ShipmentCreate":
        if self.expected_arrival <= self.departure_time:
            raise ValueError("Expected arrival must be after departure time")
        return self


class Shipment(BaseSchema):
    """Shipment aggregate; checkpoints and alerts are nested inside it"""
    id: str = Field(default_factory=new_id)
    tracking_number: str
    origin: Party
    destination: Party
    departure_time: UTCDateTime
    expected_arrival: UTCDateTime
    actual_arrival: Optional[UTCDateTime] = None
    status: ShipmentStatus = ShipmentStatus.PENDING
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    current_location: Optional[CurrentLocation] = None

    product: Optional[ProductRef] = None
    vehicle: Optional[VehicleInfo] = None
    route: Optional[Route] = None
    special_instructions: Optional[str] = None
    handling_requirements: List[str] = Field(default_factory=list)
    extensions: Dict[str, Any] = Field(default_factory=dict)

    last_prediction: Optional[Prediction] = None
    last_risk_score: Optional[RiskScore] = None
    alerts: List[Alert] = Field(default_factory=list)

    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def latest_checkpoint(self) -> Optional[Checkpoint]:
        return self.checkpoints[-1] if self.checkpoints else None

    @property
    def open_alerts(self) -> List[Alert]:
        return [alert for alert in self.alerts if not alert.is_resolved]

    @property
    def planned_duration_hours(self) -> float:
        return (self.expected_arrival - self.departure_time).total_seconds() / 3600

    @property
    def duration_hours(self) -> Optional[int]:
        """Whole hours from departure to delivery"""
        if self.actual_arrival is None:
            return None
        return int((self.actual_arrival - self.departure_time).total_seconds() // 3600)

    @property
    def overrun_hours(self) -> Optional[int]:
        """Whole hours delivered past the expected arrival, 0 when on time"""
        if self.actual_arrival is None:
            return None
        overrun = (self.actual_arrival - self.expected_arrival).total_seconds() // 3600
        return max(0, int(overrun))


class ShipmentFilter(FrozenSchema):
    """Schema for filtering shipments"""
    status: Optional[ShipmentStatus] = None
    origin_party: Optional[str] = None
    destination_party: Optional[str] = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class TrackingView(FrozenSchema):
    """Public tracking snapshot looked up by tracking number"""
    tracking_number: str
    status: ShipmentStatus
    expected_arrival: UTCDateTime
    current_location: Optional[CurrentLocation] = None
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    progress_percentage: int = Field(..., ge=0, le=100)

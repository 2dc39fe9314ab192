"""
Typed failure reasons raised by the tracking engine.

Every error carries a stable ``code`` so outer layers can report a reason
without leaking internal traces.
"""
from typing import Optional


class ShipmentTrackingError(Exception):
    """Base class for all engine failures"""

    code = "shipment_error"

    def __init__(self, message: str, *, shipment_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.shipment_id = shipment_id


class ShipmentNotFoundError(ShipmentTrackingError):
    """Unknown shipment id or tracking number"""

    code = "shipment_not_found"

    def __init__(self, shipment_id: str):
        super().__init__(f"Shipment {shipment_id} not found", shipment_id=shipment_id)


class AlertNotFoundError(ShipmentTrackingError):
    """Unknown alert on a known shipment"""

    code = "alert_not_found"

    def __init__(self, shipment_id: str, alert_id: str):
        super().__init__(
            f"Alert {alert_id} not found on shipment {shipment_id}",
            shipment_id=shipment_id,
        )
        self.alert_id = alert_id


class InvalidStateError(ShipmentTrackingError):
    """Operation not legal for the shipment's current status"""

    code = "invalid_state"


class ShipmentValidationError(ShipmentTrackingError):
    """Malformed shipment, checkpoint or coordinate data"""

    code = "validation_error"

    def __init__(self, message: str, *, shipment_id: Optional[str] = None, errors: Optional[list] = None):
        super().__init__(message, shipment_id=shipment_id)
        self.errors = errors or []


class PermissionDeniedError(ShipmentTrackingError):
    """Calling party is not allowed to perform the operation"""

    code = "permission_denied"


class TransientFailure(ShipmentTrackingError):
    """Persistence or notification collaborator unreachable or timed out; retryable"""

    code = "transient_failure"


class InternalInvariantViolation(ShipmentTrackingError):
    """A shipment invariant was found broken"""

    code = "internal_invariant_violation"

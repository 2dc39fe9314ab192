"""
Environmental anomaly detection on the latest checkpoint
"""
import logging
from typing import List

from core.schemas import Anomaly, AnomalyType, Checkpoint, Severity, Shipment

logger = logging.getLogger(__name__)

TEMPERATURE_RANGE_C = (-10.0, 50.0)
HUMIDITY_RANGE_PCT = (10.0, 90.0)


def _outside(value: float, bounds) -> bool:
    low, high = bounds
    return value < low or value > high


def scan_checkpoint(checkpoint: Checkpoint) -> List[Anomaly]:
    """Out-of-band readings on a single checkpoint"""
    reading = checkpoint.environment
    if reading is None:
        return []

    anomalies = []

    if reading.temperature is not None and _outside(reading.temperature.celsius, TEMPERATURE_RANGE_C):
        anomalies.append(Anomaly(
            type=AnomalyType.TEMPERATURE,
            severity=Severity.HIGH,
            message=f"Unusual temperature: {reading.temperature}",
            recommendation="Check product integrity",
        ))

    if reading.humidity is not None and _outside(reading.humidity.value, HUMIDITY_RANGE_PCT):
        anomalies.append(Anomaly(
            type=AnomalyType.HUMIDITY,
            severity=Severity.MEDIUM,
            message=f"Unusual humidity: {reading.humidity}",
            recommendation="Monitor moisture-sensitive products",
        ))

    return anomalies


def detect_anomalies(shipment: Shipment) -> List[Anomaly]:
    """Anomalies on the most recently appended checkpoint; older ones are not re-scanned"""
    checkpoint = shipment.latest_checkpoint
    if checkpoint is None:
        return []

    anomalies = scan_checkpoint(checkpoint)
    if anomalies:
        logger.info(
            f"Shipment {shipment.id}: {len(anomalies)} anomalies at {checkpoint.location.name}"
        )
    return anomalies

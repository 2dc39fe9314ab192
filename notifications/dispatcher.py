"""
Alert dispatcher.

Turns high-severity anomalies into alerts on the shipment and hands recorded
alerts to the notification sink. Dispatch happens only after the alert has
been stored, so an unavailable sink never loses or rolls back an alert.
"""

import asyncio
import logging
from datetime import datetime
from typing import Iterable, List

from core.errors import TransientFailure
from core.schemas import Alert, AlertType, Anomaly, Severity, Shipment

from notifications.notification_service import AlertEvent, NotificationSink

logger = logging.getLogger(__name__)

ALERT_THRESHOLD = Severity.HIGH


class AlertDispatcher:
    """Records alerts on shipments and publishes them"""

    def __init__(self, sink: NotificationSink, timeout_seconds: float = 5.0):
        self.sink = sink
        self.timeout_seconds = timeout_seconds

    def record_anomalies(self, shipment: Shipment, anomalies: Iterable[Anomaly], now: datetime) -> List[Alert]:
        """Append an alert for every anomaly at or above the alert threshold"""
        alerts = []
        for anomaly in anomalies:
            if not anomaly.severity.at_least(ALERT_THRESHOLD):
                continue
            alert = Alert(
                severity=anomaly.severity,
                type=AlertType.ENVIRONMENTAL,
                message=f"{anomaly.message}. {anomaly.recommendation}",
                triggered_at=now,
            )
            shipment.alerts.append(alert)
            alerts.append(alert)
        return alerts

    async def dispatch(self, shipment: Shipment, alerts: Iterable[Alert]) -> int:
        """Publish already-stored alerts; returns how many the sink accepted"""
        accepted = 0
        recipients = [shipment.origin.party_id, shipment.destination.party_id]

        for alert in alerts:
            event = AlertEvent(
                shipment_id=shipment.id,
                tracking_number=shipment.tracking_number,
                alert=alert,
                recipients=recipients,
            )
            try:
                await asyncio.wait_for(self.sink.publish(event), timeout=self.timeout_seconds)
                accepted += 1
            except (TransientFailure, asyncio.TimeoutError) as e:
                logger.warning(
                    f"Notification for alert {alert.id} on shipment {shipment.id} not delivered: "
                    f"{str(e) or 'timed out'}"
                )
            except Exception:
                logger.exception(f"Notification sink failed for alert {alert.id} on shipment {shipment.id}")

        return accepted

"""
Periodic delay sweep.

Runs ``ShipmentService.evaluate_delay_sweep`` on a fixed interval so overdue
in-transit shipments move to Delayed without any caller asking.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from core.errors import TransientFailure
from services.shipment_service import ShipmentService, SweepReport

logger = logging.getLogger(__name__)


class DelaySweeper:
    """Background task driving the delay sweep"""

    def __init__(self, service: ShipmentService, interval_seconds: float = 300.0):
        self.service = service
        self.interval_seconds = interval_seconds
        self.runs = 0
        self.last_report: Optional[SweepReport] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def monitoring_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> Optional[SweepReport]:
        try:
            report = await self.service.evaluate_delay_sweep()
        except TransientFailure as e:
            logger.warning(f"Delay sweep skipped: {e}")
            return None
        self.runs += 1
        self.last_report = report
        return report

    async def run(self) -> None:
        logger.info(f"Starting delay sweep every {self.interval_seconds}s")
        while True:
            await self.sweep_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if not self.monitoring_active:
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stopped delay sweep")

    def get_monitoring_status(self) -> Dict[str, Any]:
        report = self.last_report
        return {
            "monitoring_active": self.monitoring_active,
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "last_delayed": len(report.delayed) if report else 0,
            "last_failed": len(report.failed) if report else 0,
        }

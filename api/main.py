"""
FastAPI application for the Shipment Tracking & Risk Engine
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.errors import register_exception_handlers
from api.routers.admin import router as admin_router
from api.routers.health import router as health_router
from api.routers.shipments import router as shipments_router, tracking_router
from config.settings import Settings, settings
from core.schemas import utcnow
from notifications.notification_service import (
    NotificationSink,
    QueuedNotificationSink,
    build_notification_sink,
)
from services.persistence import ShipmentRepository
from services.shipment_service import build_shipment_service
from services.sweep import DelaySweeper

logger = logging.getLogger(__name__)


def configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(
    config: Settings = settings,
    repository: Optional[ShipmentRepository] = None,
    sink: Optional[NotificationSink] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Build the application; collaborators not given are built from config"""
    configure_logging(config)

    notification_sink = QueuedNotificationSink(
        sink or build_notification_sink(config),
        max_attempts=config.NOTIFICATION_MAX_RETRIES,
        backoff_seconds=config.NOTIFICATION_BACKOFF_SECONDS,
    )
    service = build_shipment_service(config, repository=repository, sink=notification_sink, clock=clock)
    sweeper = DelaySweeper(service, interval_seconds=config.DELAY_SWEEP_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        logger.info("Starting Shipment Tracking & Risk Engine...")
        notification_sink.start()
        if config.DELAY_SWEEP_ENABLED:
            sweeper.start()

        yield

        logger.info("Shutting down application...")
        await sweeper.stop()
        await notification_sink.stop()

    app = FastAPI(
        title="Shipment Tracking & Risk Engine",
        description="Custody journal, delay prediction, anomaly detection and risk scoring for shipments",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.config = config
    app.state.shipment_service = service
    app.state.notification_sink = notification_sink
    app.state.delay_sweeper = sweeper

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"detail": "An unexpected error occurred", "code": "internal_error"},
        )

    app.include_router(health_router, prefix="/health", tags=["Health"])
    app.include_router(shipments_router, prefix="/shipments", tags=["Shipments"])
    app.include_router(tracking_router, prefix="/track", tags=["Tracking"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:create_app",
        factory=True,
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )

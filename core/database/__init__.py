"""
Database module for the Shipment Tracking & Risk Engine
"""
from .connection import (
    create_db_engine,
    create_session_factory,
    create_tables,
    drop_tables,
    session_scope,
)
from .repository import SqlAlchemyShipmentRepository

__all__ = [
    "create_db_engine",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "session_scope",
    "SqlAlchemyShipmentRepository",
]

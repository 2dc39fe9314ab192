"""
Declarative base for persisted records
"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()

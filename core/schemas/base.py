"""
Shared schema configuration and UTC timestamp handling
"""
from datetime import datetime, timezone
from typing import Annotated
from pydantic import AfterValidator, BaseModel, ConfigDict


def utcnow() -> datetime:
    """Current time as an aware UTC instant"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a timestamp to UTC; naive values are taken to be UTC already"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


class BaseSchema(BaseModel):
    """Base schema with common configuration"""

    model_config = ConfigDict(from_attributes=True, validate_assignment=True, allow_inf_nan=False)


class FrozenSchema(BaseModel):
    """Base for value objects that never change after construction"""

    model_config = ConfigDict(from_attributes=True, frozen=True, allow_inf_nan=False)

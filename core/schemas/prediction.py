"""
Pydantic schemas for delay predictions, anomalies and risk scores
"""
from enum import Enum
from typing import List

from pydantic import Field

from .base import FrozenSchema, UTCDateTime, utcnow


class Severity(str, Enum):
    """Severity band shared by anomalies, alerts, risk scores and prediction risk levels"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)

    def at_least(self, other: "Severity") -> bool:
        return self.rank >= other.rank


class AnomalyType(str, Enum):
    """Environmental reading that went out of band"""
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"


RULE_BASED_METHOD = "rule-based"


class HistoricalPerformance(FrozenSchema):
    """Rolling delivery statistics for a shipping party.

    ``sample_size == 0`` means there is no prior signal, which is not the
    same thing as zero risk.
    """
    party_id: str
    average_overrun_hours: float = Field(default=0.0, ge=0.0)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    sample_size: int = Field(default=0, ge=0)
    computed_at: UTCDateTime = Field(default_factory=utcnow)

    @property
    def has_history(self) -> bool:
        return self.sample_size > 0


class Prediction(FrozenSchema):
    """Advisory delay estimate for a shipment"""
    predicted_delay_hours: int = Field(..., ge=0, description="Predicted delay in whole hours")
    confidence: int = Field(..., ge=0, le=100, description="Confidence percentage")
    factors: List[str] = Field(default_factory=list, description="Contributing factor labels, in rule order")
    risk_level: Severity = Field(..., description="Display risk level of the raw estimate")
    recommendation: str = Field(..., description="Canned recommendation for the risk level")
    computed_at: UTCDateTime = Field(default_factory=utcnow)
    method: str = Field(default=RULE_BASED_METHOD)


class Anomaly(FrozenSchema):
    """Out-of-band environmental reading on the latest checkpoint"""
    type: AnomalyType
    severity: Severity
    message: str
    recommendation: str


class RiskFactors(FrozenSchema):
    """Breakdown of a risk score"""
    delay_contribution: float = Field(..., ge=0.0)
    predicted_delay_hours: int = Field(..., ge=0)
    anomaly_count: int = Field(..., ge=0)
    historical_success_rate: float = Field(..., ge=0.0, le=1.0)
    historical_sample_size: int = Field(..., ge=0)


class RiskScore(FrozenSchema):
    """Bounded 0-100 risk score with its severity band"""
    score: int = Field(..., ge=0, le=100)
    level: Severity
    factors: RiskFactors
    calculated_at: UTCDateTime = Field(default_factory=utcnow)

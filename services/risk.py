"""
Risk scoring: combines predicted delay, anomalies and sender history into 0-100
"""
import math
from datetime import datetime
from typing import Sequence

from core.schemas import Anomaly, HistoricalPerformance, Prediction, RiskFactors, RiskScore, Severity

MAX_DELAY_CONTRIBUTION = 40.0
DELAY_SATURATION_HOURS = 24.0
ANOMALY_WEIGHT = 10.0
HISTORY_WEIGHT = 30.0


def risk_band(score: int) -> Severity:
    if score < 25:
        return Severity.LOW
    if score < 50:
        return Severity.MEDIUM
    if score < 75:
        return Severity.HIGH
    return Severity.CRITICAL


def delay_contribution(predicted_delay_hours: float) -> float:
    return min(predicted_delay_hours / DELAY_SATURATION_HOURS * MAX_DELAY_CONTRIBUTION, MAX_DELAY_CONTRIBUTION)


def calculate_risk_score(
    prediction: Prediction,
    anomalies: Sequence[Anomaly],
    performance: HistoricalPerformance,
    now: datetime,
) -> RiskScore:
    """Score is non-decreasing in predicted delay and anomaly count.

    A party with no delivery history is scored as if it had never been on
    time, biasing unknown senders toward caution.
    """
    success_rate = performance.success_rate if performance.has_history else 0.0

    delay_part = delay_contribution(prediction.predicted_delay_hours)
    raw = delay_part + len(anomalies) * ANOMALY_WEIGHT + (1 - success_rate) * HISTORY_WEIGHT
    score = min(100, max(0, int(math.floor(raw + 0.5))))

    return RiskScore(
        score=score,
        level=risk_band(score),
        factors=RiskFactors(
            delay_contribution=round(delay_part, 2),
            predicted_delay_hours=prediction.predicted_delay_hours,
            anomaly_count=len(anomalies),
            historical_success_rate=success_rate,
            historical_sample_size=performance.sample_size,
        ),
        calculated_at=now,
    )

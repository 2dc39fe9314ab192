"""
Delay prediction for shipments.

Predictions are advisory. The rule-based engine is the only implementation;
others plug in behind ``DelayPredictor`` and are chosen by configuration.
"""
import logging
import math
from datetime import datetime
from typing import Callable, Dict, List, Protocol, Tuple
from zoneinfo import ZoneInfo

from core.schemas import HistoricalPerformance, Prediction, RULE_BASED_METHOD, Severity, Shipment

logger = logging.getLogger(__name__)

LONG_DISTANCE_KM = 500
MANY_CHECKPOINTS = 5
EXTENDED_TRAVEL_HOURS = 48
CONFIDENT_SAMPLE_SIZE = 10

HIGH_CONFIDENCE = 70
LOW_CONFIDENCE = 50

DEFAULT_FACTORS = ["Standard delivery expected"]

RECOMMENDATIONS: Dict[Severity, str] = {
    Severity.LOW: "Shipment expected to arrive on time.",
    Severity.MEDIUM: "Minor delay expected. Consider notifying recipient.",
    Severity.HIGH: "Significant delay predicted. Optimize route or schedule alternative transport.",
    Severity.CRITICAL: "Critical delay risk. Consider expedited shipping.",
}


class DelayPredictor(Protocol):
    """Produces a delay estimate from shipment attributes and the sender's history"""

    method: str

    def predict(self, shipment: Shipment, performance: HistoricalPerformance, now: datetime) -> Prediction: ...


def calculate_risk_level(delay_hours: float) -> Severity:
    """Display risk level for a delay estimate"""
    if delay_hours <= 2:
        return Severity.LOW
    if delay_hours <= 6:
        return Severity.MEDIUM
    if delay_hours <= 12:
        return Severity.HIGH
    return Severity.CRITICAL


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class RuleBasedDelayPredictor:
    """Deterministic rule accumulator"""

    method = RULE_BASED_METHOD

    def __init__(self, timezone: str = "UTC"):
        self.timezone = ZoneInfo(timezone)

    def evaluate_rules(self, shipment: Shipment, performance: HistoricalPerformance) -> Tuple[float, List[str]]:
        """Sum of rule contributions and the labels of the rules that fired, in rule order"""
        delay_hours = 0.0
        factors: List[str] = []

        distance = shipment.route.distance if shipment.route else None
        if distance is not None and distance.kilometres > LONG_DISTANCE_KM:
            delay_hours += 2
            factors.append("Long distance route")

        if performance.average_overrun_hours > 0:
            delay_hours += performance.average_overrun_hours * 0.5
            factors.append("Historical delays")

        if len(shipment.checkpoints) > MANY_CHECKPOINTS:
            delay_hours += 1
            factors.append("Multiple transit points")

        departure = shipment.departure_time.astimezone(self.timezone)
        if departure.hour >= 18 or departure.hour <= 6:
            delay_hours += 0.5
            factors.append("Off-peak departure")

        # Saturday=5, Sunday=6
        if departure.weekday() >= 5:
            delay_hours += 1
            factors.append("Weekend shipment")

        if shipment.planned_duration_hours > EXTENDED_TRAVEL_HOURS:
            delay_hours += 1
            factors.append("Extended travel time")

        return delay_hours, factors

    def predict(self, shipment: Shipment, performance: HistoricalPerformance, now: datetime) -> Prediction:
        delay_hours, factors = self.evaluate_rules(shipment, performance)
        delay_hours = max(0.0, delay_hours)
        risk_level = calculate_risk_level(delay_hours)

        prediction = Prediction(
            predicted_delay_hours=round_half_up(delay_hours),
            confidence=HIGH_CONFIDENCE if performance.sample_size > CONFIDENT_SAMPLE_SIZE else LOW_CONFIDENCE,
            factors=factors or list(DEFAULT_FACTORS),
            risk_level=risk_level,
            recommendation=RECOMMENDATIONS[risk_level],
            computed_at=now,
            method=self.method,
        )
        logger.debug(
            f"Predicted {prediction.predicted_delay_hours}h delay for shipment {shipment.id} "
            f"({', '.join(prediction.factors)})"
        )
        return prediction


PREDICTORS: Dict[str, Callable[..., DelayPredictor]] = {
    RULE_BASED_METHOD: RuleBasedDelayPredictor,
}


def create_predictor(method: str = RULE_BASED_METHOD, timezone: str = "UTC") -> DelayPredictor:
    """Build the predictor selected by configuration"""
    try:
        factory = PREDICTORS[method]
    except KeyError:
        raise ValueError(
            f"Unknown prediction method {method!r}; available: {', '.join(sorted(PREDICTORS))}"
        ) from None
    logger.info(f"Using {method} delay predictor")
    return factory(timezone=timezone)

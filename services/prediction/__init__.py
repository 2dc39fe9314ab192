"""
Delay prediction engine
"""
from .service import (
    DelayPredictor,
    RECOMMENDATIONS,
    RuleBasedDelayPredictor,
    calculate_risk_level,
    create_predictor,
)

__all__ = [
    "DelayPredictor",
    "RECOMMENDATIONS",
    "RuleBasedDelayPredictor",
    "calculate_risk_level",
    "create_predictor",
]

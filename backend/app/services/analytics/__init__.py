"""
Analytics module - Derived training metrics over cached activities.

This module provides:
- Acute/chronic training load and their ratio
- Heart rate zone distribution
"""
from app.services.analytics.load import (
    ASSUMED_MAX_HEART_RATE,
    TrainingLoad,
    ZoneDistribution,
    activity_load,
    heart_rate_zone,
    intensity_factor,
    training_load,
    zone_distribution,
)

__all__ = [
    "ASSUMED_MAX_HEART_RATE",
    "TrainingLoad",
    "ZoneDistribution",
    "activity_load",
    "heart_rate_zone",
    "intensity_factor",
    "training_load",
    "zone_distribution",
]

"""
Training load and heart rate zone metrics.

Pure functions over cached activities. Heart rate percentages use a
fixed assumed maximum of 180 bpm rather than a personalized value.

Load per activity:
    hours * intensity * (log10(km + 1) + 1) * 100

Intensity bands on average_hr / 180:
    <= 0.65 -> 1.0, <= 0.75 -> 1.5, <= 0.85 -> 2.0, <= 0.88 -> 3.0, else 4.0
"""
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol

ASSUMED_MAX_HEART_RATE = 180.0

ACUTE_WINDOW_DAYS = 7
CHRONIC_WINDOW_DAYS = 28

# Load is scaled for readability
LOAD_SCALE = 100.0

# (upper bound of hr fraction, intensity factor)
INTENSITY_BANDS = (
    (0.65, 1.0),
    (0.75, 1.5),
    (0.85, 2.0),
    (0.88, 3.0),
)
TOP_INTENSITY = 4.0

# Upper bounds of hr fraction for zones 1-4; anything above is zone 5
ZONE_THRESHOLDS = (0.60, 0.70, 0.80, 0.90)


class LoadActivity(Protocol):
    """Fields the metrics read; satisfied by the Activity model."""
    start_time: datetime
    moving_duration: int
    distance_meters: float
    average_heart_rate: Optional[float]


@dataclass(frozen=True)
class TrainingLoad:
    acute: float
    chronic: float
    ratio: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ZoneDistribution:
    zone1: float = 0.0
    zone2: float = 0.0
    zone3: float = 0.0
    zone4: float = 0.0
    zone5: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def intensity_factor(average_heart_rate: Optional[float]) -> float:
    """Step function of hr / max hr; 1.0 when heart rate is missing."""
    if not average_heart_rate:
        return 1.0
    fraction = average_heart_rate / ASSUMED_MAX_HEART_RATE
    for upper, factor in INTENSITY_BANDS:
        if fraction <= upper:
            return factor
    return TOP_INTENSITY


def distance_factor(distance_meters: float) -> float:
    return math.log10(max(distance_meters, 0.0) / 1000 + 1) + 1


def activity_load(activity: LoadActivity) -> float:
    """Training load of a single activity."""
    hours = (activity.moving_duration or 0) / 3600
    return (
        hours
        * intensity_factor(activity.average_heart_rate)
        * distance_factor(activity.distance_meters or 0.0)
        * LOAD_SCALE
    )


def training_load(activities: Iterable[LoadActivity], now: datetime) -> TrainingLoad:
    """
    Acute (7-day) and chronic (28-day) daily-average load.

    Args:
        activities: Activities in any order
        now: Reference time; windows are [now - N days, now]

    Returns:
        TrainingLoad with acute/chronic rounded to 0.1 and the
        acute:chronic ratio rounded to 0.01 (0 when chronic is 0)
    """
    acute_start = now - timedelta(days=ACUTE_WINDOW_DAYS)
    chronic_start = now - timedelta(days=CHRONIC_WINDOW_DAYS)

    acute_sum = 0.0
    chronic_sum = 0.0
    for activity in activities:
        start = activity.start_time
        if start > now or start < chronic_start:
            continue
        load = activity_load(activity)
        chronic_sum += load
        if start >= acute_start:
            acute_sum += load

    acute = acute_sum / ACUTE_WINDOW_DAYS
    chronic = chronic_sum / CHRONIC_WINDOW_DAYS
    ratio = acute / chronic if chronic > 0 else 0.0

    return TrainingLoad(
        acute=round(acute, 1),
        chronic=round(chronic, 1),
        ratio=round(ratio, 2),
    )


def heart_rate_zone(average_heart_rate: float) -> int:
    """Zone 1-5 for an average heart rate."""
    fraction = average_heart_rate / ASSUMED_MAX_HEART_RATE
    for zone, upper in enumerate(ZONE_THRESHOLDS, start=1):
        if fraction <= upper:
            return zone
    return 5


def zone_distribution(activities: Iterable[LoadActivity]) -> ZoneDistribution:
    """
    Share of heart-rate-bearing moving time spent in each zone.

    Activities without heart rate are left out of both the zone totals
    and the denominator. Percentages are floored to 0.1 so they never
    sum above 100.
    """
    totals = [0.0] * 5
    for activity in activities:
        if not activity.average_heart_rate:
            continue
        zone = heart_rate_zone(activity.average_heart_rate)
        totals[zone - 1] += activity.moving_duration or 0

    total_time = sum(totals)
    if total_time <= 0:
        return ZoneDistribution()

    percentages = [math.floor(t / total_time * 1000) / 10 for t in totals]
    return ZoneDistribution(*percentages)

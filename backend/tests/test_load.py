"""Tests for training load and heart rate zone metrics."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import pytest

from app.services.analytics.load import (
    activity_load,
    heart_rate_zone,
    intensity_factor,
    training_load,
    zone_distribution,
)

from factories import NOW


@dataclass
class Workout:
    start_time: datetime
    moving_duration: int = 3600
    distance_meters: float = 10000.0
    average_heart_rate: Optional[float] = None


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


class TestTrainingLoad:
    def test_three_easy_hours_in_a_week(self):
        workouts = [Workout(days_ago(d)) for d in (1, 3, 5)]

        load = training_load(workouts, now=NOW)

        # log10(10 km + 1) + 1 = 2.041 per hour of easy running
        assert load.acute == 87.5
        assert load.chronic == 21.9
        # Nothing outside the acute window, so the ratio is 28/7
        assert load.ratio == 4.0

    def test_chronic_window_includes_older_activities(self):
        workouts = [Workout(days_ago(2)), Workout(days_ago(20))]

        load = training_load(workouts, now=NOW)

        assert load.acute == 29.2
        assert load.chronic == 14.6
        assert load.ratio == 2.0

    def test_activities_outside_windows_are_ignored(self):
        workouts = [Workout(days_ago(40)), Workout(NOW + timedelta(hours=1))]

        load = training_load(workouts, now=NOW)

        assert (load.acute, load.chronic, load.ratio) == (0.0, 0.0, 0.0)

    def test_no_activities(self):
        assert training_load([], now=NOW).to_dict() == {"acute": 0.0, "chronic": 0.0, "ratio": 0.0}

    def test_zero_distance_has_distance_factor_one(self):
        assert activity_load(Workout(NOW, distance_meters=0.0)) == pytest.approx(100.0)


@pytest.mark.parametrize(
    "heart_rate, expected",
    [
        (None, 1.0),
        (117, 1.0),   # 0.65
        (130, 1.5),   # 0.72
        (150, 2.0),   # 0.83
        (158, 3.0),   # 0.878
        (170, 4.0),   # 0.94
    ],
)
def test_intensity_bands(heart_rate, expected):
    assert intensity_factor(heart_rate) == expected


@pytest.mark.parametrize(
    "heart_rate, zone",
    [(90, 1), (108, 1), (120, 2), (140, 3), (160, 4), (171, 5)],
)
def test_heart_rate_zone(heart_rate, zone):
    assert heart_rate_zone(heart_rate) == zone


class TestZoneDistribution:
    def test_even_split_between_extremes(self):
        workouts = [
            Workout(NOW, moving_duration=1800, average_heart_rate=90),
            Workout(NOW, moving_duration=1800, average_heart_rate=171),
        ]

        zones = zone_distribution(workouts)

        assert zones.to_dict() == {
            "zone1": 50.0, "zone2": 0.0, "zone3": 0.0, "zone4": 0.0, "zone5": 50.0,
        }

    def test_activities_without_heart_rate_are_excluded(self):
        workouts = [
            Workout(NOW, moving_duration=3600, average_heart_rate=140),
            Workout(NOW, moving_duration=7200),
        ]

        assert zone_distribution(workouts).zone3 == 100.0

    def test_no_heart_rate_data_is_all_zero(self):
        zones = zone_distribution([Workout(NOW), Workout(NOW)])

        assert zones.to_dict() == {
            "zone1": 0.0, "zone2": 0.0, "zone3": 0.0, "zone4": 0.0, "zone5": 0.0,
        }

    def test_percentages_never_exceed_one_hundred(self):
        workouts = [
            Workout(NOW, moving_duration=1000, average_heart_rate=hr)
            for hr in (100, 120, 140)
        ]

        zones = zone_distribution(workouts)

        assert sum(zones.to_dict().values()) <= 100.0
        assert zones.zone1 == 33.3

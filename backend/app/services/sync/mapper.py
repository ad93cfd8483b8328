"""
Strava payload mapping.

Turns one raw ``/athlete/activities`` item into the column values of an
``Activity`` row.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.clock import parse_local_timestamp, parse_timestamp


class ActivityMappingError(ValueError):
    """Raw activity lacks the fields needed to cache it."""


def map_strava_activity(
    raw: Dict[str, Any],
    owner: str,
    synced_at: datetime,
    remote_synced_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Map a raw Strava activity to Activity column values.

    Args:
        raw: Activity summary as returned by Strava
        owner: Local owner identifier
        synced_at: Local write time (last_local_update)
        remote_synced_at: Last confirmed sync time (last_remote_sync_time);
            None leaves the row unconfirmed

    Returns:
        Dict keyed by Activity column names
    """
    if raw.get("id") is None:
        raise ActivityMappingError("Activity has no id")

    start_time = parse_timestamp(raw.get("start_date"))
    if start_time is None:
        raise ActivityMappingError(f"Activity {raw['id']} has no start_date")

    return {
        "owner": owner,
        "remote_id": str(raw["id"]),
        "activity_type": raw.get("type") or raw.get("sport_type") or "Workout",
        "name": raw.get("name"),
        "start_time": start_time,
        "start_time_local": parse_local_timestamp(raw.get("start_date_local")),
        "timezone": raw.get("timezone"),
        "moving_duration": int(raw.get("moving_time") or 0),
        "elapsed_duration": int(raw.get("elapsed_time") or 0),
        "distance_meters": float(raw.get("distance") or 0.0),
        "elevation_gain_meters": float(raw.get("total_elevation_gain") or 0.0),
        "average_speed": float(raw.get("average_speed") or 0.0),
        "max_speed": float(raw.get("max_speed") or 0.0),
        "average_heart_rate": _optional_float(raw.get("average_heartrate")),
        "max_heart_rate": _optional_float(raw.get("max_heartrate")),
        "start_lat_lng": _lat_lng(raw.get("start_latlng")),
        "end_lat_lng": _lat_lng(raw.get("end_latlng")),
        "raw": raw,
        "last_local_update": synced_at,
        "last_remote_sync_time": remote_synced_at,
    }


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _lat_lng(value: Any) -> Optional[List[float]]:
    # Strava sends [] for activities without GPS
    if not value or len(value) != 2:
        return None
    return [float(value[0]), float(value[1])]

"""
Activity database model.

One row per remote activity, unique on (owner, remote_id). Rows are only
written by a sync cycle and never deleted by it.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Activity(Base):
    """Cached activity synced from the remote provider."""

    __tablename__ = "activities"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    owner: Mapped[str] = mapped_column(String(64), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(64), nullable=False)

    activity_type: Mapped[str] = mapped_column(String(50), nullable=False, default="Workout")
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Temporal
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    start_time_local: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    moving_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    elapsed_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Physical
    distance_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    elevation_gain_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    average_speed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    max_speed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    average_heart_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_heart_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Route endpoints as [lat, lng]
    start_lat_lng: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    end_lat_lng: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    raw: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    # Sync bookkeeping
    last_local_update: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    # Null until a complete sync has confirmed the row
    last_remote_sync_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("owner", "remote_id", name="uq_activities_owner_remote_id"),
        Index("ix_activities_owner_start_time", "owner", "start_time"),
        Index("ix_activities_owner_last_sync", "owner", "last_remote_sync_time"),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": str(self.id),
            "remoteId": self.remote_id,
            "owner": self.owner,
            "activityType": self.activity_type,
            "name": self.name,
            "startTime": _iso(self.start_time),
            "startTimeLocal": _iso(self.start_time_local),
            "timezone": self.timezone,
            "movingDuration": self.moving_duration,
            "elapsedDuration": self.elapsed_duration,
            "distanceMeters": self.distance_meters,
            "elevationGainMeters": self.elevation_gain_meters,
            "averageSpeed": self.average_speed,
            "maxSpeed": self.max_speed,
            "averageHeartRate": self.average_heart_rate,
            "maxHeartRate": self.max_heart_rate,
            "startLatLng": self.start_lat_lng,
            "endLatLng": self.end_lat_lng,
            "lastLocalUpdate": _iso(self.last_local_update),
            "lastRemoteSyncTime": _iso(self.last_remote_sync_time),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() + "Z"

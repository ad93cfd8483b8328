"""
Activities API endpoints.
"""
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_strava_service, get_sync_locks
from app.core.clock import to_naive_utc, utcnow
from app.core.database import get_db
from app.core.errors import (
    AuthError,
    CacheWriteError,
    NetworkError,
    RateLimitError,
    RemoteAPIError,
)
from app.core.logging import get_logger
from app.services.analytics import training_load, zone_distribution
from app.services.external.strava import StravaService
from app.services.sync import (
    ActivityCache,
    DatabaseTokenStore,
    OwnerLocks,
    RemoteActivityFetcher,
    SyncCoordinator,
    SyncMetadata,
)

logger = get_logger(__name__)
router = APIRouter()


# ========================================
# Request/Response Schemas
# ========================================

class DateRangeResponse(BaseModel):
    """Boundary start times of cached activities."""
    earliest: Optional[str] = None
    latest: Optional[str] = None


class SyncCountsResponse(BaseModel):
    matched: int
    inserted: int


class ActivitiesMetadata(BaseModel):
    """Sync metadata returned with the activity list."""
    count: int
    dateRange: DateRangeResponse
    lastSync: Optional[str] = None
    source: str = Field(..., description="cache or remote")
    synced: Optional[SyncCountsResponse] = None
    warnings: list[str] = Field(default_factory=list)


class ActivitiesResponse(BaseModel):
    activities: list[dict[str, Any]]
    metadata: ActivitiesMetadata


class MetricsResponse(BaseModel):
    """Derived training metrics."""
    trainingLoad: dict[str, float]
    zones: dict[str, float]
    activityCount: int
    windowDays: int


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


def _metadata_response(metadata: SyncMetadata) -> ActivitiesMetadata:
    return ActivitiesMetadata(
        count=metadata.count,
        dateRange=DateRangeResponse(
            earliest=_iso(metadata.date_range.earliest),
            latest=_iso(metadata.date_range.latest),
        ),
        lastSync=_iso(metadata.last_sync),
        source=metadata.source,
        synced=SyncCountsResponse(
            matched=metadata.synced.matched,
            inserted=metadata.synced.inserted,
        ) if metadata.synced else None,
        warnings=metadata.warnings,
    )


# ========================================
# API Endpoints
# ========================================

@router.get("/{owner}", response_model=ActivitiesResponse)
async def get_activities(
    owner: str,
    forceRefresh: bool = Query(False, description="Ignore cache freshness"),
    after: Optional[datetime] = Query(None, description="ISO 8601, inclusive"),
    before: Optional[datetime] = Query(None, description="ISO 8601, exclusive"),
    db: AsyncSession = Depends(get_db),
    strava: StravaService = Depends(get_strava_service),
    locks: OwnerLocks = Depends(get_sync_locks),
):
    """
    Get activities for an owner, syncing from Strava when the cache is stale.
    """
    coordinator = SyncCoordinator(
        token_store=DatabaseTokenStore(db, owner),
        fetcher=RemoteActivityFetcher(strava),
        cache=ActivityCache(db),
        auth_client=strava,
        locks=locks,
    )

    try:
        result = await coordinator.get_activities(
            owner,
            force_refresh=forceRefresh,
            after=to_naive_utc(after) if after else None,
            before=to_naive_utc(before) if before else None,
        )
    except AuthError as e:
        logger.warning("Activities request unauthorized", owner=owner, error=str(e))
        raise HTTPException(status_code=401, detail=str(e))
    except CacheWriteError as e:
        logger.error("Activities cache write failed", owner=owner, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to store synced activities")
    except RateLimitError as e:
        raise HTTPException(
            status_code=503,
            detail=str(e),
            headers={"Retry-After": str(int(e.retry_after))},
        )
    except (NetworkError, RemoteAPIError) as e:
        raise HTTPException(status_code=502, detail=f"Strava unavailable: {e}")

    return ActivitiesResponse(
        activities=[activity.to_dict() for activity in result.activities],
        metadata=_metadata_response(result.metadata),
    )


@router.get("/{owner}/metrics", response_model=MetricsResponse)
async def get_metrics(
    owner: str,
    days: int = Query(28, ge=1, le=365, description="Look-back window for zones"),
    db: AsyncSession = Depends(get_db),
):
    """
    Get training load and heart rate zones from cached activities.

    Never contacts Strava; call the activities endpoint to refresh first.
    """
    now = utcnow()
    cache = ActivityCache(db)
    # Training load always needs the full chronic window
    window = max(days, 28)
    activities = await cache.find(owner, after=now - timedelta(days=window))
    in_range = [a for a in activities if a.start_time >= now - timedelta(days=days)]

    return MetricsResponse(
        trainingLoad=training_load(activities, now).to_dict(),
        zones=zone_distribution(in_range).to_dict(),
        activityCount=len(in_range),
        windowDays=days,
    )

"""
Activity Cache - Database operations for synced activities.

All writes go through ``upsert_many``, a batched
INSERT .. ON CONFLICT (owner, remote_id) DO UPDATE inside one
transaction, so re-applying the same page is harmless and a failed
batch leaves the cache untouched.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.errors import CacheWriteError
from app.core.logging import get_logger
from app.models.activity import Activity
from app.services.sync.mapper import ActivityMappingError, map_strava_activity

logger = get_logger(__name__)

# Rows per INSERT statement; keeps SQLite under its bound-parameter limit
UPSERT_CHUNK_SIZE = 500

# Columns never overwritten on conflict
_IMMUTABLE_COLUMNS = {"id", "owner", "remote_id"}


@dataclass(frozen=True)
class UpsertResult:
    """Counts from one upsert batch."""
    matched: int = 0
    inserted: int = 0

    @property
    def total(self) -> int:
        return self.matched + self.inserted


class ActivityCache:
    """
    Database store for cached activities.

    Usage:
        cache = ActivityCache(db)
        result = await cache.upsert_many("12345", raw_activities)
        recent = await cache.find("12345", after=datetime(2025, 1, 1))
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        if self.db.bind.dialect.name == "postgresql":
            return pg_insert(Activity)
        return sqlite_insert(Activity)

    async def upsert_many(
        self,
        owner: str,
        activities: Sequence[Dict[str, Any]],
        synced_at: Optional[datetime] = None,
        confirmed: bool = True,
    ) -> UpsertResult:
        """
        Insert or update raw provider activities for an owner.

        Args:
            owner: Local owner identifier
            activities: Raw activity payloads from the provider
            synced_at: Sync timestamp to stamp, defaults to now
            confirmed: False for pages of an incomplete fetch. Their rows
                do not advance latest_sync_time: new rows are left
                unconfirmed and existing rows keep their sync time.

        Returns:
            UpsertResult with matched (already cached) and inserted counts

        Raises:
            CacheWriteError: The batch failed; nothing was written
        """
        if not activities:
            return UpsertResult()

        synced_at = synced_at or utcnow()
        rows = self._map_rows(owner, activities, synced_at, confirmed)
        if not rows:
            return UpsertResult()

        remote_ids = list(rows.keys())
        values = list(rows.values())
        skipped = set(_IMMUTABLE_COLUMNS)
        if not confirmed:
            skipped.add("last_remote_sync_time")

        try:
            existing = await self._existing_remote_ids(owner, remote_ids)

            for start in range(0, len(values), UPSERT_CHUNK_SIZE):
                chunk = values[start:start + UPSERT_CHUNK_SIZE]
                stmt = self._insert().values(chunk)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["owner", "remote_id"],
                    set_={
                        column.name: stmt.excluded[column.name]
                        for column in Activity.__table__.columns
                        if column.name not in skipped
                    },
                )
                await self.db.execute(stmt)

            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Activity upsert failed, batch rolled back",
                owner=owner,
                batch_size=len(values),
                error=str(e),
            )
            raise CacheWriteError(f"Failed to upsert {len(values)} activities: {e}") from e

        result = UpsertResult(
            matched=len(existing),
            inserted=len(values) - len(existing),
        )
        logger.info(
            "Upserted activities",
            owner=owner,
            matched=result.matched,
            inserted=result.inserted,
            confirmed=confirmed,
        )
        return result

    def _map_rows(
        self,
        owner: str,
        activities: Iterable[Dict[str, Any]],
        synced_at: datetime,
        confirmed: bool = True,
    ) -> Dict[str, Dict[str, Any]]:
        """Map payloads to rows keyed by remote id; later duplicates win."""
        rows: Dict[str, Dict[str, Any]] = {}
        for raw in activities:
            try:
                row = map_strava_activity(
                    raw,
                    owner,
                    synced_at,
                    remote_synced_at=synced_at if confirmed else None,
                )
            except ActivityMappingError as e:
                logger.warning("Skipping unmappable activity", owner=owner, error=str(e))
                continue
            row["id"] = uuid.uuid4()
            rows[row["remote_id"]] = row
        return rows

    async def _existing_remote_ids(self, owner: str, remote_ids: List[str]) -> set[str]:
        existing: set[str] = set()
        for start in range(0, len(remote_ids), UPSERT_CHUNK_SIZE):
            chunk = remote_ids[start:start + UPSERT_CHUNK_SIZE]
            result = await self.db.execute(
                select(Activity.remote_id).where(
                    Activity.owner == owner,
                    Activity.remote_id.in_(chunk),
                )
            )
            existing.update(result.scalars().all())
        return existing

    async def mark_synced(self, owner: str, synced_at: Optional[datetime] = None) -> None:
        """
        Stamp every cached activity of an owner as confirmed by a sync.

        Called after a complete sync so that a sync which found nothing
        new still advances ``latest_sync_time``.
        """
        synced_at = synced_at or utcnow()
        try:
            await self.db.execute(
                update(Activity)
                .where(Activity.owner == owner)
                .values(last_remote_sync_time=synced_at)
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to mark activities synced", owner=owner, error=str(e))
            raise CacheWriteError(f"Failed to mark activities synced: {e}") from e

    async def find(
        self,
        owner: str,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
    ) -> List[Activity]:
        """
        Get cached activities, newest first.

        Args:
            owner: Local owner identifier
            after: Inclusive lower bound on start_time
            before: Exclusive upper bound on start_time

        Returns:
            Activities sorted by start_time descending
        """
        stmt = select(Activity).where(Activity.owner == owner)
        if after is not None:
            stmt = stmt.where(Activity.start_time >= after)
        if before is not None:
            stmt = stmt.where(Activity.start_time < before)
        stmt = stmt.order_by(Activity.start_time.desc(), Activity.remote_id.desc())
        # Rows written by upsert_many bypass the identity map
        stmt = stmt.execution_options(populate_existing=True)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def latest_sync_time(self, owner: str) -> Optional[datetime]:
        """Most recent sync time for an owner; None means never synced."""
        result = await self.db.execute(
            select(func.max(Activity.last_remote_sync_time)).where(Activity.owner == owner)
        )
        return result.scalar_one_or_none()

    async def earliest(self, owner: str) -> Optional[datetime]:
        """Start time of the oldest cached activity."""
        result = await self.db.execute(
            select(func.min(Activity.start_time)).where(Activity.owner == owner)
        )
        return result.scalar_one_or_none()

    async def latest(self, owner: str) -> Optional[datetime]:
        """Start time of the newest cached activity."""
        result = await self.db.execute(
            select(func.max(Activity.start_time)).where(Activity.owner == owner)
        )
        return result.scalar_one_or_none()

    async def count(self, owner: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Activity).where(Activity.owner == owner)
        )
        return int(result.scalar_one())

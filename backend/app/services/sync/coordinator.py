"""
Sync Coordinator - Answers "give me an up-to-date activity list".

Decides per call whether the cache is fresh enough or a remote sync is
needed, keeps the credential valid around the fetch, and degrades to
cached data when the provider is unavailable.

Flow for a stale/empty/forced call:
    lock(owner) -> credential (refresh if expiring) -> fetch_since
    -> upsert_many -> mark_synced (complete fetch only) -> find
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import (
    AuthError,
    NetworkError,
    RateLimitError,
    RemoteAPIError,
)
from app.core.logging import get_logger
from app.models.activity import Activity
from app.services.external.strava import StravaServiceInterface
from app.services.sync.cache import ActivityCache, UpsertResult
from app.services.sync.fetcher import FetchResult, RemoteActivityFetcher
from app.services.sync.tokens import Credential, TokenStore

logger = get_logger(__name__)

# Errors that fall back to cached data instead of failing the call
_DEGRADABLE_ERRORS = (NetworkError, RateLimitError, RemoteAPIError)


class OwnerLocks:
    """One asyncio.Lock per owner; at most one sync per owner in flight."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def get(self, owner: str) -> asyncio.Lock:
        return self._locks[owner]

    def is_syncing(self, owner: str) -> bool:
        lock = self._locks.get(owner)
        return lock is not None and lock.locked()


@dataclass
class DateRange:
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None


@dataclass
class SyncMetadata:
    """Reporting metadata returned next to the activity list."""
    count: int
    date_range: DateRange
    last_sync: Optional[datetime]
    source: str  # "cache" or "remote"
    synced: Optional[UpsertResult] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class SyncResult:
    activities: List[Activity]
    metadata: SyncMetadata


class SyncCoordinator:
    """
    Orchestrates TokenStore, RemoteActivityFetcher and ActivityCache.

    Usage:
        coordinator = SyncCoordinator(
            token_store=DatabaseTokenStore(db, owner),
            fetcher=RemoteActivityFetcher(strava),
            cache=ActivityCache(db),
            auth_client=strava,
            locks=app.state.sync_locks,
        )
        result = await coordinator.get_activities(owner, force_refresh=False)
    """

    def __init__(
        self,
        token_store: TokenStore,
        fetcher: RemoteActivityFetcher,
        cache: ActivityCache,
        auth_client: StravaServiceInterface,
        locks: Optional[OwnerLocks] = None,
        staleness: Optional[timedelta] = None,
        expiry_skew: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.token_store = token_store
        self.fetcher = fetcher
        self.cache = cache
        self.auth_client = auth_client
        self.locks = locks or OwnerLocks()
        self.staleness = staleness or timedelta(minutes=settings.SYNC_STALENESS_MINUTES)
        self.expiry_skew = expiry_skew or timedelta(seconds=settings.TOKEN_EXPIRY_SKEW_SECONDS)
        self._clock = clock

    async def needs_sync(self, owner: str, force_refresh: bool = False) -> bool:
        """True when the cache is empty, stale or a refresh is forced."""
        if force_refresh:
            return True
        last_sync = await self.cache.latest_sync_time(owner)
        if last_sync is None:
            return True
        return self._clock() - last_sync >= self.staleness

    async def get_activities(
        self,
        owner: str,
        force_refresh: bool = False,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """
        Return the owner's activities, syncing from the provider if needed.

        Args:
            owner: Local owner identifier
            force_refresh: Ignore freshness and run a full sync
            after: Inclusive lower bound on start_time
            before: Exclusive upper bound on start_time
            cancel_event: Propagated to the fetcher, checked between pages

        Returns:
            SyncResult with activities (newest first) and metadata

        Raises:
            AuthError: No usable credential; the caller should log the user out
            CacheWriteError: Fetched data could not be stored
            NetworkError / RateLimitError / RemoteAPIError: Remote failure
                while the cache is empty
        """
        if not await self.needs_sync(owner, force_refresh):
            logger.info("Cache fresh, skipping remote sync", owner=owner)
            return await self._from_cache(owner, after, before)

        lock = self.locks.get(owner)
        if lock.locked():
            # Another call is syncing this owner; wait and reuse its result
            logger.info("Sync already in flight, waiting", owner=owner)
            async with lock:
                pass
            result = await self._from_cache(owner, after, before)
            if result.metadata.last_sync is None:
                result.metadata.warnings.append(
                    "Concurrent sync did not complete; no synced activities are cached yet"
                )
            return result

        async with lock:
            return await self._sync(owner, force_refresh, after, before, cancel_event)

    async def _sync(
        self,
        owner: str,
        force_refresh: bool,
        after: Optional[datetime],
        before: Optional[datetime],
        cancel_event: Optional[asyncio.Event],
    ) -> SyncResult:
        last_sync = await self.cache.latest_sync_time(owner)
        since = None if force_refresh else last_sync
        started_at = self._clock()

        logger.info(
            "Starting sync",
            owner=owner,
            mode="incremental" if since is not None else "full",
            since=since.isoformat() if since else None,
        )

        try:
            credential = await self._ensure_credential(owner)
            fetched = await self._fetch(owner, credential, since, cancel_event)
        except _DEGRADABLE_ERRORS as e:
            if last_sync is None:
                logger.error("Sync failed with empty cache", owner=owner, error=str(e))
                raise
            logger.warning("Sync failed, serving cached activities", owner=owner, error=str(e))
            result = await self._from_cache(owner, after, before)
            result.metadata.warnings.append(f"Remote sync failed: {e}")
            return result

        # Partial results are persisted; only a complete fetch advances the sync time
        synced = await self.cache.upsert_many(
            owner,
            fetched.activities,
            synced_at=started_at,
            confirmed=fetched.complete,
        )
        if fetched.complete:
            await self.cache.mark_synced(owner, started_at)

        warnings: List[str] = []
        if fetched.cancelled:
            warnings.append(
                f"Sync cancelled after {fetched.pages} page(s); results may be incomplete"
            )
        elif fetched.partial:
            warnings.append(
                f"Sync stopped after {fetched.pages} page(s): {fetched.error}"
            )

        logger.info(
            "Sync finished",
            owner=owner,
            fetched=len(fetched.activities),
            pages=fetched.pages,
            complete=fetched.complete,
            matched=synced.matched,
            inserted=synced.inserted,
        )

        activities = await self.cache.find(owner, after=after, before=before)
        metadata = await self._metadata(
            owner,
            activities,
            last_sync=started_at if fetched.complete else last_sync,
            source="remote",
        )
        metadata.synced = synced
        metadata.warnings.extend(warnings)
        return SyncResult(activities=activities, metadata=metadata)

    async def _fetch(
        self,
        owner: str,
        credential: Credential,
        since: Optional[datetime],
        cancel_event: Optional[asyncio.Event],
    ) -> FetchResult:
        """Fetch, refreshing the token once if the provider rejects it mid-sync."""
        try:
            return await self.fetcher.fetch_since(credential.access_token, since, cancel_event)
        except AuthError:
            logger.warning("Access token rejected, forcing refresh", owner=owner)

        credential = await self._refresh(owner, credential)
        try:
            return await self.fetcher.fetch_since(credential.access_token, since, cancel_event)
        except AuthError:
            logger.error("Access token rejected after refresh, clearing credential", owner=owner)
            await self.token_store.clear()
            raise

    async def _ensure_credential(self, owner: str) -> Credential:
        credential = await self.token_store.get()
        if credential is None:
            raise AuthError(f"No credential stored for owner {owner}")

        if self.token_store.is_expiring_soon(credential, self.expiry_skew, self._clock()):
            logger.info(
                "Credential expiring soon, refreshing",
                owner=owner,
                expires_at=credential.expires_at.isoformat(),
            )
            credential = await self._refresh(owner, credential)
        return credential

    async def _refresh(self, owner: str, credential: Credential) -> Credential:
        """
        Refresh the token pair.

        A rejected grant or an unusable token response clears the store and
        raises AuthError. Timeouts, 5xx and 429 from the token endpoint are
        retried under the fetcher budgets and then re-raised with the stored
        credential left in place.
        """
        try:
            payload = await self.fetcher.with_retries(
                lambda: self.auth_client.refresh_access_token(credential.refresh_token),
                endpoint="oauth/token",
            )
            refreshed = Credential.from_token_response(payload, previous=credential)
        except _DEGRADABLE_ERRORS as e:
            logger.warning(
                "Token refresh unavailable, keeping credential",
                owner=owner,
                error=str(e),
            )
            raise
        except (AuthError, KeyError, ValueError) as e:
            logger.error("Token refresh failed, clearing credential", owner=owner, error=str(e))
            await self.token_store.clear()
            raise AuthError(f"Token refresh failed: {e}") from e

        await self.token_store.set(refreshed)
        logger.info(
            "Token refreshed",
            owner=owner,
            expires_at=refreshed.expires_at.isoformat(),
        )
        return refreshed

    async def _from_cache(
        self,
        owner: str,
        after: Optional[datetime],
        before: Optional[datetime],
    ) -> SyncResult:
        activities = await self.cache.find(owner, after=after, before=before)
        metadata = await self._metadata(
            owner,
            activities,
            last_sync=await self.cache.latest_sync_time(owner),
            source="cache",
        )
        return SyncResult(activities=activities, metadata=metadata)

    async def _metadata(
        self,
        owner: str,
        activities: List[Activity],
        last_sync: Optional[datetime],
        source: str,
    ) -> SyncMetadata:
        return SyncMetadata(
            count=len(activities),
            date_range=DateRange(
                earliest=await self.cache.earliest(owner),
                latest=await self.cache.latest(owner),
            ),
            last_sync=last_sync,
            source=source,
        )

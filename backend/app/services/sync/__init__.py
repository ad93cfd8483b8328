"""
Sync module - Keeps the local activity cache in step with Strava.

This module provides:
- Token storage and expiry checks
- Paginated remote fetching with rate-limit and retry handling
- Batched, idempotent cache writes
- The coordinator that decides when to sync
"""
from app.services.sync.cache import ActivityCache, UpsertResult
from app.services.sync.coordinator import (
    DateRange,
    OwnerLocks,
    SyncCoordinator,
    SyncMetadata,
    SyncResult,
)
from app.services.sync.fetcher import FetchResult, RemoteActivityFetcher
from app.services.sync.mapper import ActivityMappingError, map_strava_activity
from app.services.sync.tokens import (
    Credential,
    DatabaseTokenStore,
    InMemoryTokenStore,
    TokenStore,
    is_expiring_soon,
)

__all__ = [
    # Tokens
    "Credential",
    "TokenStore",
    "InMemoryTokenStore",
    "DatabaseTokenStore",
    "is_expiring_soon",
    # Fetching
    "RemoteActivityFetcher",
    "FetchResult",
    # Cache
    "ActivityCache",
    "UpsertResult",
    "ActivityMappingError",
    "map_strava_activity",
    # Coordination
    "SyncCoordinator",
    "SyncResult",
    "SyncMetadata",
    "DateRange",
    "OwnerLocks",
]

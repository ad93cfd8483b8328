"""
Shared API dependencies.
"""
from fastapi import Request

from app.services.external.strava import StravaService
from app.services.sync.coordinator import OwnerLocks


def get_strava_service() -> StravaService:
    """Strava client configured from settings."""
    return StravaService()


def get_sync_locks(request: Request) -> OwnerLocks:
    """Process-wide per-owner sync locks."""
    return request.app.state.sync_locks

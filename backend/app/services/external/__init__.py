"""
External Services - Integration with external platforms.

Services:
- StravaService: Strava OAuth and activity listing
"""
from app.services.external.strava import (
    PageResponse,
    RateLimitInfo,
    StravaService,
    StravaServiceInterface,
)

__all__ = [
    "PageResponse",
    "RateLimitInfo",
    "StravaService",
    "StravaServiceInterface",
]

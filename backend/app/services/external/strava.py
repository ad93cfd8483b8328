"""
Strava Service - Integration with the Strava API.

Covers the OAuth token endpoints and the paginated athlete activity
listing. Pagination and retry policy live in the sync fetcher; this
module performs single requests and maps HTTP failures onto the sync
error taxonomy.
"""
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

import httpx

from app.core.config import settings
from app.core.errors import (
    AuthError,
    NetworkError,
    RateLimitError,
    RemoteAPIError,
)
from app.core.logging import get_logger, track_remote_call

logger = get_logger(__name__)

# Strava's short rate-limit window is 15 minutes, aligned to the clock
SHORT_WINDOW_SECONDS = 15 * 60


@dataclass
class RateLimitInfo:
    """Rate limit state parsed from Strava response headers."""
    short_limit: Optional[int] = None
    long_limit: Optional[int] = None
    short_usage: Optional[int] = None
    long_usage: Optional[int] = None
    reset_seconds: Optional[float] = None  # explicit hint, if the response had one

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        now: Optional[float] = None,
    ) -> "RateLimitInfo":
        """
        Parse X-RateLimit-* and Retry-After headers.

        X-RateLimit-Limit / X-RateLimit-Usage are "short,long" pairs.
        X-RateLimit-Reset is accepted either as seconds until reset or as
        an epoch timestamp. Retry-After wins when both are present.
        """
        now = time.time() if now is None else now
        short_limit, long_limit = _parse_pair(headers.get("x-ratelimit-limit"))
        short_usage, long_usage = _parse_pair(headers.get("x-ratelimit-usage"))

        reset_seconds = _parse_float(headers.get("retry-after"))
        if reset_seconds is None:
            reset = _parse_float(headers.get("x-ratelimit-reset"))
            if reset is not None:
                # Anything this large is an epoch timestamp, not a duration
                reset_seconds = reset - now if reset > 1_000_000_000 else reset

        if reset_seconds is not None:
            reset_seconds = max(reset_seconds, 0.0)

        return cls(
            short_limit=short_limit,
            long_limit=long_limit,
            short_usage=short_usage,
            long_usage=long_usage,
            reset_seconds=reset_seconds,
        )

    def seconds_until_reset(self, now: Optional[float] = None) -> float:
        """Seconds to wait before the window resets."""
        if self.reset_seconds is not None:
            return self.reset_seconds
        now = time.time() if now is None else now
        next_window = math.floor(now / SHORT_WINDOW_SECONDS + 1) * SHORT_WINDOW_SECONDS
        return max(next_window - now, 0.0)

    def is_near_limit(self, threshold: float = 0.8) -> bool:
        """True when short-window usage is above the given fraction of the limit."""
        if not self.short_limit or self.short_usage is None:
            return False
        return self.short_usage > self.short_limit * threshold

    def usage_label(self) -> Optional[str]:
        if self.short_usage is None or self.short_limit is None:
            return None
        return f"{self.short_usage}/{self.short_limit}"


@dataclass
class PageResponse:
    """One page of the athlete activity listing."""
    page: int
    activities: List[Dict[str, Any]] = field(default_factory=list)
    rate_limit: RateLimitInfo = field(default_factory=RateLimitInfo)


def _parse_pair(value: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    if not value:
        return None, None
    parts = [p.strip() for p in value.split(",")]
    try:
        first = int(parts[0]) if parts[0] else None
        second = int(parts[1]) if len(parts) > 1 and parts[1] else None
    except ValueError:
        return None, None
    return first, second


def _parse_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


class StravaServiceInterface(ABC):
    """Abstract interface for Strava integration."""

    @abstractmethod
    def get_authorization_url(self, redirect_uri: str, scope: Optional[str] = None) -> str:
        """Get OAuth authorization URL."""
        pass

    @abstractmethod
    async def exchange_token(self, code: str) -> Dict[str, Any]:
        """Exchange authorization code for access token."""
        pass

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new token pair."""
        pass

    @abstractmethod
    async def get_activities_page(
        self,
        access_token: str,
        page: int,
        per_page: int,
        after: Optional[int] = None,
    ) -> PageResponse:
        """Get one page of athlete activities."""
        pass


class StravaService(StravaServiceInterface):
    """
    Strava API client.

    Every call opens a short-lived httpx.AsyncClient. Tests inject an
    ``httpx.MockTransport`` through ``transport``.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        oauth_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the Strava service.

        Args:
            client_id: Strava API client ID
            client_secret: Strava API client secret
            base_url: API root, defaults to settings.STRAVA_API_URL
            oauth_url: OAuth root, defaults to settings.STRAVA_OAUTH_URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport override
        """
        self.client_id = client_id if client_id is not None else settings.STRAVA_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else settings.STRAVA_CLIENT_SECRET
        )
        self.base_url = (base_url or settings.STRAVA_API_URL).rstrip("/")
        self.auth_url = (oauth_url or settings.STRAVA_OAUTH_URL).rstrip("/")
        self.timeout = timeout or settings.STRAVA_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def get_authorization_url(self, redirect_uri: str, scope: Optional[str] = None) -> str:
        """
        Get OAuth authorization URL.

        Args:
            redirect_uri: OAuth redirect URI
            scope: Comma separated scopes, defaults to settings.STRAVA_SCOPE

        Returns:
            Authorization URL
        """
        query = urlencode({
            "client_id": self.client_id or "",
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "approval_prompt": "auto",
            "scope": scope or settings.STRAVA_SCOPE,
        })
        return f"{self.auth_url}/authorize?{query}"

    async def exchange_token(self, code: str) -> Dict[str, Any]:
        """
        Exchange authorization code for access token.

        Args:
            code: Authorization code from OAuth flow

        Returns:
            Token response with access_token, refresh_token, expires_at
            and the athlete summary

        Raises:
            AuthError: Strava rejected the code
            NetworkError: Transport failure or 5xx
        """
        return await self._post_token({
            "code": code,
            "grant_type": "authorization_code",
        })

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new token pair.

        Args:
            refresh_token: Current refresh token

        Returns:
            Token response with access_token, refresh_token, expires_at

        Raises:
            AuthError: Refresh token is invalid or revoked
            NetworkError: Transport failure or 5xx
        """
        return await self._post_token({
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })

    async def _post_token(self, payload: Dict[str, str]) -> Dict[str, Any]:
        grant_type = payload["grant_type"]
        with track_remote_call(
            logger, "strava", "oauth/token", method="POST",
            params={"grant_type": grant_type},
        ) as call:
            try:
                async with self._client() as client:
                    response = await client.post(
                        f"{self.auth_url}/token",
                        data={
                            "client_id": self.client_id or "",
                            "client_secret": self.client_secret or "",
                            **payload,
                        },
                    )
            except httpx.TimeoutException as e:
                call.set_error("timeout", str(e))
                raise NetworkError(f"Token request timed out ({grant_type})") from e
            except httpx.TransportError as e:
                call.set_error("transport", str(e))
                raise NetworkError(f"Token request failed ({grant_type}): {e}") from e

            if response.status_code in (400, 401, 403):
                call.set_error("auth", _error_detail(response), response.status_code)
                raise AuthError(
                    f"Strava rejected {grant_type} grant: {_error_detail(response)}"
                )
            self._raise_for_status(response, call)

            data = response.json()
            call.set_response(response.status_code)

        for key in ("access_token", "refresh_token", "expires_at"):
            if key not in data:
                raise RemoteAPIError(f"Token response missing '{key}'", response.status_code)
        return data

    async def get_activities_page(
        self,
        access_token: str,
        page: int,
        per_page: int,
        after: Optional[int] = None,
    ) -> PageResponse:
        """
        Get one page of athlete activities.

        Args:
            access_token: Strava access token
            page: 1-based page number
            per_page: Page size
            after: Epoch seconds; only activities starting after it are listed

        Returns:
            PageResponse with raw activity dicts and rate limit state

        Raises:
            AuthError: 401/403
            RateLimitError: 429, carries the wait suggested by the headers
            NetworkError: Transport failure or 5xx
            RemoteAPIError: Other non-success status
        """
        params: Dict[str, int] = {"page": page, "per_page": per_page}
        if after is not None:
            params["after"] = after

        with track_remote_call(logger, "strava", "athlete/activities", params=params) as call:
            try:
                async with self._client() as client:
                    response = await client.get(
                        f"{self.base_url}/athlete/activities",
                        headers={"Authorization": f"Bearer {access_token}"},
                        params=params,
                    )
            except httpx.TimeoutException as e:
                call.set_error("timeout", str(e))
                raise NetworkError(f"Activity page {page} timed out") from e
            except httpx.TransportError as e:
                call.set_error("transport", str(e))
                raise NetworkError(f"Activity page {page} failed: {e}") from e

            rate_limit = RateLimitInfo.from_headers(response.headers)

            if response.status_code in (401, 403):
                call.set_error("auth", _error_detail(response), response.status_code)
                raise AuthError(f"Access token rejected: {_error_detail(response)}")
            if response.status_code == 429:
                wait = rate_limit.seconds_until_reset()
                call.set_error("rate_limited", f"retry in {wait:.0f}s", 429)
                raise RateLimitError(
                    f"Rate limited on page {page}",
                    retry_after=wait,
                    rate_limit=rate_limit,
                )
            self._raise_for_status(response, call)

            data = response.json()
            if not isinstance(data, list):
                call.set_error("bad_payload", type(data).__name__, response.status_code)
                raise RemoteAPIError(
                    f"Expected a list of activities, got {type(data).__name__}",
                    response.status_code,
                )

            call.set_response(
                response.status_code,
                item_count=len(data),
                rate_limit_usage=rate_limit.usage_label(),
            )

        return PageResponse(page=page, activities=data, rate_limit=rate_limit)

    @staticmethod
    def _raise_for_status(response: httpx.Response, call) -> None:
        if response.status_code >= 500:
            call.set_error("server_error", _error_detail(response), response.status_code)
            raise NetworkError(
                f"Strava server error {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            call.set_error("api_error", _error_detail(response), response.status_code)
            raise RemoteAPIError(
                f"Strava API error {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )

    def is_configured(self) -> bool:
        """Check if the service is properly configured."""
        return bool(self.client_id and self.client_secret)


def _error_detail(response: httpx.Response) -> str:
    """Short error description from a Strava error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or str(response.status_code)
    if isinstance(body, dict):
        return str(body.get("message") or body.get("errors") or body)[:200]
    return str(body)[:200]

"""
Remote Activity Fetcher - Paginated retrieval with retry.

Pages through the athlete activity listing until a short page comes
back. Rate-limited pages are retried after the provider's reset hint,
transient failures with exponential backoff. When retries run out after
some pages were already collected, those pages are returned instead of
being thrown away.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from app.core.clock import to_epoch
from app.core.config import settings
from app.core.errors import NetworkError, RateLimitError, SyncError
from app.core.logging import get_logger
from app.services.external.strava import PageResponse, StravaServiceInterface

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
T = TypeVar("T")

# Fraction of the short-window limit above which pages are spaced further apart
NEAR_LIMIT_THRESHOLD = 0.8
NEAR_LIMIT_MIN_DELAY = 2.0


@dataclass
class FetchResult:
    """Outcome of one paginated fetch."""
    activities: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    complete: bool = True
    cancelled: bool = False
    error: Optional[SyncError] = None

    @property
    def partial(self) -> bool:
        return not self.complete


class RemoteActivityFetcher:
    """
    Fetches every activity after a timestamp, one page at a time.

    Usage:
        fetcher = RemoteActivityFetcher(StravaService())
        result = await fetcher.fetch_since(access_token, since=last_sync)
    """

    def __init__(
        self,
        client: StravaServiceInterface,
        page_size: Optional[int] = None,
        page_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        max_rate_limit_wait: Optional[float] = None,
        max_rate_limit_retries: Optional[int] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.page_size = page_size or settings.STRAVA_PAGE_SIZE
        self.page_delay = (
            settings.STRAVA_PAGE_DELAY_SECONDS if page_delay is None else page_delay
        )
        self.max_retries = max_retries or settings.STRAVA_MAX_RETRIES
        self.backoff_base = (
            settings.STRAVA_RETRY_BACKOFF_SECONDS if backoff_base is None else backoff_base
        )
        self.max_rate_limit_wait = (
            settings.STRAVA_MAX_RATE_LIMIT_WAIT_SECONDS
            if max_rate_limit_wait is None else max_rate_limit_wait
        )
        self.max_rate_limit_retries = (
            settings.STRAVA_MAX_RATE_LIMIT_RETRIES
            if max_rate_limit_retries is None else max_rate_limit_retries
        )
        self._sleep = sleep

    async def fetch_since(
        self,
        access_token: str,
        since: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FetchResult:
        """
        Fetch all activities starting after ``since``.

        Args:
            access_token: Valid Strava access token
            since: Only fetch activities after this time; None means all time
            cancel_event: Checked between pages, never mid-page

        Returns:
            FetchResult; ``complete`` is False when pagination stopped early

        Raises:
            AuthError: Token rejected, raised on the first 401
            NetworkError / RateLimitError: Retries exhausted before any page
                was collected
            RemoteAPIError: Non-retryable provider error
        """
        after = to_epoch(since) if since is not None else None
        activities: List[Dict[str, Any]] = []
        page = 1

        logger.info(
            "Starting activity fetch",
            after=after,
            page_size=self.page_size,
            mode="incremental" if after is not None else "full",
        )

        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Activity fetch cancelled", page=page, collected=len(activities))
                return FetchResult(
                    activities=activities,
                    pages=page - 1,
                    complete=False,
                    cancelled=True,
                )

            try:
                response = await self._fetch_page(access_token, page, after)
            except (NetworkError, RateLimitError) as e:
                if not activities:
                    raise
                logger.warning(
                    "Stopping pagination early, keeping collected pages",
                    page=page,
                    collected=len(activities),
                    error=str(e),
                )
                return FetchResult(
                    activities=activities,
                    pages=page - 1,
                    complete=False,
                    error=e,
                )

            items = response.activities
            activities.extend(items)

            # A short or empty page marks the end of the listing
            if len(items) < self.page_size:
                break

            page += 1
            delay = self.page_delay
            if response.rate_limit.is_near_limit(NEAR_LIMIT_THRESHOLD):
                delay = max(delay * 2, NEAR_LIMIT_MIN_DELAY)
                logger.info(
                    "Approaching rate limit, slowing down",
                    usage=response.rate_limit.usage_label(),
                    delay=delay,
                )
            await self._sleep(delay)

        logger.info("Activity fetch complete", pages=page, collected=len(activities))
        return FetchResult(activities=activities, pages=page)

    async def _fetch_page(
        self,
        access_token: str,
        page: int,
        after: Optional[int],
    ) -> PageResponse:
        """Fetch a single page, retrying it in place on 429 and transient errors."""
        return await self.with_retries(
            lambda: self.client.get_activities_page(
                access_token,
                page=page,
                per_page=self.page_size,
                after=after,
            ),
            page=page,
        )

    async def with_retries(
        self,
        operation: Callable[[], Awaitable[T]],
        **log_context: Any,
    ) -> T:
        """
        Run a provider call under the rate-limit and transient-error budgets.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            log_context: Extra fields for the retry log lines

        Raises:
            RateLimitError: More than max_rate_limit_retries waits were needed
            NetworkError: max_retries attempts failed
        """
        failures = 0
        rate_limit_waits = 0

        while True:
            try:
                return await operation()
            except RateLimitError as e:
                rate_limit_waits += 1
                if rate_limit_waits > self.max_rate_limit_retries:
                    logger.error(
                        "Rate limit retry budget exhausted",
                        waits=rate_limit_waits - 1,
                        **log_context,
                    )
                    raise
                wait = min(e.retry_after, self.max_rate_limit_wait)
                logger.warning(
                    "Rate limited, waiting for window reset",
                    wait_seconds=round(wait, 1),
                    attempt=rate_limit_waits,
                    **log_context,
                )
                await self._sleep(wait)
            except NetworkError as e:
                failures += 1
                if failures >= self.max_retries:
                    logger.error(
                        "Retry budget exhausted",
                        attempts=failures,
                        error=str(e),
                        **log_context,
                    )
                    raise
                backoff = self.backoff_base * 2 ** (failures - 1)
                logger.warning(
                    "Transient error, retrying",
                    attempt=failures,
                    backoff_seconds=backoff,
                    error=str(e),
                    **log_context,
                )
                await self._sleep(backoff)

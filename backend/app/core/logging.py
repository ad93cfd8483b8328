"""
Structured logging configuration.
Designed for easy debugging without exposing sensitive data.
"""
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

import structlog
from structlog.types import Processor

from app.core.config import settings


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog and route stdlib logging through it.

    Safe to call more than once; the root handler is replaced, not stacked.

    Args:
        level: Log level name, defaults to settings.LOG_LEVEL
    """

    # Common processors
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.LOG_FORMAT == "json":
        # JSON format for production
        renderer = structlog.processors.JSONRenderer()
    else:
        # Console format for development
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure root logger
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper()))

    # Provider requests are already logged by track_remote_call
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    if not settings.DATABASE_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


# ========================================
# Remote Call Logging
# ========================================

@dataclass
class RemoteCallLog:
    """Complete log entry for a single provider API call."""
    call_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    provider: str = ""
    method: str = "GET"
    endpoint: str = ""

    # Request info (never includes tokens)
    params: dict = field(default_factory=dict)

    # Response info
    status_code: Optional[int] = None
    item_count: Optional[int] = None
    rate_limit_usage: Optional[str] = None

    # Timing
    start_time: float = 0.0
    end_time: float = 0.0
    duration_ms: float = 0.0

    # Status
    success: bool = True
    error_type: Optional[str] = None
    error_message: Optional[str] = None


class RemoteCallTracker:
    """Tracker for a single provider API call."""

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        enabled: bool,
        provider: str,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
    ):
        self.logger = logger
        self.enabled = enabled
        self.log = RemoteCallLog(
            provider=provider,
            method=method,
            endpoint=endpoint,
            params=dict(params or {}),
        )

    def start(self) -> None:
        """Mark the start of the call."""
        self.log.start_time = time.time()

        if self.enabled:
            self.logger.debug(
                "Remote call started",
                call_id=self.log.call_id,
                provider=self.log.provider,
                method=self.log.method,
                endpoint=self.log.endpoint,
                **self.log.params,
            )

    def set_response(
        self,
        status_code: int,
        item_count: Optional[int] = None,
        rate_limit_usage: Optional[str] = None,
    ) -> None:
        """Record a successful response."""
        self.log.status_code = status_code
        self.log.item_count = item_count
        self.log.rate_limit_usage = rate_limit_usage
        self.log.success = True

    def set_error(
        self,
        error_type: str,
        error_message: str,
        status_code: Optional[int] = None,
    ) -> None:
        """Set error information."""
        self.log.success = False
        self.log.error_type = error_type
        self.log.error_message = error_message
        if status_code is not None:
            self.log.status_code = status_code

    def finish(self) -> None:
        """Mark the end of the call and log summary."""
        self.log.end_time = time.time()
        self.log.duration_ms = (self.log.end_time - self.log.start_time) * 1000

        if self.log.success:
            self.logger.info(
                "Remote call completed",
                call_id=self.log.call_id,
                provider=self.log.provider,
                endpoint=self.log.endpoint,
                status_code=self.log.status_code,
                item_count=self.log.item_count,
                rate_limit_usage=self.log.rate_limit_usage,
                duration_ms=round(self.log.duration_ms, 2),
                **self.log.params,
            )
        else:
            self.logger.warning(
                "Remote call failed",
                call_id=self.log.call_id,
                provider=self.log.provider,
                endpoint=self.log.endpoint,
                status_code=self.log.status_code,
                duration_ms=round(self.log.duration_ms, 2),
                error_type=self.log.error_type,
                error_message=self.log.error_message,
                **self.log.params,
            )


@contextmanager
def track_remote_call(
    logger: structlog.stdlib.BoundLogger,
    provider: str,
    endpoint: str,
    method: str = "GET",
    params: Optional[dict[str, Any]] = None,
) -> Generator[RemoteCallTracker, None, None]:
    """
    Context manager for tracking a provider API call.

    Usage:
        with track_remote_call(logger, "strava", "athlete/activities",
                               params={"page": 2}) as call:
            response = await client.get(...)
            call.set_response(response.status_code, item_count=len(items))
    """
    tracker = RemoteCallTracker(
        logger=logger,
        enabled=settings.SYNC_DEBUG_LOG,
        provider=provider,
        method=method,
        endpoint=endpoint,
        params=params,
    )
    tracker.start()
    try:
        yield tracker
    except Exception as e:
        if tracker.log.success:
            tracker.set_error(type(e).__name__, str(e))
        raise
    finally:
        tracker.finish()

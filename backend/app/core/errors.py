"""
Sync error taxonomy.

- AuthError: credential missing, expired or rejected. Never retried.
- RateLimitError: provider returned 429. Retried by the fetcher.
- NetworkError: timeouts, transport failures and 5xx. Retried with a budget.
- RemoteAPIError: any other non-success response. Not retried.
- CacheWriteError: a batched cache write failed and was rolled back.
"""
from typing import Any, Optional


class SyncError(Exception):
    """Base class for activity synchronization errors."""


class AuthError(SyncError):
    """Credential is missing, expired or was rejected by the provider."""


class RemoteAPIError(SyncError):
    """Provider answered with a non-success status that is not retryable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(RemoteAPIError):
    """Provider rejected the request with HTTP 429."""

    def __init__(
        self,
        message: str,
        retry_after: float,
        rate_limit: Optional[Any] = None,
    ):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after
        self.rate_limit = rate_limit


class NetworkError(SyncError):
    """Transient transport failure or provider-side 5xx."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


TransientRemoteError = NetworkError


class CacheWriteError(SyncError):
    """Batched write to the activity cache failed."""

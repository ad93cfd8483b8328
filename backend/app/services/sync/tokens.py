"""
Token Store - Holds the Strava token pair for one owner.

The store only persists and hands out credentials; deciding when to
refresh is ``is_expiring_soon`` and performing the refresh is the
coordinator's job.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import from_epoch, utcnow
from app.core.logging import get_logger
from app.models.credential import StravaCredential

logger = get_logger(__name__)

DEFAULT_EXPIRY_SKEW = timedelta(minutes=5)


@dataclass(frozen=True)
class Credential:
    """Access/refresh token pair with its expiry (naive UTC)."""
    access_token: str
    refresh_token: str
    expires_at: datetime

    @classmethod
    def from_token_response(
        cls,
        payload: Dict[str, Any],
        previous: Optional["Credential"] = None,
    ) -> "Credential":
        """
        Build a credential from a Strava token endpoint response.

        A refresh response may omit the refresh token, in which case the
        previous one stays valid.
        """
        refresh_token = payload.get("refresh_token") or (
            previous.refresh_token if previous else None
        )
        if not refresh_token:
            raise ValueError("Token response has no refresh_token")
        return cls(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            expires_at=from_epoch(int(payload["expires_at"])),
        )

    def __repr__(self) -> str:
        return f"Credential(expires_at={self.expires_at.isoformat()})"


def is_expiring_soon(
    credential: Credential,
    skew: timedelta = DEFAULT_EXPIRY_SKEW,
    now: Optional[datetime] = None,
) -> bool:
    """True if the credential expires within ``skew`` of ``now``."""
    now = now or utcnow()
    return now >= credential.expires_at - skew


class TokenStore(ABC):
    """Credential storage scoped to a single authenticated owner."""

    @abstractmethod
    async def get(self) -> Optional[Credential]:
        """Return the stored credential, if any."""
        pass

    @abstractmethod
    async def set(self, credential: Credential) -> None:
        """Persist the credential, replacing any previous value."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove the credential."""
        pass

    def is_expiring_soon(
        self,
        credential: Credential,
        skew: timedelta = DEFAULT_EXPIRY_SKEW,
        now: Optional[datetime] = None,
    ) -> bool:
        return is_expiring_soon(credential, skew, now)


class InMemoryTokenStore(TokenStore):
    """Process-local store, used by tests and one-off scripts."""

    def __init__(self, credential: Optional[Credential] = None):
        self._credential = credential

    async def get(self) -> Optional[Credential]:
        return self._credential

    async def set(self, credential: Credential) -> None:
        self._credential = credential

    async def clear(self) -> None:
        self._credential = None


class DatabaseTokenStore(TokenStore):
    """
    Store backed by the ``strava_credentials`` table.

    ``set`` is a single insert-or-update statement so a concurrent reader
    sees either the old or the new pair, never a mix.
    """

    def __init__(self, db: AsyncSession, owner: str):
        self.db = db
        self.owner = owner

    async def get(self) -> Optional[Credential]:
        result = await self.db.execute(
            select(StravaCredential)
            .where(StravaCredential.owner == self.owner)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return Credential(
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            expires_at=row.expires_at,
        )

    async def set(self, credential: Credential) -> None:
        now = utcnow()
        insert = pg_insert if self.db.bind.dialect.name == "postgresql" else sqlite_insert
        values = {
            "access_token": credential.access_token,
            "refresh_token": credential.refresh_token,
            "expires_at": credential.expires_at,
            "updated_at": now,
        }
        stmt = insert(StravaCredential).values(owner=self.owner, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["owner"], set_=values)

        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to store credential", owner=self.owner, error=str(e))
            raise

        logger.info(
            "Stored credential",
            owner=self.owner,
            expires_at=credential.expires_at.isoformat()
        )

    async def clear(self) -> None:
        await self.db.execute(
            delete(StravaCredential).where(StravaCredential.owner == self.owner)
        )
        await self.db.commit()
        logger.info("Cleared credential", owner=self.owner)

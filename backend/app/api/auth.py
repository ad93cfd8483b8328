"""
Strava authentication API endpoints.
"""
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_strava_service
from app.core.config import settings
from app.core.database import get_db
from app.core.errors import AuthError, NetworkError, RemoteAPIError
from app.core.logging import get_logger
from app.services.external.strava import StravaService
from app.services.sync import Credential, DatabaseTokenStore, is_expiring_soon

logger = get_logger(__name__)
router = APIRouter()


class AuthUrlResponse(BaseModel):
    url: str


class ExchangeRequest(BaseModel):
    """Authorization code returned to the OAuth redirect URI."""
    code: str = Field(..., min_length=1)


class ExchangeResponse(BaseModel):
    owner: str
    expiresAt: str


@router.get("/url", response_model=AuthUrlResponse)
async def get_auth_url(
    redirectUri: str = Query(..., description="OAuth redirect URI"),
    strava: StravaService = Depends(get_strava_service),
):
    """
    Build the Strava authorization URL.
    """
    if not strava.is_configured():
        raise HTTPException(status_code=503, detail="Strava client is not configured")
    return AuthUrlResponse(url=strava.get_authorization_url(redirectUri))


@router.post("/exchange", response_model=ExchangeResponse)
async def exchange_code(
    request: ExchangeRequest,
    db: AsyncSession = Depends(get_db),
    strava: StravaService = Depends(get_strava_service),
):
    """
    Exchange an authorization code and store the credential.

    The Strava athlete id becomes the owner identifier.
    """
    try:
        payload = await strava.exchange_token(request.code)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except (NetworkError, RemoteAPIError) as e:
        raise HTTPException(status_code=502, detail=f"Strava unavailable: {e}")

    athlete = payload.get("athlete") or {}
    if athlete.get("id") is None:
        raise HTTPException(status_code=502, detail="Token response has no athlete")

    owner = str(athlete["id"])
    credential = Credential.from_token_response(payload)
    await DatabaseTokenStore(db, owner).set(credential)

    logger.info("Athlete authenticated", owner=owner)

    return ExchangeResponse(
        owner=owner,
        expiresAt=credential.expires_at.isoformat() + "Z",
    )


@router.post("/{owner}/logout")
async def logout(
    owner: str,
    db: AsyncSession = Depends(get_db),
):
    """
    Forget the stored credential. Cached activities are kept.
    """
    await DatabaseTokenStore(db, owner).clear()
    logger.info("Athlete logged out", owner=owner)
    return {"message": "Logged out"}


class AuthStatusResponse(BaseModel):
    """Whether an owner has a stored Strava credential."""
    owner: str
    authenticated: bool
    expiresAt: Optional[str] = None
    expiringSoon: bool = False


@router.get("/{owner}/status", response_model=AuthStatusResponse)
async def get_auth_status(
    owner: str,
    db: AsyncSession = Depends(get_db),
):
    """
    Report whether the owner is connected to Strava.

    Does not contact Strava; an expired access token still counts as
    authenticated because the next sync refreshes it.
    """
    credential = await DatabaseTokenStore(db, owner).get()
    if credential is None:
        return AuthStatusResponse(owner=owner, authenticated=False)

    return AuthStatusResponse(
        owner=owner,
        authenticated=True,
        expiresAt=credential.expires_at.isoformat() + "Z",
        expiringSoon=is_expiring_soon(
            credential,
            skew=timedelta(seconds=settings.TOKEN_EXPIRY_SKEW_SECONDS),
        ),
    )

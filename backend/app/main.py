"""
PulseSync Backend - FastAPI Application
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.database import init_db
from app.api import activities, auth
from app.services.sync import OwnerLocks

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    logger.info(
        "Starting PulseSync Backend",
        version="1.0.0",
        strava_configured=settings.is_strava_configured(),
    )
    await init_db()
    logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down PulseSync Backend")


app = FastAPI(
    title="PulseSync API",
    description="Strava activity sync and training metrics backend",
    version="1.0.0",
    lifespan=lifespan,
)

# One lock per owner, shared by every request in this process
app.state.sync_locks = OwnerLocks()

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(activities.router, prefix="/api/activities", tags=["activities"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "pulsesync-backend"}

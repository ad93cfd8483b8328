"""Tests for the HTTP endpoints."""

from datetime import timedelta

import httpx
import pytest

from app.api.deps import get_strava_service
from app.core.clock import to_epoch, utcnow
from app.core.config import settings
from app.core.database import get_db
from app.main import app
from app.services.external.strava import StravaService

from factories import raw_page

ATHLETE_ID = 42


class FakeStrava:
    """Routes Strava requests to canned responses."""

    def __init__(self, activities=None, activity_status=200, activity_headers=None):
        self.activities = activities if activities is not None else []
        self.activity_status = activity_status
        self.activity_headers = activity_headers or {}
        self.activity_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth/token"):
            return httpx.Response(
                200,
                json={
                    "access_token": "access-1",
                    "refresh_token": "refresh-1",
                    "expires_at": to_epoch(utcnow() + timedelta(hours=6)),
                    "athlete": {"id": ATHLETE_ID, "firstname": "Ada"},
                },
            )
        if request.url.path.endswith("/athlete/activities"):
            self.activity_requests += 1
            if self.activity_status != 200:
                return httpx.Response(
                    self.activity_status,
                    json={"message": "error"},
                    headers=self.activity_headers,
                )
            page = int(request.url.params["page"])
            return httpx.Response(200, json=self.activities if page == 1 else [])
        return httpx.Response(404)


@pytest.fixture
def fake_strava():
    return FakeStrava()


@pytest.fixture
async def client(session_maker, fake_strava):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    def override_strava():
        return StravaService(
            client_id="1234",
            client_secret="secret",
            base_url="https://strava.test/api/v3",
            oauth_url="https://strava.test/oauth",
            transport=httpx.MockTransport(fake_strava),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_strava_service] = override_strava
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def login(client) -> str:
    response = await client.post("/api/auth/exchange", json={"code": "abc"})
    assert response.status_code == 200
    return response.json()["owner"]


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_auth_url(client):
    response = await client.get("/api/auth/url", params={"redirectUri": "http://localhost/cb"})

    assert response.status_code == 200
    assert response.json()["url"].startswith("https://strava.test/oauth/authorize?")


async def test_exchange_uses_athlete_id_as_owner(client):
    owner = await login(client)

    assert owner == str(ATHLETE_ID)


async def test_activities_without_credential_is_unauthorized(client):
    response = await client.get("/api/activities/999")

    assert response.status_code == 401


async def test_activities_sync_then_serve_from_cache(client, fake_strava):
    fake_strava.activities = raw_page(1, 3, start=utcnow() - timedelta(days=1))
    owner = await login(client)

    first = await client.get(f"/api/activities/{owner}")
    second = await client.get(f"/api/activities/{owner}")

    assert first.status_code == 200
    body = first.json()
    assert body["metadata"]["source"] == "remote"
    assert body["metadata"]["count"] == 3
    assert body["metadata"]["synced"] == {"matched": 0, "inserted": 3}
    assert [a["remoteId"] for a in body["activities"]] == ["1", "2", "3"]
    assert body["activities"][0]["startTime"].endswith("Z")

    assert second.json()["metadata"]["source"] == "cache"
    assert fake_strava.activity_requests == 1


async def test_activities_remote_failure_with_empty_cache(client, fake_strava):
    fake_strava.activity_status = 404
    owner = await login(client)

    response = await client.get(f"/api/activities/{owner}")

    assert response.status_code == 502


async def test_metrics_from_cache(client, fake_strava):
    now = utcnow()
    page = raw_page(1, 2, start=now - timedelta(days=1))
    for activity in page:
        activity["average_heartrate"] = 90
    fake_strava.activities = page
    owner = await login(client)
    await client.get(f"/api/activities/{owner}")

    response = await client.get(f"/api/activities/{owner}/metrics", params={"days": 7})

    assert response.status_code == 200
    body = response.json()
    assert body["activityCount"] == 2
    assert body["windowDays"] == 7
    assert body["zones"]["zone1"] == 100.0
    assert body["trainingLoad"]["acute"] > 0


async def test_logout_forgets_credential(client, fake_strava):
    owner = await login(client)

    response = await client.post(f"/api/auth/{owner}/logout")
    activities = await client.get(f"/api/activities/{owner}", params={"forceRefresh": True})

    assert response.status_code == 200
    assert activities.status_code == 401
    assert fake_strava.activity_requests == 0


async def test_rate_limited_with_empty_cache_is_service_unavailable(client, fake_strava, monkeypatch):
    monkeypatch.setattr(settings, "STRAVA_MAX_RATE_LIMIT_RETRIES", 0)
    fake_strava.activity_status = 429
    fake_strava.activity_headers = {"Retry-After": "30"}
    owner = await login(client)

    response = await client.get(f"/api/activities/{owner}")

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "30"
    assert fake_strava.activity_requests == 1


async def test_auth_status(client):
    before = await client.get(f"/api/auth/{ATHLETE_ID}/status")
    owner = await login(client)
    after = await client.get(f"/api/auth/{owner}/status")

    assert before.status_code == 200
    assert before.json()["authenticated"] is False
    assert before.json()["expiresAt"] is None

    body = after.json()
    assert body["authenticated"] is True
    assert body["expiresAt"].endswith("Z")
    assert body["expiringSoon"] is False

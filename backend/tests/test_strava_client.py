"""Tests for the Strava HTTP client."""

import httpx
import pytest

from app.core.errors import AuthError, NetworkError, RateLimitError, RemoteAPIError
from app.services.external.strava import RateLimitInfo, StravaService

from factories import raw_page


def make_service(handler) -> StravaService:
    return StravaService(
        client_id="1234",
        client_secret="secret",
        base_url="https://strava.test/api/v3",
        oauth_url="https://strava.test/oauth",
        transport=httpx.MockTransport(handler),
    )


async def test_get_activities_page_sends_bearer_and_params():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["params"] = dict(request.url.params)
        seen["path"] = request.url.path
        return httpx.Response(
            200,
            json=raw_page(1, 3),
            headers={"X-RateLimit-Limit": "200,2000", "X-RateLimit-Usage": "12,340"},
        )

    response = await make_service(handler).get_activities_page(
        "access-1", page=2, per_page=200, after=1700000000
    )

    assert seen["auth"] == "Bearer access-1"
    assert seen["path"] == "/api/v3/athlete/activities"
    assert seen["params"] == {"page": "2", "per_page": "200", "after": "1700000000"}
    assert len(response.activities) == 3
    assert response.rate_limit.short_usage == 12
    assert response.rate_limit.long_limit == 2000


async def test_get_activities_page_omits_after_for_full_sync():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=[])

    response = await make_service(handler).get_activities_page("t", page=1, per_page=100)

    assert "after" not in seen["params"]
    assert response.activities == []


@pytest.mark.parametrize(
    "status, error",
    [
        (401, AuthError),
        (403, AuthError),
        (500, NetworkError),
        (503, NetworkError),
        (404, RemoteAPIError),
    ],
)
async def test_get_activities_page_maps_status_codes(status, error):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"message": "nope"})

    with pytest.raises(error):
        await make_service(handler).get_activities_page("t", page=1, per_page=100)


async def test_rate_limited_page_carries_wait_from_headers():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            json={"message": "Rate Limit Exceeded"},
            headers={"X-RateLimit-Reset": "42", "X-RateLimit-Usage": "201,900"},
        )

    with pytest.raises(RateLimitError) as exc_info:
        await make_service(handler).get_activities_page("t", page=3, per_page=100)

    assert exc_info.value.retry_after == 42
    assert exc_info.value.status_code == 429
    assert exc_info.value.rate_limit.short_usage == 201


async def test_transport_failure_is_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        await make_service(handler).get_activities_page("t", page=1, per_page=100)


async def test_non_list_payload_is_remote_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(RemoteAPIError):
        await make_service(handler).get_activities_page("t", page=1, per_page=100)


async def test_refresh_access_token_posts_refresh_grant():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = dict(httpx.QueryParams(request.content.decode()))
        return httpx.Response(
            200,
            json={"access_token": "new", "refresh_token": "r2", "expires_at": 1700003600},
        )

    payload = await make_service(handler).refresh_access_token("r1")

    assert seen["path"] == "/oauth/token"
    assert seen["body"] == {
        "client_id": "1234",
        "client_secret": "secret",
        "refresh_token": "r1",
        "grant_type": "refresh_token",
    }
    assert payload["access_token"] == "new"


async def test_exchange_token_rejected_code_is_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "Bad Request", "errors": [{"field": "code"}]})

    with pytest.raises(AuthError):
        await make_service(handler).exchange_token("bad-code")


async def test_token_response_without_expiry_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "a", "refresh_token": "r"})

    with pytest.raises(RemoteAPIError):
        await make_service(handler).refresh_access_token("r")


def test_authorization_url_contains_client_and_redirect():
    service = make_service(lambda request: httpx.Response(200))

    url = service.get_authorization_url("http://localhost:3000/callback", scope="activity:read_all")

    assert url.startswith("https://strava.test/oauth/authorize?")
    assert "client_id=1234" in url
    assert "redirect_uri=http%3A%2F%2Flocalhost%3A3000%2Fcallback" in url
    assert "scope=activity%3Aread_all" in url


class TestRateLimitInfo:
    def test_reset_as_seconds(self):
        info = RateLimitInfo.from_headers({"x-ratelimit-reset": "120"}, now=1_700_000_000)
        assert info.seconds_until_reset() == 120

    def test_reset_as_epoch(self):
        info = RateLimitInfo.from_headers({"x-ratelimit-reset": "1700000300"}, now=1_700_000_000)
        assert info.seconds_until_reset() == pytest.approx(300)

    def test_retry_after_wins(self):
        info = RateLimitInfo.from_headers(
            {"retry-after": "7", "x-ratelimit-reset": "120"}, now=1_700_000_000
        )
        assert info.seconds_until_reset() == 7

    def test_without_hint_waits_for_next_quarter_hour(self):
        info = RateLimitInfo.from_headers({})
        # five minutes into a window leaves ten to go
        now = 1_700_000_000 - (1_700_000_000 % 900) + 300
        assert info.seconds_until_reset(now=now) == pytest.approx(600)

    def test_near_limit(self):
        near = RateLimitInfo.from_headers({"x-ratelimit-limit": "100,1000", "x-ratelimit-usage": "85,200"})
        calm = RateLimitInfo.from_headers({"x-ratelimit-limit": "100,1000", "x-ratelimit-usage": "10,200"})
        assert near.is_near_limit()
        assert not calm.is_near_limit()
        assert not RateLimitInfo().is_near_limit()

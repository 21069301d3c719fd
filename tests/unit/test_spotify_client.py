"""Upstream wrapper: status classification, Retry-After backoff and spacing."""

import httpx
import pytest

from listenstats.errors import (
    AuthError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    UnknownUpstreamError,
    UpstreamClientError,
    ValidationError,
)
from listenstats.integrations.spotify.client import SpotifyClient
from listenstats.integrations.spotify.throttle import RequestThrottle


class FakeClock:
    """Monotonic clock that only moves when someone sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _client(handler, clock: FakeClock | None = None, min_interval: float = 0.0) -> SpotifyClient:
    clock = clock or FakeClock()
    throttle = RequestThrottle(min_interval, clock=clock, sleep=clock.sleep)
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SpotifyClient(http_client=http, throttle=throttle)


@pytest.mark.parametrize(
    "status,expected",
    [
        (401, AuthError),
        (403, ForbiddenError),
        (404, NotFoundError),
        (400, UpstreamClientError),
        (418, UpstreamClientError),
        (500, ServiceUnavailableError),
        (502, ServiceUnavailableError),
        (503, ServiceUnavailableError),
        (302, UnknownUpstreamError),
    ],
)
async def test_status_is_classified(status, expected):
    client = _client(lambda request: httpx.Response(status, json={}))

    with pytest.raises(expected) as excinfo:
        await client.request("/me", "tok")

    assert type(excinfo.value) is expected
    assert excinfo.value.upstream_status == status


async def test_upstream_error_message_is_surfaced():
    body = {"error": {"status": 403, "message": "Insufficient client scope"}}
    client = _client(lambda request: httpx.Response(403, json=body))

    with pytest.raises(ForbiddenError, match="Insufficient client scope"):
        await client.request("/me/top/tracks", "tok")


async def test_retryable_flags_follow_taxonomy():
    assert ServiceUnavailableError.retryable
    assert RateLimitedError.retryable
    assert NetworkError.retryable
    assert not AuthError.retryable
    assert not ForbiddenError.retryable
    assert not NotFoundError.retryable
    assert not ValidationError.retryable


async def test_bearer_token_is_sent():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "user-1"})

    client = _client(handler)
    assert await client.get_current_user("tok-123") == {"id": "user-1"}
    assert seen[0].headers["Authorization"] == "Bearer tok-123"
    assert seen[0].url.path == "/v1/me"


async def test_rate_limit_waits_at_least_retry_after_before_next_request():
    clock = FakeClock()
    responses = [
        httpx.Response(429, headers={"Retry-After": "2"}, json={}),
        httpx.Response(200, json={"ok": True}),
    ]
    client = _client(lambda request: responses.pop(0), clock=clock, min_interval=0.1)

    with pytest.raises(RateLimitedError) as excinfo:
        await client.request("/me", "tok")
    assert excinfo.value.retry_after == 2

    started = clock.now
    assert await client.request("/me", "tok") == {"ok": True}
    assert clock.now - started >= 2
    assert sum(clock.sleeps) >= 2


async def test_rate_limit_without_header_defaults_to_one_second():
    client = _client(lambda request: httpx.Response(429, json={}))

    with pytest.raises(RateLimitedError) as excinfo:
        await client.request("/me", "tok")

    assert excinfo.value.retry_after == 1.0
    assert client.throttle.get_backoff_remaining() == pytest.approx(1.0)


async def test_requests_are_spaced_by_min_interval():
    clock = FakeClock()
    client = _client(lambda request: httpx.Response(200, json={}), clock=clock, min_interval=0.1)

    for _ in range(3):
        await client.request("/me", "tok")

    assert clock.sleeps == pytest.approx([0.1, 0.1])


async def test_transport_error_becomes_network_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler)
    with pytest.raises(NetworkError):
        await client.request("/me", "tok")


async def test_no_content_returns_none():
    client = _client(lambda request: httpx.Response(204))
    assert await client.request("/me/player/pause", "tok", method="PUT") is None


async def test_invalid_json_body_is_not_swallowed():
    client = _client(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(ServiceUnavailableError):
        await client.request("/me", "tok")


async def test_invalid_time_range_fails_before_any_request():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"items": []})

    client = _client(handler)
    with pytest.raises(ValidationError) as excinfo:
        await client.get_top_tracks("tok", "forever", 25)

    assert excinfo.value.parameter == "time_range"
    assert seen == []


async def test_top_items_accept_short_aliases_and_pass_params():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"items": []})

    client = _client(handler)
    await client.get_top_artists("tok", "short", 10, offset=5)

    params = seen[0].url.params
    assert params["time_range"] == "short_term"
    assert params["limit"] == "10"
    assert params["offset"] == "5"


async def test_invalid_limit_raises_validation_error():
    client = _client(lambda request: httpx.Response(200, json={}))
    with pytest.raises(ValidationError) as excinfo:
        await client.get_top_tracks("tok", "medium_term", 30)
    assert excinfo.value.parameter == "limit"


async def test_recently_played_limit_is_clamped():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"items": []})

    client = _client(handler)
    await client.get_recently_played("tok", 500, after=1700000000000)
    await client.get_recently_played("tok", 0)

    assert seen[0].url.params["limit"] == "50"
    assert seen[0].url.params["after"] == "1700000000000"
    assert seen[1].url.params["limit"] == "1"


async def test_several_artists_joins_ids():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"artists": []})

    client = _client(handler)
    await client.get_several_artists("tok", ["a1", "a2", "a3"])

    assert seen[0].url.path == "/v1/artists"
    assert seen[0].url.params["ids"] == "a1,a2,a3"


async def test_catalog_lookups_hit_expected_paths():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    client = _client(handler)
    await client.get_track("tok", "t1")
    await client.get_artist("tok", "a1")
    await client.get_several_tracks("tok", ["t1", "t2"])
    await client.get_audio_features("tok", ["t1", "t2"])

    assert [r.url.path for r in seen] == [
        "/v1/tracks/t1",
        "/v1/artists/a1",
        "/v1/tracks",
        "/v1/audio-features",
    ]
    assert seen[2].url.params["ids"] == "t1,t2"
    assert seen[3].url.params["ids"] == "t1,t2"

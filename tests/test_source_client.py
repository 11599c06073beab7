"""Tests for the RapidAPI data source client and its circuit breaker."""

import asyncio

import httpx
import pytest

from trendwatch.clients.source import CircuitBreaker, TikTokDataSource, parse_counters
from trendwatch.errors import CircuitOpenError, FetchError
from trendwatch.schemas.trend import EntityType


def _source(handler, breaker=None):
    client = httpx.AsyncClient(
        base_url="https://tiktok.example.com", transport=httpx.MockTransport(handler)
    )
    return TikTokDataSource(client=client, timeout=1.0, breaker=breaker or CircuitBreaker())


def _fetch(source, entity_type, external_id):
    async def run():
        try:
            return await source.fetch_entity_counters(entity_type, external_id)
        finally:
            await source.close()

    return asyncio.run(run())


def test_hashtag_request_and_parsing():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200, json={"code": 0, "data": {"stats": {"viewCount": 1_234_567, "videoCount": 89}}}
        )

    counters = _fetch(_source(handler), EntityType.hashtag, "dance")

    assert counters.primary_volume == 1_234_567
    assert counters.secondary_count == 89
    assert counters.engagement is None
    assert seen[0].url.path == "/challenge/detail"
    assert seen[0].url.params["challenge"] == "dance"


def test_sound_uses_play_count():
    def handler(request):
        assert request.url.path == "/music/info"
        assert request.url.params["music_id"] == "7001"
        return httpx.Response(200, json={"code": 0, "data": {"stats": {"playCount": 500, "videoCount": 5}}})

    counters = _fetch(_source(handler), EntityType.sound, "7001")

    assert counters.primary_volume == 500


def test_creator_parses_followers_and_hearts():
    counters = parse_counters(
        EntityType.creator,
        {"statsV2": {"followerCount": "20000", "videoCount": "12", "heartCount": "1000"}},
    )

    assert counters.primary_volume == 20_000
    assert counters.secondary_count == 12
    assert counters.engagement.likes == 1_000
    assert counters.engagement.views == 20_000


def test_huge_counts_keep_precision():
    big = 10**20 + 7
    counters = parse_counters(EntityType.hashtag, {"stats": {"viewCount": str(big)}})

    assert counters.primary_volume == big


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"stats": "n/a"},
        {"stats": {"viewCount": "lots"}},
        {"stats": {"viewCount": -5}},
        [],
    ],
)
def test_malformed_payloads_raise_fetch_error(data):
    with pytest.raises(FetchError):
        parse_counters(EntityType.hashtag, data)


def test_server_error_counts_against_breaker():
    breaker = CircuitBreaker(failure_threshold=5)
    source = _source(lambda request: httpx.Response(503), breaker)

    with pytest.raises(FetchError) as excinfo:
        _fetch(source, EntityType.hashtag, "dance")

    assert excinfo.value.external_id == "dance"
    assert excinfo.value.entity_type == "hashtag"
    assert breaker.failure_count == 1


def test_not_found_does_not_count_against_breaker():
    breaker = CircuitBreaker(failure_threshold=5)
    source = _source(lambda request: httpx.Response(404), breaker)

    with pytest.raises(FetchError):
        _fetch(source, EntityType.hashtag, "missing")

    assert breaker.failure_count == 0
    assert breaker.state == "closed"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"code": -1, "msg": "unknown challenge"}),
        httpx.Response(200, json={"code": 0, "data": None}),
        httpx.Response(200, content=b"<html>oops</html>"),
    ],
)
def test_unusable_body_raises_fetch_error(response):
    with pytest.raises(FetchError):
        _fetch(_source(lambda request: response), EntityType.hashtag, "dance")


def test_connect_error_wrapped_and_counted():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    breaker = CircuitBreaker()
    with pytest.raises(FetchError) as excinfo:
        _fetch(_source(handler, breaker), EntityType.hashtag, "dance")

    assert "ConnectError" in str(excinfo.value)
    assert breaker.failure_count == 1


def test_circuit_opens_after_threshold():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60.0)
    source = _source(handler, breaker)

    async def run():
        for _ in range(2):
            with pytest.raises(FetchError):
                await source.fetch_entity_counters(EntityType.hashtag, "dance")
        with pytest.raises(CircuitOpenError):
            await source.fetch_entity_counters(EntityType.hashtag, "dance")
        await source.close()

    asyncio.run(run())

    assert breaker.state == "open"
    assert len(calls) == 2


def test_half_open_success_closes_circuit():
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.0)
    breaker.record_failure()
    assert breaker.state == "open"
    breaker.last_failure_time -= 1

    async def ok():
        return "ok"

    result = asyncio.run(breaker.call(ok, timeout=1.0))

    assert result == "ok"
    assert breaker.state == "closed"
    assert breaker.failure_count == 0


def test_half_open_failure_reopens_circuit():
    breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=0.0)
    breaker.state = "open"

    async def fails():
        raise httpx.ReadTimeout("slow")

    with pytest.raises(FetchError):
        asyncio.run(breaker.call(fails, timeout=1.0))

    assert breaker.state == "open"


def test_breaker_timeout_is_fetch_error():
    breaker = CircuitBreaker()

    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(FetchError):
        asyncio.run(breaker.call(slow, timeout=0.01))

    assert breaker.failure_count == 1


def test_repeated_server_errors_open_the_circuit():
    """Consecutive 5xx responses accumulate until the circuit opens."""
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=60.0)
    source = _source(handler, breaker)

    async def run():
        errors = []
        for _ in range(10):
            try:
                await source.fetch_entity_counters(EntityType.hashtag, "dance")
            except FetchError as exc:
                errors.append(exc)
        await source.close()
        return errors

    errors = asyncio.run(run())

    assert breaker.state == "open"
    assert breaker.failure_count == 3
    assert len(calls) == 3
    assert len(errors) == 10
    assert all(isinstance(e, CircuitOpenError) for e in errors[3:])


def test_rate_limit_counts_against_breaker():
    breaker = CircuitBreaker(failure_threshold=2)
    source = _source(lambda request: httpx.Response(429), breaker)

    async def run():
        for _ in range(2):
            with pytest.raises(FetchError):
                await source.fetch_entity_counters(EntityType.sound, "7001")
        await source.close()

    asyncio.run(run())

    assert breaker.state == "open"


def test_half_open_admits_a_single_request():
    """While the recovery request is in flight, other callers are rejected."""
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.0)
    breaker.record_failure()
    breaker.last_failure_time -= 1

    async def run():
        release = asyncio.Event()

        async def slow_ok():
            await release.wait()
            return "ok"

        first = asyncio.create_task(breaker.call(slow_ok, timeout=1.0))
        await asyncio.sleep(0)
        assert breaker.state == "half-open"
        with pytest.raises(CircuitOpenError):
            await breaker.call(slow_ok, timeout=1.0)
        release.set()
        return await first

    assert asyncio.run(run()) == "ok"
    assert breaker.state == "closed"


def test_cancelled_recovery_request_leaves_circuit_open():
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.0)
    breaker.record_failure()
    breaker.last_failure_time -= 1

    async def run():
        task = asyncio.create_task(breaker.call(lambda: asyncio.sleep(10), timeout=30.0))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())

    assert breaker.state == "open"

"""Data source client for raw entity counters.

TikTokDataSource wraps httpx.AsyncClient to fetch hashtag, sound and creator
stats from the RapidAPI TikTok endpoints, with circuit breaker protection
and a per-request timeout. Every failure surfaces as FetchError so the
ingestion pipeline can skip the entity and carry on.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog

from trendwatch.config import settings
from trendwatch.errors import CircuitOpenError, FetchError
from trendwatch.schemas.trend import EngagementCounters, EntityCounters, EntityType

log = structlog.get_logger(__name__)


class DataSource(ABC):
    @abstractmethod
    async def fetch_entity_counters(
        self, entity_type: EntityType, external_id: str
    ) -> EntityCounters:
        """Return current counters for one entity or raise FetchError."""
        pass


class CircuitBreaker:
    """Async circuit breaker with three states: closed, open, half-open.

    - closed: requests flow normally, failures are counted
    - open: requests are immediately rejected with CircuitOpenError
    - half-open: a single trial request is in flight and every other request
      is rejected; success -> closed, failure -> open
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 30.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time = 0.0
        self.state = "closed"

    async def call(self, coro_factory, timeout: float):
        """Execute coroutine factory with circuit breaker protection and timeout.

        The coroutine must raise for responses that should count as failures;
        whatever it returns is recorded as a success.

        Args:
            coro_factory: A zero-argument callable that returns a coroutine.
            timeout: Per-request timeout in seconds.
        """
        trial = False
        if self.state == "open":
            if time.monotonic() - self.last_failure_time > self.recovery_timeout:
                self.state = "half-open"
                trial = True
            else:
                raise CircuitOpenError("data source circuit is open")
        elif self.state == "half-open":
            raise CircuitOpenError("data source circuit is half-open, trial request in flight")

        try:
            result = await asyncio.wait_for(coro_factory(), timeout=timeout)
        except (httpx.HTTPError, asyncio.TimeoutError, ConnectionError, OSError) as exc:
            self.record_failure()
            raise FetchError(f"{type(exc).__name__}: {exc}") from exc
        except BaseException:
            # trial ended without a verdict, reopen
            if trial:
                self.state = "open"
            raise
        self.record_success()
        return result

    def record_success(self):
        self.failure_count = 0
        self.state = "closed"

    def record_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half-open" or self.failure_count >= self.failure_threshold:
            self.state = "open"


# endpoint and query parameter per entity type
_ENDPOINTS: dict[EntityType, tuple[str, str]] = {
    EntityType.hashtag: ("/challenge/detail", "challenge"),
    EntityType.sound: ("/music/info", "music_id"),
    EntityType.creator: ("/user/info", "unique_id"),
}


def _as_count(stats: dict[str, Any], key: str) -> int:
    value = stats.get(key, 0)
    if value is None:
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise FetchError(f"stat {key!r} is not a count: {value!r}") from exc
    if count < 0:
        raise FetchError(f"stat {key!r} is negative: {count}")
    return count


def parse_counters(entity_type: EntityType, data: dict[str, Any]) -> EntityCounters:
    """Map a RapidAPI ``data`` payload to EntityCounters.

    Hashtags report views, sounds report plays, creators report followers as
    their primary volume. Creators also carry their total hearts as likes.
    """
    if not isinstance(data, dict):
        raise FetchError("payload data is not an object", entity_type=entity_type.value)
    stats = data.get("stats") or data.get("statsV2")
    if not isinstance(stats, dict):
        raise FetchError("payload has no stats object", entity_type=entity_type.value)

    if entity_type == EntityType.hashtag:
        return EntityCounters(
            primary_volume=_as_count(stats, "viewCount"),
            secondary_count=_as_count(stats, "videoCount"),
        )
    if entity_type == EntityType.sound:
        return EntityCounters(
            primary_volume=_as_count(stats, "playCount"),
            secondary_count=_as_count(stats, "videoCount"),
        )
    return EntityCounters(
        primary_volume=_as_count(stats, "followerCount"),
        secondary_count=_as_count(stats, "videoCount"),
        engagement=EngagementCounters(
            likes=_as_count(stats, "heartCount"),
            views=_as_count(stats, "followerCount"),
        ),
    )


class TikTokDataSource(DataSource):
    """RapidAPI TikTok client with connection pooling and a circuit breaker."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.client = client or httpx.AsyncClient(
            base_url=f"https://{settings.rapidapi_host}",
            headers={
                "X-RapidAPI-Key": settings.rapidapi_key,
                "X-RapidAPI-Host": settings.rapidapi_host,
            },
            timeout=httpx.Timeout(settings.fetch_timeout, connect=2.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        self.timeout = timeout if timeout is not None else settings.fetch_timeout
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_timeout,
        )

    async def fetch_entity_counters(
        self, entity_type: EntityType, external_id: str
    ) -> EntityCounters:
        path, param = _ENDPOINTS[entity_type]

        async def _request():
            resp = await self.client.get(path, params={param: external_id})
            # 5xx and 429 count against the circuit; other 4xx mean a bad identifier
            if resp.status_code >= 500 or resp.status_code == 429:
                resp.raise_for_status()
            return resp

        started = time.monotonic()
        try:
            resp = await self.breaker.call(_request, timeout=self.timeout)
        except FetchError as exc:
            exc.entity_type = entity_type.value
            exc.external_id = external_id
            raise

        log.debug(
            "source_request",
            path=path,
            status=resp.status_code,
            duration_ms=round((time.monotonic() - started) * 1000),
        )

        if resp.status_code >= 400:
            raise FetchError(
                f"data source rejected request with {resp.status_code}",
                entity_type=entity_type.value,
                external_id=external_id,
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise FetchError(
                "data source returned invalid JSON",
                entity_type=entity_type.value,
                external_id=external_id,
            ) from exc

        if not isinstance(body, dict) or body.get("code", 0) != 0 or not body.get("data"):
            raise FetchError(
                f"data source returned no data (code={body.get('code') if isinstance(body, dict) else None})",
                entity_type=entity_type.value,
                external_id=external_id,
            )

        try:
            return parse_counters(entity_type, body["data"])
        except FetchError as exc:
            exc.entity_type = entity_type.value
            exc.external_id = external_id
            raise

    async def close(self) -> None:
        """Close the underlying httpx client and release connections."""
        await self.client.aclose()

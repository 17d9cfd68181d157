"""
Stats Client

HTTP client the event service (or any other service) uses to talk to the
stats server. It hides service location and partial failures:

- report_hit / report_hits never raise on delivery problems; a hit that
  cannot be delivered is logged and dropped
- get_stats raises only for invalid queries (before any network call);
  upstream failures yield an empty result
- get_views_for_entities always returns one count per requested id

Retry policy:
- Up to `retry_attempts` attempts with delay
  `retry_delay * retry_backoff ** (attempt - 1)` (backoff 1.0 = fixed delay)
- Retried: transport errors (connect failures, timeouts), 5xx and 429
- Not retried: other 4xx, and a registry miss (ServiceUnavailableError)
- A transport error drops the cached instance so the next attempt
  resolves the service location again
- Batch submissions are attempted once; a failed batch falls back to
  single sends, which rely on server-side duplicate suppression
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, Optional, Sequence, TypeVar

import httpx

from hitstats.api.schemas import HitRecord, ViewStat
from hitstats.core.exceptions import HitStatsException, StatsValidationError
from hitstats.core.setting import settings
from hitstats.core.validators import format_timestamp, utcnow, validate_date_range
from hitstats.services.service_registry import InstanceResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class StatsQuery:
    """Parameters of a /stats request."""
    start: Optional[datetime]
    end: Optional[datetime]
    uris: Optional[Sequence[str]] = None
    unique: bool = False


@dataclass
class HitDeliveryReport:
    """Tally of a report_hits call."""
    batches: int = 0
    delivered: int = 0
    failed: int = 0
    fallback_batches: int = 0


def _chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    for offset in range(0, len(items), size):
        yield list(items[offset:offset + size])


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(error, httpx.TransportError)


class StatsClient:
    """
    Resilient facade over the stats server's HTTP API.

    One instance is shared by the whole application; close it with aclose().
    """

    def __init__(
        self,
        resolver: InstanceResolver,
        service_name: str = settings.STATS_SERVICE_NAME,
        *,
        connect_timeout_ms: int = settings.STATS_CONNECT_TIMEOUT_MS,
        read_timeout_ms: int = settings.STATS_READ_TIMEOUT_MS,
        max_batch_size: int = settings.STATS_MAX_BATCH_SIZE,
        max_uris_per_query: int = settings.STATS_MAX_URIS_PER_QUERY,
        retry_attempts: int = settings.STATS_RETRY_ATTEMPTS,
        retry_delay_ms: int = settings.STATS_RETRY_DELAY_MS,
        retry_backoff: float = settings.STATS_RETRY_BACKOFF,
        max_range_days: Optional[int] = settings.MAX_DATE_RANGE_DAYS,
        views_lookback_days: int = settings.STATS_VIEWS_LOOKBACK_DAYS,
        uri_prefix: str = settings.EVENTS_URI_PREFIX,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if max_batch_size < 1 or max_uris_per_query < 1 or retry_attempts < 1:
            raise ValueError("Batch size, uris per query and retry attempts must be positive")

        self.resolver = resolver
        self.service_name = service_name
        self.max_batch_size = max_batch_size
        self.max_uris_per_query = max_uris_per_query
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay_ms / 1000
        self.retry_backoff = retry_backoff
        self.max_range_days = max_range_days
        self.views_lookback_days = views_lookback_days
        self.uri_prefix = uri_prefix

        timeout = httpx.Timeout(read_timeout_ms / 1000, connect=connect_timeout_ms / 1000)
        self._http = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        logger.info(
            f"StatsClient initialized: service={service_name}, "
            f"connect={connect_timeout_ms}ms, read={read_timeout_ms}ms, "
            f"attempts={retry_attempts}"
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def report_hit(self, record: Optional[HitRecord]) -> bool:
        """
        Send one hit to POST /hit.

        Returns:
            True if the stats server accepted it, False otherwise (never raises
            for delivery problems)
        """
        if record is None:
            logger.warning("report_hit called without a record, nothing sent")
            return False

        try:
            await self._send("POST", "/hit", json=record.model_dump(mode="json"))
            logger.debug(f"Hit sent: app={record.app}, uri={record.uri}, ip={record.ip}")
            return True
        except (httpx.HTTPError, HitStatsException) as e:
            logger.error(f"Failed to send hit for {record.uri} after retries: {e}")
            return False

    async def report_hits(self, records: Sequence[HitRecord]) -> HitDeliveryReport:
        """
        Send hits through POST /hit/batch in chunks of max_batch_size.

        A chunk whose batch request fails is re-sent record by record, so a
        bad batch costs extra round trips but loses no data.
        """
        report = HitDeliveryReport()
        records = [record for record in (records or []) if record is not None]
        if not records:
            logger.debug("No hits to send")
            return report

        for chunk in _chunked(records, self.max_batch_size):
            report.batches += 1
            try:
                await self._send(
                    "POST",
                    "/hit/batch",
                    json=[record.model_dump(mode="json") for record in chunk],
                    attempts=1,
                )
                report.delivered += len(chunk)
                logger.debug(f"Batch of {len(chunk)} hits sent")
            except (httpx.HTTPError, HitStatsException) as e:
                logger.warning(f"Batch of {len(chunk)} hits failed, falling back to single sends: {e}")
                report.fallback_batches += 1
                for record in chunk:
                    if await self.report_hit(record):
                        report.delivered += 1
                    else:
                        report.failed += 1

        logger.info(
            f"Hit delivery complete: batches={report.batches}, delivered={report.delivered}, "
            f"failed={report.failed}, fallbacks={report.fallback_batches}"
        )
        return report

    async def get_stats(self, query: StatsQuery) -> list[ViewStat]:
        """
        Fetch view statistics.

        Long uri lists are split into requests of max_uris_per_query and the
        results concatenated. A sub-request that fails contributes nothing.

        Raises:
            StatsValidationError: If the time window is invalid
        """
        validate_date_range(query.start, query.end, self.max_range_days)

        uris = list(query.uris) if query.uris else []
        batches: list[Optional[list[str]]] = list(_chunked(uris, self.max_uris_per_query)) or [None]

        stats: list[ViewStat] = []
        for batch in batches:
            stats.extend(await self._fetch_stats(query, batch))

        logger.debug(f"Received {len(stats)} stats records in {len(batches)} request(s)")
        return stats

    async def get_views_for_entities(self, entity_ids: Sequence[int]) -> dict[int, int]:
        """
        Unique-visitor counts for entities addressed as `<uri_prefix><id>`.

        Returns:
            Exactly one entry per distinct input id; ids without stats,
            or all ids when the stats server is unreachable, map to 0
        """
        ids = list(dict.fromkeys(entity_ids or []))
        if not ids:
            return {}

        end = utcnow()
        start = end - timedelta(days=self.views_lookback_days)
        uris = [f"{self.uri_prefix}{entity_id}" for entity_id in ids]

        try:
            stats = await self.get_stats(StatsQuery(start=start, end=end, uris=uris, unique=True))
        except StatsValidationError as e:
            logger.warning(f"Views query rejected locally: {e}")
            stats = []

        return self._reconcile_views(ids, stats)

    async def check_health(self) -> bool:
        """Single-attempt GET /health on the stats server."""
        try:
            await self._send("GET", "/health", attempts=1)
            return True
        except (httpx.HTTPError, HitStatsException) as e:
            logger.warning(f"Stats service health check failed: {e}")
            return False

    def _reconcile_views(self, ids: list[int], stats: list[ViewStat]) -> dict[int, int]:
        views = dict.fromkeys(ids, 0)
        for stat in stats:
            if not stat.uri.startswith(self.uri_prefix):
                logger.warning(f"Unexpected uri in stats response: {stat.uri}")
                continue
            try:
                entity_id = int(stat.uri[len(self.uri_prefix):])
            except ValueError:
                logger.warning(f"Invalid entity id in uri: {stat.uri}")
                continue
            if entity_id not in views:
                logger.warning(f"Stats returned for unrequested uri: {stat.uri}")
                continue
            # Same uri reported by different apps
            views[entity_id] += stat.hits

        logger.debug(
            f"Processed stats for {len(ids)} entities, "
            f"{sum(1 for count in views.values() if count)} with views"
        )
        return views

    async def _fetch_stats(self, query: StatsQuery, uris: Optional[list[str]]) -> list[ViewStat]:
        params: list[tuple[str, str]] = [
            ("start", format_timestamp(query.start)),
            ("end", format_timestamp(query.end)),
            ("unique", "true" if query.unique else "false"),
        ]
        params.extend(("uris", uri) for uri in uris or [])

        try:
            response = await self._send("GET", "/stats", params=params)
            return [ViewStat.model_validate(item) for item in response.json()]
        except (httpx.HTTPError, HitStatsException) as e:
            logger.error(f"Failed to get stats ({len(uris or [])} uris): {e}")
        except (ValueError, TypeError) as e:
            logger.error(f"Unreadable stats response: {e}")
        return []

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: object = None,
        params: Optional[list[tuple[str, str]]] = None,
        attempts: Optional[int] = None,
    ) -> httpx.Response:
        """
        Issue one request with the retry policy.

        Raises:
            ServiceUnavailableError: If the service cannot be located
            httpx.HTTPError: The last error once attempts are exhausted, or a
                non-retryable one immediately
        """
        attempts = attempts or self.retry_attempts
        for attempt in range(1, attempts + 1):
            instance = await self.resolver.resolve_instance(self.service_name)
            try:
                response = await self._http.request(
                    method, f"{instance.base_url}{path}", json=json, params=params
                )
                response.raise_for_status()
                return response
            except httpx.HTTPError as e:
                if isinstance(e, httpx.TransportError):
                    self.resolver.invalidate(self.service_name)
                if attempt == attempts or not _is_retryable(e):
                    raise
                delay = self.retry_delay * (self.retry_backoff ** (attempt - 1))
                logger.debug(
                    f"{method} {path} failed (attempt {attempt}/{attempts}): {e}; "
                    f"retrying in {delay:.2f}s"
                )
                if delay > 0:
                    await asyncio.sleep(delay)

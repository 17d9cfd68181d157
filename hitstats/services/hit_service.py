"""
Hit Service

This service handles the stats server's business logic:
- Persisting hits (single and batch), ignoring exact duplicates
- Aggregate statistics per (app, uri), total or unique by IP
- Scalar total/unique counts over a time window
- Retention cleanup

Design Decisions:
- Duplicates are detected by the unique constraint on (app, uri, ip, timestamp)
  via a dialect-specific INSERT ... ON CONFLICT DO NOTHING
- /stats results are cached by exact query parameters; every write clears
  the cache so a query issued after a write always sees it
- Batch items are saved one by one; a bad item is logged and skipped
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import delete, distinct, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hitstats.api.schemas import HitRecord, ViewStat
from hitstats.core.cache import TTLCache
from hitstats.core.exceptions import DatabaseError, StatsValidationError
from hitstats.core.setting import settings
from hitstats.core.validators import utcnow, validate_date_range, validate_uris
from hitstats.db.factory import get_database_adapter
from hitstats.db.models import Hit

logger = logging.getLogger(__name__)

# Shared by all requests of this process
stats_cache: TTLCache[tuple, list[ViewStat]] = TTLCache(
    ttl_seconds=settings.STATS_CACHE_TTL,
    max_size=settings.STATS_CACHE_MAX_SIZE,
)


@dataclass
class BatchResult:
    """Outcome of a batch write (logged, not returned to the caller)."""
    saved: int = 0
    duplicates: int = 0
    failed: int = 0


class HitService:
    """
    Service for recording and aggregating hits.

    One instance per request; the cache is shared.
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: TTLCache = stats_cache,
        max_range_days: int = settings.MAX_DATE_RANGE_DAYS,
        max_uris: int = settings.MAX_URIS_PER_QUERY,
        max_uri_length: int = settings.MAX_URI_LENGTH,
    ):
        self.session = session
        self.cache = cache
        self.max_range_days = max_range_days
        self.max_uris = max_uris
        self.max_uri_length = max_uri_length
        self._adapter = get_database_adapter(session.bind.dialect.name)

    async def create_hit(self, record: HitRecord) -> bool:
        """
        Persist one hit.

        Returns:
            True if a row was inserted, False if it was a duplicate

        Raises:
            StatsValidationError: If the timestamp cannot be parsed
            DatabaseError: If the insert fails
        """
        try:
            created = await self._insert(record)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to save hit {record}: {e}", exc_info=True)
            raise DatabaseError("Failed to save hit", original_error=e)
        finally:
            self.cache.clear()

        if not created:
            logger.debug(f"Duplicate hit ignored: app={record.app}, uri={record.uri}, ip={record.ip}")
        return created

    async def create_hits_batch(self, items: Iterable[Any]) -> BatchResult:
        """
        Persist a batch of raw hit objects item by item.

        Items that fail validation or insertion are logged and counted;
        the rest of the batch is still saved.
        """
        result = BatchResult()
        for item in items:
            try:
                record = item if isinstance(item, HitRecord) else HitRecord.model_validate(item)
                if await self._insert(record):
                    result.saved += 1
                else:
                    result.duplicates += 1
                await self.session.commit()
            except (ValidationError, StatsValidationError) as e:
                result.failed += 1
                logger.warning(f"Invalid hit in batch skipped: {e}")
            except SQLAlchemyError as e:
                await self.session.rollback()
                result.failed += 1
                logger.warning(f"Failed to save hit in batch: {e}")

        self.cache.clear()
        logger.info(
            f"Batch processed: saved={result.saved}, "
            f"duplicates={result.duplicates}, failed={result.failed}"
        )
        return result

    async def _insert(self, record: HitRecord) -> bool:
        values = {
            "app": record.app,
            "uri": record.uri,
            "ip": record.ip,
            "timestamp": record.parsed_timestamp(),
        }
        statement = self._adapter.insert_ignoring_conflicts(Hit, values)
        try:
            outcome = await self.session.execute(statement)
        except IntegrityError:
            # Backends without ON CONFLICT support surface the violation instead
            await self.session.rollback()
            return False
        return outcome.rowcount > 0

    async def get_stats(
        self,
        start: datetime,
        end: datetime,
        uris: Optional[Sequence[str]] = None,
        unique: bool = False,
    ) -> list[ViewStat]:
        """
        Hit counts per (app, uri) within [start, end], highest first.

        Args:
            start: Window start (inclusive)
            end: Window end (inclusive)
            uris: Optional allow-list of uris; None or empty means all
            unique: Count distinct IPs instead of requests

        Raises:
            StatsValidationError: On invalid window or uri list
        """
        validate_date_range(start, end, self.max_range_days, allow_future_start=False)
        validate_uris(uris, self.max_uris, self.max_uri_length)

        cache_key = (start, end, frozenset(uris) if uris else None, bool(unique))
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Stats cache hit: {cache_key}")
            return cached

        counter = func.count(distinct(Hit.ip)) if unique else func.count(Hit.ip)
        hits = counter.label("hits")
        statement = (
            select(Hit.app, Hit.uri, hits)
            .where(Hit.timestamp.between(start, end))
            .group_by(Hit.app, Hit.uri)
            .order_by(hits.desc())
        )
        if uris:
            statement = statement.where(Hit.uri.in_(list(uris)))

        generation = self.cache.generation
        result = await self.session.execute(statement)
        stats = [ViewStat(app=row.app, uri=row.uri, hits=row.hits) for row in result.all()]

        if not self.cache.put_if_unchanged(cache_key, stats, generation):
            logger.debug(f"Hits written during stats query, not caching: {cache_key}")
        logger.debug(f"Returning {len(stats)} stats records")
        return stats

    async def get_total_hits(self, start: datetime, end: datetime) -> int:
        validate_date_range(start, end, self.max_range_days, allow_future_start=False)
        statement = select(func.count(Hit.id)).where(Hit.timestamp.between(start, end))
        result = await self.session.execute(statement)
        return result.scalar() or 0

    async def get_unique_hits(self, start: datetime, end: datetime) -> int:
        validate_date_range(start, end, self.max_range_days, allow_future_start=False)
        statement = select(func.count(distinct(Hit.ip))).where(Hit.timestamp.between(start, end))
        result = await self.session.execute(statement)
        return result.scalar() or 0

    async def cleanup_old_hits(self, days_to_keep: int) -> int:
        """
        Delete hits with timestamp < now - days_to_keep.

        Returns:
            Number of deleted rows

        Raises:
            StatsValidationError: If days_to_keep < 1
        """
        if days_to_keep < 1:
            raise StatsValidationError("Days to keep must be at least 1")

        cutoff = utcnow() - timedelta(days=days_to_keep)
        try:
            result = await self.session.execute(delete(Hit).where(Hit.timestamp < cutoff))
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise DatabaseError("Failed to clean up hits", original_error=e)
        finally:
            self.cache.clear()

        deleted = result.rowcount or 0
        logger.info(f"Cleaned up {deleted} hits older than {cutoff}")
        return deleted

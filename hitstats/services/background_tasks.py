"""
Background Task Helpers

Functions scheduled through FastAPI BackgroundTasks. They run after the
response is sent, so nothing is awaited by the request and failures are
only logged.

Background tasks cannot use the endpoint's session as it's closed after
the endpoint returns; they open their own from the session factory.
"""

import logging
from typing import TYPE_CHECKING, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from hitstats.api.schemas import HitRecord
from hitstats.services.hit_service import HitService

if TYPE_CHECKING:
    from hitstats.services.stats_client import StatsClient

logger = logging.getLogger(__name__)


async def save_hit_background(
    session_factory: Callable[[], AsyncSession],
    record: HitRecord,
) -> None:
    """
    Persist a hit accepted by POST /hit/async.

    Args:
        session_factory: Factory for a fresh database session
        record: Already validated hit
    """
    try:
        async with session_factory() as session:
            await HitService(session).create_hit(record)
    except Exception as e:
        logger.error(
            f"Failed to save hit asynchronously for {record.uri}: {str(e)}",
            exc_info=True
        )


async def report_hit_background(stats_client: "StatsClient", record: HitRecord) -> None:
    """
    Send a hit to the stats service on behalf of the event service.

    StatsClient.report_hit already swallows delivery failures; the outcome
    is only logged here.
    """
    delivered = await stats_client.report_hit(record)
    if not delivered:
        logger.info(f"Hit for {record.uri} from {record.ip} was not recorded")

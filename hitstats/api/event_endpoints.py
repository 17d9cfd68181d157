"""
Event Service Endpoints

Thin endpoints over EventService. Public reads report a hit to the stats
service after the response is sent; hit reporting never affects the
response status or body.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from hitstats.api.dependencies import get_stats_client
from hitstats.api.schemas import (
    EventAdminUpdateRequest,
    EventCreateRequest,
    EventFullResponse,
    EventShortResponse,
    HitRecord,
)
from hitstats.core.rate_limit import RATE_LIMITS, limiter
from hitstats.core.setting import settings
from hitstats.core.validators import parse_timestamp
from hitstats.db.session import get_session
from hitstats.middleware.logging import get_client_ip
from hitstats.services.background_tasks import report_hit_background
from hitstats.services.event_service import EventFilter, EventService
from hitstats.services.stats_client import StatsClient

logger = logging.getLogger(__name__)

router = APIRouter()


def schedule_hit(
    request: Request,
    background_tasks: BackgroundTasks,
    stats_client: StatsClient,
    with_query: bool = False,
) -> None:
    """
    Queue a hit for the current request path.

    With `with_query` the query string is part of the recorded uri, so
    different searches are counted separately. The uri is cut to
    MAX_URI_LENGTH characters.

    Requests whose client address is not a valid IP (e.g. test clients)
    are logged and not reported.
    """
    uri = request.url.path
    if with_query and request.url.query:
        uri = f"{uri}?{request.url.query}"
    uri = uri[: settings.MAX_URI_LENGTH]

    try:
        hit = HitRecord.now(settings.STATS_APP_NAME, uri, get_client_ip(request))
    except ValidationError as e:
        logger.warning(f"Hit for {uri} not reported: {e.errors()[0]['msg']}")
        return
    background_tasks.add_task(report_hit_background, stats_client, hit)


@router.post(
    "/users/{user_id}/events",
    response_model=EventFullResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an event",
)
@limiter.limit(RATE_LIMITS["event_write"])
async def create_event(
    request: Request,
    user_id: int,
    body: EventCreateRequest,
    session: AsyncSession = Depends(get_session),
    stats_client: StatsClient = Depends(get_stats_client),
) -> EventFullResponse:
    return await EventService(session, stats_client).create_event(user_id, body)


@router.patch(
    "/admin/events/{event_id}",
    response_model=EventFullResponse,
    summary="Edit, publish or reject an event",
)
@limiter.limit(RATE_LIMITS["event_write"])
async def update_event_admin(
    request: Request,
    event_id: int,
    body: EventAdminUpdateRequest,
    session: AsyncSession = Depends(get_session),
    stats_client: StatsClient = Depends(get_stats_client),
) -> EventFullResponse:
    return await EventService(session, stats_client).update_event_admin(event_id, body)


@router.get(
    "/events",
    response_model=list[EventShortResponse],
    summary="Search published events",
)
@limiter.limit(RATE_LIMITS["events"])
async def find_events(
    request: Request,
    background_tasks: BackgroundTasks,
    text: Optional[str] = Query(default=None),
    paid: Optional[bool] = Query(default=None),
    range_start: Optional[str] = Query(default=None, alias="rangeStart"),
    range_end: Optional[str] = Query(default=None, alias="rangeEnd"),
    sort: Literal["EVENT_DATE", "VIEWS"] = Query(default="EVENT_DATE"),
    offset: int = Query(default=0, ge=0, alias="from"),
    size: int = Query(default=10, gt=0, le=1000),
    session: AsyncSession = Depends(get_session),
    stats_client: StatsClient = Depends(get_stats_client),
) -> list[EventShortResponse]:
    event_filter = EventFilter(
        text=text,
        paid=paid,
        range_start=parse_timestamp(range_start, "rangeStart") if range_start else None,
        range_end=parse_timestamp(range_end, "rangeEnd") if range_end else None,
        sort=sort,
        offset=offset,
        size=size,
    )
    events = await EventService(session, stats_client).find_published_events(event_filter)
    if events:
        schedule_hit(request, background_tasks, stats_client, with_query=True)
    return events


@router.get(
    "/events/{event_id}",
    response_model=EventFullResponse,
    summary="Get a published event",
)
@limiter.limit(RATE_LIMITS["event"])
async def get_event(
    request: Request,
    event_id: int,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    stats_client: StatsClient = Depends(get_stats_client),
) -> EventFullResponse:
    event = await EventService(session, stats_client).get_published_event(event_id)
    schedule_hit(request, background_tasks, stats_client)
    return event

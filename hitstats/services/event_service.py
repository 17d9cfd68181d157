"""
Event Service

Business logic for events: creation, admin moderation and public reads.

View counts are not stored with events. Public reads fetch them in bulk
from the stats service through the StatsClient, which never raises for
network problems; an unreachable stats service shows as zero views.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Literal, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hitstats.api.schemas import (
    EventAdminUpdateRequest,
    EventCreateRequest,
    EventFullResponse,
    EventShortResponse,
)
from hitstats.core.exceptions import ConflictError, NotFoundError, StatsValidationError
from hitstats.core.validators import format_timestamp, parse_timestamp, utcnow
from hitstats.db.models import Event, EventState

if TYPE_CHECKING:
    from hitstats.services.stats_client import StatsClient

logger = logging.getLogger(__name__)

MIN_HOURS_BEFORE_EVENT = 2
MIN_HOURS_BEFORE_PUBLISHED_EVENT = 1


@dataclass
class EventFilter:
    """Public event search parameters."""
    text: Optional[str] = None
    paid: Optional[bool] = None
    range_start: Optional[datetime] = None
    range_end: Optional[datetime] = None
    sort: Literal["EVENT_DATE", "VIEWS"] = "EVENT_DATE"
    offset: int = 0
    size: int = 10


def _to_short(event: Event, views: int) -> EventShortResponse:
    return EventShortResponse(
        id=event.id,
        title=event.title,
        annotation=event.annotation,
        paid=event.paid,
        event_date=format_timestamp(event.event_date),
        views=views,
    )


def _to_full(event: Event, views: int) -> EventFullResponse:
    return EventFullResponse(
        id=event.id,
        title=event.title,
        annotation=event.annotation,
        description=event.description,
        initiator_id=event.initiator_id,
        paid=event.paid,
        participant_limit=event.participant_limit,
        state=event.state,
        event_date=format_timestamp(event.event_date),
        created_on=format_timestamp(event.created_on),
        published_on=format_timestamp(event.published_on) if event.published_on else None,
        views=views,
    )


class EventService:
    """
    Service for events.

    Args:
        session: Async database session
        stats_client: Source of view counts
    """

    def __init__(self, session: AsyncSession, stats_client: "StatsClient"):
        self.session = session
        self.stats_client = stats_client

    async def create_event(self, user_id: int, body: EventCreateRequest) -> EventFullResponse:
        """
        Create a PENDING event.

        Raises:
            ConflictError: If the event starts less than 2 hours from now
        """
        event_date = parse_timestamp(body.event_date, "eventDate")
        self._validate_event_date(event_date, MIN_HOURS_BEFORE_EVENT)

        event = Event(
            title=body.title,
            annotation=body.annotation,
            description=body.description,
            initiator_id=user_id,
            paid=body.paid,
            participant_limit=body.participant_limit,
            state=EventState.PENDING.value,
            event_date=event_date,
            created_on=utcnow(),
        )
        self.session.add(event)
        await self.session.commit()
        await self.session.refresh(event)

        logger.info(f"Event created: id={event.id}, title={event.title}, user={user_id}")
        return _to_full(event, 0)

    async def update_event_admin(self, event_id: int, body: EventAdminUpdateRequest) -> EventFullResponse:
        """
        Update fields and optionally publish or reject an event.

        Raises:
            NotFoundError: If the event does not exist
            ConflictError: If the state transition is not allowed
        """
        event = await self._get_event(event_id)

        for field in ("title", "annotation", "description", "paid", "participant_limit"):
            value = getattr(body, field)
            if value is not None:
                setattr(event, field, value)

        if body.event_date is not None:
            event_date = parse_timestamp(body.event_date, "eventDate")
            self._validate_event_date(event_date, MIN_HOURS_BEFORE_PUBLISHED_EVENT)
            event.event_date = event_date

        if body.state_action == "PUBLISH_EVENT":
            if event.state != EventState.PENDING.value:
                raise ConflictError(f"Cannot publish the event because it's not in the right state: {event.state}")
            self._validate_event_date(event.event_date, MIN_HOURS_BEFORE_PUBLISHED_EVENT)
            event.state = EventState.PUBLISHED.value
            event.published_on = utcnow()
        elif body.state_action == "REJECT_EVENT":
            if event.state == EventState.PUBLISHED.value:
                raise ConflictError("Cannot reject the event because it's already published")
            event.state = EventState.CANCELED.value

        self.session.add(event)
        await self.session.commit()
        await self.session.refresh(event)

        logger.info(f"Admin updated event: id={event_id}, state={event.state}")
        views = await self.stats_client.get_views_for_entities([event.id])
        return _to_full(event, views.get(event.id, 0))

    async def get_published_event(self, event_id: int) -> EventFullResponse:
        """
        Raises:
            NotFoundError: If the event does not exist or is not published
        """
        statement = select(Event).where(Event.id == event_id, Event.state == EventState.PUBLISHED.value)
        result = await self.session.execute(statement)
        event = result.scalar_one_or_none()
        if event is None:
            raise NotFoundError("Event", event_id)

        views = await self.stats_client.get_views_for_entities([event.id])
        return _to_full(event, views.get(event.id, 0))

    async def find_published_events(self, event_filter: EventFilter) -> list[EventShortResponse]:
        """
        Search published events.

        Without a date range only upcoming events are returned. Sorting by
        VIEWS needs the counts of every match, so it pages after enrichment.

        Raises:
            StatsValidationError: If range_start is after range_end
        """
        if event_filter.range_start and event_filter.range_end \
                and event_filter.range_start > event_filter.range_end:
            raise StatsValidationError("rangeStart must not be after rangeEnd")

        statement = select(Event).where(Event.state == EventState.PUBLISHED.value)

        if event_filter.text:
            pattern = f"%{event_filter.text.lower()}%"
            statement = statement.where(or_(
                func.lower(Event.title).like(pattern),
                func.lower(Event.annotation).like(pattern),
            ))
        if event_filter.paid is not None:
            statement = statement.where(Event.paid == event_filter.paid)
        if event_filter.range_start is None and event_filter.range_end is None:
            statement = statement.where(Event.event_date > utcnow())
        if event_filter.range_start is not None:
            statement = statement.where(Event.event_date >= event_filter.range_start)
        if event_filter.range_end is not None:
            statement = statement.where(Event.event_date <= event_filter.range_end)

        statement = statement.order_by(Event.event_date, Event.id)
        if event_filter.sort == "EVENT_DATE":
            statement = statement.offset(event_filter.offset).limit(event_filter.size)

        result = await self.session.execute(statement)
        events = list(result.scalars().all())
        if not events:
            return []

        views = await self.stats_client.get_views_for_entities([event.id for event in events])
        items = [_to_short(event, views.get(event.id, 0)) for event in events]

        if event_filter.sort == "VIEWS":
            items.sort(key=lambda item: item.views, reverse=True)
            items = items[event_filter.offset:event_filter.offset + event_filter.size]

        logger.debug(f"Found {len(items)} published events for {event_filter}")
        return items

    async def _get_event(self, event_id: int) -> Event:
        event = await self.session.get(Event, event_id)
        if event is None:
            raise NotFoundError("Event", event_id)
        return event

    @staticmethod
    def _validate_event_date(event_date: datetime, min_hours: int) -> None:
        if event_date < utcnow() + timedelta(hours=min_hours):
            raise ConflictError(
                f"Event date must be at least {min_hours} hours from now"
            )

"""
API Request and Response Schemas

This module defines all Pydantic models for API requests and responses.
HitRecord and ViewStat are the wire format between the stats client
and the stats service; both sides import them from here.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hitstats.core.validators import format_timestamp, is_valid_ip, parse_timestamp, utcnow
from hitstats.core.exceptions import StatsValidationError


class HitRecord(BaseModel):
    """One observed request."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    app: str = Field(..., min_length=1, max_length=255, description="Reporting application")
    uri: str = Field(..., min_length=1, max_length=512, description="Requested path")
    ip: str = Field(..., min_length=1, max_length=45, description="Client IPv4/IPv6 address")
    timestamp: str = Field(..., description="Request time, 'yyyy-MM-dd HH:mm:ss'")

    @field_validator("ip")
    @classmethod
    def _check_ip(cls, value: str) -> str:
        if not is_valid_ip(value):
            raise ValueError(f"Invalid IP address: '{value}'")
        return value

    @field_validator("timestamp")
    @classmethod
    def _check_timestamp(cls, value: str) -> str:
        try:
            parse_timestamp(value)
        except StatsValidationError as e:
            raise ValueError(e.message)
        return value

    @classmethod
    def now(cls, app: str, uri: str, ip: str) -> "HitRecord":
        """Build a hit stamped with the current UTC time."""
        return cls(app=app, uri=uri, ip=ip, timestamp=format_timestamp(utcnow()))

    def parsed_timestamp(self) -> datetime:
        return parse_timestamp(self.timestamp)


class ViewStat(BaseModel):
    """Aggregate hit count for an (app, uri) pair."""
    app: str
    uri: str
    hits: int


class ErrorResponse(BaseModel):
    """Body of every error response."""
    status: str
    reason: str
    message: str
    timestamp: str


# Event service

class EventCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    title: str = Field(..., min_length=3, max_length=120)
    annotation: str = Field(..., min_length=20, max_length=2000)
    description: str = Field(..., min_length=20, max_length=7000)
    event_date: str = Field(..., alias="eventDate", description="'yyyy-MM-dd HH:mm:ss'")
    paid: bool = False
    participant_limit: int = Field(default=0, ge=0, alias="participantLimit")

    @field_validator("event_date")
    @classmethod
    def _check_event_date(cls, value: str) -> str:
        try:
            parse_timestamp(value, "eventDate")
        except StatsValidationError as e:
            raise ValueError(e.message)
        return value


class EventAdminUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    title: Optional[str] = Field(default=None, min_length=3, max_length=120)
    annotation: Optional[str] = Field(default=None, min_length=20, max_length=2000)
    description: Optional[str] = Field(default=None, min_length=20, max_length=7000)
    event_date: Optional[str] = Field(default=None, alias="eventDate")
    paid: Optional[bool] = None
    participant_limit: Optional[int] = Field(default=None, ge=0, alias="participantLimit")
    state_action: Optional[Literal["PUBLISH_EVENT", "REJECT_EVENT"]] = Field(
        default=None, alias="stateAction"
    )

    @field_validator("event_date")
    @classmethod
    def _check_event_date(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            parse_timestamp(value, "eventDate")
        except StatsValidationError as e:
            raise ValueError(e.message)
        return value


class EventShortResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    title: str
    annotation: str
    paid: bool
    event_date: str = Field(..., alias="eventDate")
    views: int = 0


class EventFullResponse(EventShortResponse):
    description: str
    initiator_id: int = Field(..., alias="initiatorId")
    participant_limit: int = Field(..., alias="participantLimit")
    state: str
    created_on: str = Field(..., alias="createdOn")
    published_on: Optional[str] = Field(default=None, alias="publishedOn")

"""
Database Models

This module defines the SQLModel database schemas for:
- Hit: one observed request (stats service)
- Event: an event on the platform (event service)
- RegisteredService: a running service instance (service registry)

Design Decisions:
- The whole (app, uri, ip, timestamp) tuple is unique: re-sending the same
  hit is a no-op, which makes batch-then-single fallback safe
- Index on (timestamp, uri) for the windowed aggregate queries
- Timestamps are naive UTC with second precision
- Event views are not stored here; they come from the stats service
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from hitstats.core.validators import utcnow


class Hit(SQLModel, table=True):
    """
    Append-only hit log.

    Rows are only deleted by retention cleanup.
    """
    __tablename__ = "hits"
    __table_args__ = (
        UniqueConstraint("app", "uri", "ip", "timestamp", name="uq_hits_app_uri_ip_timestamp"),
        Index("ix_hits_timestamp_uri", "timestamp", "uri"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    app: str = Field(sa_column=Column(String(255), nullable=False))
    uri: str = Field(sa_column=Column(String(512), nullable=False))
    ip: str = Field(sa_column=Column(String(45), nullable=False))  # IPv6 max length
    timestamp: datetime = Field(sa_column=Column(DateTime(), nullable=False))


class EventState(str, Enum):
    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"
    CANCELED = "CANCELED"


class Event(SQLModel, table=True):
    """
    Event table.

    Lifecycle: PENDING on creation, then PUBLISHED or CANCELED by an admin.
    Only PUBLISHED events are visible through the public API.
    """
    __tablename__ = "events"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(sa_column=Column(String(120), nullable=False))
    annotation: str = Field(sa_column=Column(String(2000), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    initiator_id: int = Field(sa_column=Column(Integer, nullable=False, index=True))
    paid: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    participant_limit: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    state: str = Field(
        default=EventState.PENDING.value,
        sa_column=Column(String(20), nullable=False, index=True)
    )
    event_date: datetime = Field(sa_column=Column(DateTime(), nullable=False, index=True))
    created_on: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(), nullable=False)
    )
    published_on: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(), nullable=True)
    )


class RegisteredService(SQLModel, table=True):
    """
    Registered service instances.

    Every running web application inserts (or refreshes) one row on startup,
    updates last_heartbeat periodically and deletes its row on shutdown.
    Rows whose heartbeat is older than REGISTRY_INSTANCE_TTL are ignored
    by lookups, so crashed instances age out on their own.
    """
    __tablename__ = "registered_services"
    __table_args__ = (
        UniqueConstraint("service_name", "host", "port", name="uq_registered_services_address"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    service_name: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    host: str = Field(sa_column=Column(String(255), nullable=False))
    port: int = Field(sa_column=Column(Integer, nullable=False))
    registered_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(), nullable=False)
    )
    last_heartbeat: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(), nullable=False, index=True)
    )

"""Initial schema

Revision ID: 001_initial
Revises: 
Create Date: 2026-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create initial database schema:
    - hits table: Append-only hit log of the stats service
    - events table: Events of the event service
    - registered_services table: Running service instances for discovery
    """
    bind = op.get_bind()
    inspector = inspect(bind)
    existing_tables = inspector.get_table_names()

    if 'hits' not in existing_tables:
        op.create_table(
            'hits',
            sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
            sa.Column('app', sa.String(length=255), nullable=False),
            sa.Column('uri', sa.String(length=512), nullable=False),
            sa.Column('ip', sa.String(length=45), nullable=False),
            sa.Column('timestamp', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('app', 'uri', 'ip', 'timestamp', name='uq_hits_app_uri_ip_timestamp'),
        )
        op.create_index('ix_hits_timestamp_uri', 'hits', ['timestamp', 'uri'])

    if 'events' not in existing_tables:
        op.create_table(
            'events',
            sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
            sa.Column('title', sa.String(length=120), nullable=False),
            sa.Column('annotation', sa.String(length=2000), nullable=False),
            sa.Column('description', sa.Text(), nullable=False),
            sa.Column('initiator_id', sa.Integer(), nullable=False),
            sa.Column('paid', sa.Boolean(), nullable=False),
            sa.Column('participant_limit', sa.Integer(), nullable=False),
            sa.Column('state', sa.String(length=20), nullable=False),
            sa.Column('event_date', sa.DateTime(), nullable=False),
            sa.Column('created_on', sa.DateTime(), nullable=False),
            sa.Column('published_on', sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_events_initiator_id', 'events', ['initiator_id'])
        op.create_index('ix_events_state', 'events', ['state'])
        op.create_index('ix_events_event_date', 'events', ['event_date'])

    if 'registered_services' not in existing_tables:
        op.create_table(
            'registered_services',
            sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
            sa.Column('service_name', sa.String(length=100), nullable=False),
            sa.Column('host', sa.String(length=255), nullable=False),
            sa.Column('port', sa.Integer(), nullable=False),
            sa.Column('registered_at', sa.DateTime(), nullable=False),
            sa.Column('last_heartbeat', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('service_name', 'host', 'port', name='uq_registered_services_address'),
        )
        op.create_index('ix_registered_services_service_name', 'registered_services', ['service_name'])
        op.create_index('ix_registered_services_last_heartbeat', 'registered_services', ['last_heartbeat'])


def downgrade() -> None:
    """
    Drop all tables and indexes.
    """
    op.drop_index('ix_registered_services_last_heartbeat', table_name='registered_services')
    op.drop_index('ix_registered_services_service_name', table_name='registered_services')
    op.drop_table('registered_services')

    op.drop_index('ix_events_event_date', table_name='events')
    op.drop_index('ix_events_state', table_name='events')
    op.drop_index('ix_events_initiator_id', table_name='events')
    op.drop_table('events')

    op.drop_index('ix_hits_timestamp_uri', table_name='hits')
    op.drop_table('hits')

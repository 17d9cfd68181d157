"""Tests for database adapter selection and dialect-specific inserts."""

import pytest
from sqlalchemy.dialects import postgresql, sqlite

from hitstats.db.factory import get_adapter_for_url, get_database_adapter
from hitstats.db.models import Hit
from hitstats.db.postgres_adapter import PostgreSQLAdapter
from hitstats.db.sqlite_adapter import SQLiteAdapter

VALUES = {"app": "ewm-main-service", "uri": "/events/1", "ip": "10.0.0.1", "timestamp": None}


class TestAdapterSelection:

    def test_by_dialect_name(self):
        assert isinstance(get_database_adapter("sqlite"), SQLiteAdapter)
        assert isinstance(get_database_adapter("postgresql"), PostgreSQLAdapter)

    def test_by_url(self):
        assert isinstance(get_adapter_for_url("sqlite+aiosqlite:///./hitstats.db"), SQLiteAdapter)
        assert isinstance(get_adapter_for_url("postgresql+asyncpg://user:pw@db:5432/stats"), PostgreSQLAdapter)

    def test_unsupported_dialect(self):
        with pytest.raises(ValueError, match="mysql"):
            get_database_adapter("mysql")


class TestInsertIgnoringConflicts:

    def test_sqlite(self):
        statement = SQLiteAdapter().insert_ignoring_conflicts(Hit, VALUES)
        sql = str(statement.compile(dialect=sqlite.dialect()))
        assert "ON CONFLICT DO NOTHING" in sql

    def test_postgresql(self):
        statement = PostgreSQLAdapter().insert_ignoring_conflicts(Hit, VALUES)
        sql = str(statement.compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT DO NOTHING" in sql


class TestEngineOptions:

    def test_sqlite_engine(self):
        adapter = SQLiteAdapter()
        assert adapter.get_dialect_name() == "sqlite"
        assert adapter.get_connect_args() == {"check_same_thread": False}

    def test_postgres_pool_defaults(self):
        adapter = PostgreSQLAdapter()
        assert adapter.get_dialect_name() == "postgresql"
        assert adapter.get_pool_class() is None
        assert adapter.get_engine_kwargs()["pool_pre_ping"] is True

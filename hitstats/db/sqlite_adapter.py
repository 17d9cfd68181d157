"""
SQLite Database Adapter

Default backend for development, tests and single-instance deployments
(sqlite+aiosqlite:///./hitstats.db).

- NullPool: every session opens its own connection to the file
- check_same_thread=False: aiosqlite runs the connection in a worker thread
- ON CONFLICT DO NOTHING needs SQLite 3.24+
"""

from typing import Any

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.pool import NullPool
from sqlalchemy.sql.dml import Insert

from hitstats.db.interface import DatabaseAdapter


class SQLiteAdapter(DatabaseAdapter):
    dialect_name = "sqlite"

    def get_pool_class(self) -> type[NullPool]:
        return NullPool

    def get_connect_args(self) -> dict[str, Any]:
        return {"check_same_thread": False}

    def get_engine_kwargs(self) -> dict[str, Any]:
        return {"echo": False}

    def insert_ignoring_conflicts(self, table: Any, values: dict[str, Any]) -> Insert:
        return sqlite_insert(table).values(**values).on_conflict_do_nothing()

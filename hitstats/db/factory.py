"""
Database adapter factory.

Picks the adapter for a dialect name or a database URL, so no other
module needs to branch on the backend.
"""

from sqlalchemy.engine import make_url

from hitstats.db.interface import DatabaseAdapter
from hitstats.db.postgres_adapter import PostgreSQLAdapter
from hitstats.db.sqlite_adapter import SQLiteAdapter

_ADAPTERS: dict[str, type[DatabaseAdapter]] = {
    "sqlite": SQLiteAdapter,
    "postgresql": PostgreSQLAdapter,
}


def get_database_adapter(dialect_name: str = "sqlite") -> DatabaseAdapter:
    """
    Return the adapter for a SQLAlchemy dialect name.

    Raises:
        ValueError: If the dialect has no adapter
    """
    try:
        return _ADAPTERS[dialect_name]()
    except KeyError:
        raise ValueError(f"Unsupported database dialect: {dialect_name}")


def get_adapter_for_url(database_url: str) -> DatabaseAdapter:
    return get_database_adapter(make_url(database_url).get_backend_name())

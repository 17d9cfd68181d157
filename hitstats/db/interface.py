"""
Database Abstraction Interface

Adapters isolate what differs between the supported backends:
- engine options (pool, connect args)
- the dialect's INSERT ... ON CONFLICT DO NOTHING, which the hit store
  relies on to drop exact duplicate hits

Services never import a dialect module; they ask the adapter for the
statement. Pick an adapter through hitstats.db.factory.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import Pool
from sqlalchemy.sql.dml import Insert


class DatabaseAdapter(ABC):
    """Backend-specific engine configuration and statements."""

    dialect_name: str = ""

    def create_engine(self, database_url: str, **kwargs) -> AsyncEngine:
        """
        Build the async engine for `database_url`.

        Keyword arguments override the adapter's engine defaults.
        """
        engine_kwargs = self.get_engine_kwargs()
        engine_kwargs.update(kwargs)

        pool_class = self.get_pool_class()
        if pool_class is not None:
            engine_kwargs["poolclass"] = pool_class

        return create_async_engine(
            database_url,
            connect_args=self.get_connect_args(),
            **engine_kwargs
        )

    @abstractmethod
    def get_pool_class(self) -> Optional[type[Pool]]:
        """Pool class, or None for SQLAlchemy's default queue pool."""

    @abstractmethod
    def get_connect_args(self) -> dict[str, Any]:
        """Driver connect() arguments."""

    @abstractmethod
    def get_engine_kwargs(self) -> dict[str, Any]:
        """Extra create_async_engine() options."""

    @abstractmethod
    def insert_ignoring_conflicts(self, table: Any, values: dict[str, Any]) -> Insert:
        """
        INSERT that silently skips a row violating a unique constraint.

        Executing it yields rowcount 0 when the row already existed, 1 otherwise.

        Args:
            table: SQLModel table class or Table
            values: Column values for the new row
        """

    def get_dialect_name(self) -> str:
        return self.dialect_name

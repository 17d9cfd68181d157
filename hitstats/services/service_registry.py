"""
Service Registry - Service Instance Registration and Lookup

This module handles the registration of service instances in a distributed
system and the lookup of their network locations.

Design:
- Each web application registers (service_name, host, port) on startup
- A heartbeat keeps the registration fresh; stale rows are ignored by lookups
- Registration is released on shutdown
- Callers never talk to the registry directly: they use an InstanceResolver,
  either a fixed URL (StaticInstanceResolver) or the registry
  (RegistryInstanceResolver), which caches the selected instance for a TTL
"""

import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Protocol

import httpx
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hitstats.core.cache import TTLCache
from hitstats.core.exceptions import DatabaseError, ServiceUnavailableError
from hitstats.core.setting import settings
from hitstats.core.validators import utcnow
from hitstats.db.models import RegisteredService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceInstance:
    """Network location of one running service instance."""
    service_name: str
    host: str
    port: int
    scheme: str = "http"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


class ServiceRegistry:
    """
    Manages service instance registration.

    Works on a caller-provided session; every write commits immediately so
    registrations are visible to other instances right away.
    """

    def __init__(self, session: AsyncSession, instance_ttl: float = settings.REGISTRY_INSTANCE_TTL):
        """
        Initialize the service registry.

        Args:
            session: Database session for registration operations
            instance_ttl: Seconds without heartbeat after which an instance is ignored
        """
        self.session = session
        self.instance_ttl = instance_ttl

    async def register_service(self, service_name: str, host: str, port: int) -> int:
        """
        Register this service instance.

        Re-registering the same (service_name, host, port) refreshes the
        existing row instead of creating a new one (restart after a crash).

        Returns:
            The registration ID (used for heartbeats and release)

        Raises:
            DatabaseError: If registration fails
        """
        try:
            statement = select(RegisteredService).where(
                RegisteredService.service_name == service_name,
                RegisteredService.host == host,
                RegisteredService.port == port,
            )
            result = await self.session.execute(statement)
            service = result.scalar_one_or_none()

            now = utcnow()
            if service is None:
                service = RegisteredService(
                    service_name=service_name,
                    host=host,
                    port=port,
                    registered_at=now,
                    last_heartbeat=now,
                )
                self.session.add(service)
            else:
                service.registered_at = now
                service.last_heartbeat = now

            await self.session.flush()
            await self.session.commit()

            logger.info(f"Service registered: ID={service.id}, name={service_name}, address={host}:{port}")
            return service.id

        except IntegrityError:
            # Another process registered the same address concurrently
            await self.session.rollback()
            logger.warning(f"Registration conflict for {service_name} at {host}:{port}, retrying...")
            return await self.register_service(service_name, host, port)
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Failed to register service {service_name}: {e}", exc_info=True)
            raise DatabaseError(f"Failed to register service: {e}", original_error=e)

    async def update_heartbeat(self, registration_id: int) -> None:
        """Refresh last_heartbeat for a registration."""
        try:
            statement = (
                update(RegisteredService)
                .where(RegisteredService.id == registration_id)
                .values(last_heartbeat=utcnow())
            )
            await self.session.execute(statement)
            await self.session.commit()
        except Exception as e:
            logger.warning(f"Failed to update heartbeat for registration {registration_id}: {e}")
            await self.session.rollback()

    async def release_service(self, registration_id: int) -> None:
        """Remove a registration when the service shuts down."""
        try:
            statement = delete(RegisteredService).where(RegisteredService.id == registration_id)
            await self.session.execute(statement)
            await self.session.commit()
            logger.info(f"Registration {registration_id} released")
        except Exception as e:
            logger.warning(f"Failed to release registration {registration_id}: {e}")
            await self.session.rollback()

    async def get_instances(self, service_name: str) -> list[ServiceInstance]:
        """
        Live instances of a service, oldest registration first.

        Only instances with a heartbeat within instance_ttl are returned.
        """
        cutoff = utcnow() - timedelta(seconds=self.instance_ttl)
        statement = (
            select(RegisteredService)
            .where(RegisteredService.service_name == service_name)
            .where(RegisteredService.last_heartbeat >= cutoff)
            .order_by(RegisteredService.id)
        )
        result = await self.session.execute(statement)
        return [
            ServiceInstance(service_name=row.service_name, host=row.host, port=row.port)
            for row in result.scalars().all()
        ]


class InstanceResolver(Protocol):
    """Maps a logical service name to a network location."""

    async def resolve_instance(self, service_name: str) -> ServiceInstance:
        ...

    def invalidate(self, service_name: str) -> None:
        ...


class StaticInstanceResolver:
    """Always resolves to the same configured base URL."""

    def __init__(self, base_url: str):
        url = httpx.URL(base_url)
        if not url.host:
            raise ValueError(f"Invalid service URL: '{base_url}'")
        self.base_url = base_url.rstrip("/")
        self._scheme = url.scheme or "http"
        self._host = url.host
        self._port = url.port or (443 if self._scheme == "https" else 80)

    async def resolve_instance(self, service_name: str) -> ServiceInstance:
        return ServiceInstance(
            service_name=service_name,
            host=self._host,
            port=self._port,
            scheme=self._scheme,
        )

    def invalidate(self, service_name: str) -> None:
        pass


class RegistryInstanceResolver:
    """
    Resolves instances through the registered_services table.

    The selected instance is cached per service for cache_ttl seconds so the
    registry is not queried on every call. Concurrent refreshes may overwrite
    each other; the worst case is one extra registry query.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        cache_ttl: float = settings.REGISTRY_CACHE_TTL,
        instance_ttl: float = settings.REGISTRY_INSTANCE_TTL,
        chooser: Callable[[list[ServiceInstance]], ServiceInstance] = random.choice,
    ):
        self._session_factory = session_factory
        self._instance_ttl = instance_ttl
        self._choose = chooser
        self._cache: TTLCache[str, ServiceInstance] = TTLCache(ttl_seconds=cache_ttl, max_size=100)

    async def resolve_instance(self, service_name: str) -> ServiceInstance:
        """
        Raises:
            ServiceUnavailableError: No live instance, or the registry itself failed
        """
        cached = self._cache.get(service_name)
        if cached is not None:
            return cached

        try:
            async with self._session_factory() as session:
                registry = ServiceRegistry(session, instance_ttl=self._instance_ttl)
                instances = await registry.get_instances(service_name)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Registry lookup for '{service_name}' failed: {e}")
            raise ServiceUnavailableError(service_name) from e

        if not instances:
            logger.error(f"No live instances of '{service_name}' in the service registry")
            raise ServiceUnavailableError(service_name)

        instance = self._choose(instances)
        logger.debug(f"Selected {service_name} instance {instance.host}:{instance.port}")
        self._cache.put(service_name, instance)
        return instance

    def invalidate(self, service_name: str) -> None:
        self._cache.invalidate(service_name)


def build_resolver(
    static_url: Optional[str],
    session_factory: Optional[Callable[[], AsyncSession]] = None,
) -> InstanceResolver:
    """
    Fixed-URL resolver when a URL is configured, registry resolver otherwise.
    """
    if static_url:
        return StaticInstanceResolver(static_url)

    if session_factory is None:
        from hitstats.db.session import async_session_maker
        session_factory = async_session_maker
    return RegistryInstanceResolver(session_factory)

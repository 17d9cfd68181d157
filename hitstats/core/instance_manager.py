"""
Service Instance Manager

This module manages this process's registration in the service registry.

Design:
- One registration per application process
- Registered on application startup, released on shutdown
- A background heartbeat task keeps the registration fresh
- Registration failures are logged, not raised: a process that cannot
  register still serves requests, it is just not discoverable
"""

import asyncio
import logging
from typing import Optional

from hitstats.core.setting import settings
from hitstats.db.session import async_session_maker
from hitstats.services.service_registry import ServiceRegistry

logger = logging.getLogger(__name__)

# Global registration ID (set on startup)
_registration_id: Optional[int] = None

# Global heartbeat task (started on startup)
_heartbeat_task: Optional[asyncio.Task] = None


async def get_registration_id() -> Optional[int]:
    """
    Get the registry ID of this instance.

    Returns:
        Registration ID if registered, None otherwise
    """
    return _registration_id


async def _heartbeat_loop(registration_id: int, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        async with async_session_maker() as session:
            await ServiceRegistry(session).update_heartbeat(registration_id)


async def initialize_registration(
    service_name: str,
    host: str = settings.SERVICE_HOST,
    port: int = settings.SERVICE_PORT,
) -> None:
    """
    Register this process and start heartbeats.

    No-op when REGISTRY_ENABLED is false.
    """
    global _registration_id, _heartbeat_task

    if not settings.REGISTRY_ENABLED:
        logger.info(f"Service registry disabled, {service_name} will not be discoverable")
        return

    if _registration_id is not None:
        logger.warning("Service instance already registered")
        return

    try:
        async with async_session_maker() as session:
            registry = ServiceRegistry(session)
            _registration_id = await registry.register_service(service_name, host, port)

        _heartbeat_task = asyncio.create_task(
            _heartbeat_loop(_registration_id, settings.REGISTRY_HEARTBEAT_INTERVAL)
        )
        logger.info(
            f"Service instance registered: "
            f"name={service_name}, "
            f"registration_id={_registration_id}, "
            f"address={host}:{port}"
        )
    except Exception as e:
        logger.error(f"Failed to register {service_name}: {str(e)}", exc_info=True)
        _registration_id = None
        _heartbeat_task = None


async def shutdown_registration() -> None:
    """Stop heartbeats and release the registration."""
    global _registration_id, _heartbeat_task

    if _heartbeat_task is not None:
        _heartbeat_task.cancel()
        try:
            await _heartbeat_task
        except asyncio.CancelledError:
            pass
        _heartbeat_task = None

    if _registration_id is not None:
        try:
            async with async_session_maker() as session:
                registry = ServiceRegistry(session)
                await registry.release_service(_registration_id)
        except Exception as e:
            logger.warning(f"Failed to release registration {_registration_id}: {e}")
        _registration_id = None

"""
Custom Exceptions

This module defines custom exceptions for better error handling
and more specific error messages.

Local validation problems (StatsValidationError) are raised to the
immediate caller and never sent over the network. Network problems
talking to the stats service are caught inside the stats client and
never reach the event service as exceptions.
"""

from typing import Any


class HitStatsException(Exception):
    """Base exception for the hit statistics platform."""
    pass


class StatsValidationError(HitStatsException):
    """Raised when hit data or query parameters fail local validation."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(HitStatsException):
    """Raised when a requested entity does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with id={entity_id} was not found")


class ConflictError(HitStatsException):
    """Raised when an operation's preconditions are not met."""
    pass


class DatabaseError(HitStatsException):
    """Raised when database operations fail."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")


class ServiceUnavailableError(HitStatsException):
    """Raised when a required service cannot be located."""

    def __init__(self, service_name: str):
        self.service_name = service_name
        super().__init__(f"Service '{service_name}' is unavailable")

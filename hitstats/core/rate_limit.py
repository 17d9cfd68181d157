"""
Rate Limiting Configuration

This module provides rate limiting functionality for API endpoints.

Design Decisions:
- Uses slowapi for rate limiting (lightweight, FastAPI-compatible)
- Different limits for different endpoints
- IP-based limiting
- Can be switched off with RATE_LIMIT_ENABLED=false (tests, internal deployments)
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from hitstats.core.setting import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

# Format: "count/period" (e.g., "10/minute" means 10 requests per minute)
RATE_LIMITS = {
    "hit": "1000/minute",  # Hit ingestion is called by other services, keep it generous
    "stats": "300/minute",
    "cleanup": "5/minute",
    "events": "100/minute",
    "event": "100/minute",
    "event_write": "20/minute",
}

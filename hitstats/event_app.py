"""
Event Service Application

The event platform: event creation, moderation and public reads with
view counts from the stats service.

The shared StatsClient is created on startup and stored on app.state.
Its resolver is a fixed URL when STATS_SERVER_URL is set and the service
registry otherwise.

Run with:
    uvicorn hitstats.event_app:app --port 8080
"""

import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from hitstats.api import event_endpoints
from hitstats.api.dependencies import get_stats_client
from hitstats.api.errors import register_exception_handlers
from hitstats.core.instance_manager import initialize_registration, shutdown_registration
from hitstats.core.rate_limit import limiter
from hitstats.core.setting import settings
from hitstats.db.session import async_session_maker
from hitstats.middleware.logging import add_logging_middleware, configure_logging
from hitstats.services.service_registry import build_resolver
from hitstats.services.stats_client import StatsClient

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Event Service",
    description="Events with view counts backed by the stats service",
    version=settings.SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)

add_logging_middleware(app, "events")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
async def health_check(stats_client: StatsClient = Depends(get_stats_client)):
    """
    Health of the service and reachability of the stats service.

    The service stays healthy when stats is down; views just read as zero.
    """
    stats_up = await stats_client.check_health()
    return {"status": "healthy", "stats": "available" if stats_up else "unavailable"}


app.include_router(event_endpoints.router, tags=["Events"])


@app.on_event("startup")
async def startup_event():
    """Create the stats client and register this instance."""
    resolver = build_resolver(settings.STATS_SERVER_URL, async_session_maker)
    app.state.stats_client = StatsClient(resolver)
    await initialize_registration(settings.EVENT_SERVICE_NAME)


@app.on_event("shutdown")
async def shutdown_event():
    await shutdown_registration()
    stats_client = getattr(app.state, "stats_client", None)
    if stats_client is not None:
        await stats_client.aclose()
        logger.info("StatsClient closed")

"""
Gateway Application

Single entry point in front of the stats and event services. Requests
are forwarded by their first path segment; see hitstats.services.gateway.

Run with:
    uvicorn hitstats.gateway_app:app --port 8000
"""

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from hitstats.api.dependencies import get_gateway
from hitstats.core.setting import settings
from hitstats.db.session import async_session_maker
from hitstats.middleware.logging import add_logging_middleware, configure_logging
from hitstats.services.gateway import Gateway
from hitstats.services.service_registry import build_resolver

configure_logging(settings.LOG_LEVEL)

# First path segment -> logical service name
ROUTES = {
    "hit": settings.STATS_SERVICE_NAME,
    "stats": settings.STATS_SERVICE_NAME,
    "info": settings.STATS_SERVICE_NAME,
    "events": settings.EVENT_SERVICE_NAME,
    "users": settings.EVENT_SERVICE_NAME,
    "admin": settings.EVENT_SERVICE_NAME,
}

app = FastAPI(
    title="Gateway",
    description="Routes requests to the stats and event services",
    version=settings.SERVICE_VERSION,
    docs_url=None,
    redoc_url=None,
)

add_logging_middleware(app, "gateway")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health endpoint defined before the catch-all route
@app.get("/health", tags=["Health"])
async def health_check():
    return {"status": "healthy"}


@app.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def proxy(path: str, request: Request, gateway: Gateway = Depends(get_gateway)):
    return await gateway.forward(request, path)


@app.on_event("startup")
async def startup_event():
    resolvers = {
        settings.STATS_SERVICE_NAME: build_resolver(settings.GATEWAY_STATS_URL, async_session_maker),
        settings.EVENT_SERVICE_NAME: build_resolver(settings.GATEWAY_EVENTS_URL, async_session_maker),
    }
    app.state.gateway = Gateway(ROUTES, resolvers, timeout_ms=settings.GATEWAY_TIMEOUT_MS)


@app.on_event("shutdown")
async def shutdown_event():
    gateway = getattr(app.state, "gateway", None)
    if gateway is not None:
        await gateway.aclose()

"""
Stats Service Application

This module initializes the stats server and configures:
- Hit and statistics routes
- Middleware (logging, CORS)
- Exception handlers and rate limiting
- Registration in the service registry

Run with:
    uvicorn hitstats.stats_app:app --port 9090
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from hitstats.api import stats_endpoints
from hitstats.api.errors import register_exception_handlers
from hitstats.core.instance_manager import initialize_registration, shutdown_registration
from hitstats.core.rate_limit import limiter
from hitstats.core.setting import settings
from hitstats.middleware.logging import add_logging_middleware, configure_logging

configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="Stats Service",
    description="Records endpoint hits and serves view statistics",
    version=settings.SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)

add_logging_middleware(app, "stats")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_class=PlainTextResponse, tags=["Health"])
async def health_check() -> str:
    return "OK"


@app.get("/info", response_class=PlainTextResponse, tags=["Health"])
async def info() -> str:
    return f"Stats Service v{settings.SERVICE_VERSION}"


app.include_router(stats_endpoints.router, tags=["Stats"])


@app.on_event("startup")
async def startup_event():
    """Register this instance so stats clients can discover it."""
    await initialize_registration(settings.STATS_SERVICE_NAME)


@app.on_event("shutdown")
async def shutdown_event():
    await shutdown_registration()

"""
Logging Middleware for Request/Response Logging

This middleware logs all HTTP requests and responses for observability.
It captures:
- Request method and path
- Response status code
- Request processing time
- Client IP address

Design Decisions:
- Uses Starlette's BaseHTTPMiddleware for compatibility
- Logs to standard Python logging, one logger per service
- configure_logging() sets the process-wide format and level once
"""

import logging
import time

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for a service process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address from request.

    Handles proxies and load balancers (including our gateway) by checking
    the X-Forwarded-For header first.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first one
        return forwarded_for.split(",")[0].strip()

    return request.client.host if request.client else "unknown"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for logging HTTP requests and responses.

    Format: METHOD PATH STATUS_CODE PROCESS_TIME_MS CLIENT_IP
    """

    def __init__(self, app, service_name: str):
        super().__init__(app)
        self.logger = logging.getLogger(f"hitstats.access.{service_name}")

    async def dispatch(self, request: Request, call_next) -> Response:
        client_ip = get_client_ip(request)
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time = time.perf_counter() - start_time
        self.logger.info(
            f"{request.method} {request.url.path} "
            f"{response.status_code} {process_time*1000:.2f}ms "
            f"IP:{client_ip}"
        )
        response.headers["X-Process-Time"] = str(process_time)
        return response


def add_logging_middleware(app: FastAPI, service_name: str) -> None:
    """
    Add logging middleware to FastAPI app.

    Args:
        app: FastAPI application instance
        service_name: Suffix of the access logger name
    """
    app.add_middleware(LoggingMiddleware, service_name=service_name)

"""
Application-scoped dependencies.

Long-lived clients are created on startup and kept on app.state;
endpoints receive them through these functions so tests can override them.
"""

from fastapi import Request

from hitstats.services.gateway import Gateway
from hitstats.services.stats_client import StatsClient


def get_stats_client(request: Request) -> StatsClient:
    return request.app.state.stats_client


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway

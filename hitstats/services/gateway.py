"""
Gateway Routing

Forwards requests to the stats or event service by the first path
segment. Upstream locations come from an InstanceResolver per service,
so upstreams can be fixed URLs or looked up in the service registry.
"""

import logging
from typing import Mapping, Optional

import httpx
from fastapi import Request
from starlette.responses import Response

from hitstats.core.exceptions import ServiceUnavailableError
from hitstats.middleware.logging import get_client_ip
from hitstats.services.service_registry import InstanceResolver

logger = logging.getLogger(__name__)

# Not forwarded in either direction
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
})

# httpx already decoded the body
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding"}


class Gateway:
    """
    Reverse proxy keyed on path prefix.

    Args:
        routes: First path segment -> service name
        resolvers: Service name -> resolver for that service
        timeout_ms: Per-request upstream timeout
        transport: Optional httpx transport (tests)
    """

    def __init__(
        self,
        routes: Mapping[str, str],
        resolvers: Mapping[str, InstanceResolver],
        timeout_ms: int = 10000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.routes = dict(routes)
        self.resolvers = dict(resolvers)
        self._http = httpx.AsyncClient(timeout=timeout_ms / 1000, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    def route_for(self, path: str) -> Optional[str]:
        segment = path.lstrip("/").split("/", 1)[0]
        return self.routes.get(segment)

    async def forward(self, request: Request, path: str) -> Response:
        """
        Proxy one request.

        Returns:
            The upstream response, 404 for unknown prefixes, 503 when the
            upstream cannot be located and 502 when it cannot be reached
        """
        service_name = self.route_for(path)
        if service_name is None:
            return Response(content=f"No route for /{path}", status_code=404, media_type="text/plain")

        resolver = self.resolvers[service_name]
        try:
            instance = await resolver.resolve_instance(service_name)
        except ServiceUnavailableError as e:
            logger.error(f"Gateway cannot locate {service_name}: {e}")
            return Response(content=str(e), status_code=503, media_type="text/plain")

        headers = {
            key: value for key, value in request.headers.items()
            if key.lower() not in HOP_BY_HOP_HEADERS
        }
        headers["X-Forwarded-For"] = get_client_ip(request)

        try:
            upstream = await self._http.request(
                request.method,
                f"{instance.base_url}/{path.lstrip('/')}",
                params=list(request.query_params.multi_items()),
                content=await request.body(),
                headers=headers,
            )
        except httpx.TransportError as e:
            resolver.invalidate(service_name)
            logger.error(f"Gateway failed to reach {service_name} at {instance.base_url}: {e}")
            return Response(content=f"Upstream {service_name} unreachable", status_code=502, media_type="text/plain")

        response_headers = {
            key: value for key, value in upstream.headers.items()
            if key.lower() not in STRIPPED_RESPONSE_HEADERS
        }
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers=response_headers,
        )

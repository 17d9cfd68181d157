"""Tests for gateway routing and forwarding."""

import json

import httpx
import pytest
import pytest_asyncio

from hitstats.api.dependencies import get_gateway
from hitstats.core.exceptions import ServiceUnavailableError
from hitstats.gateway_app import ROUTES, app
from hitstats.services.gateway import Gateway
from hitstats.services.service_registry import ServiceInstance, StaticInstanceResolver


class UnavailableResolver:
    async def resolve_instance(self, service_name: str) -> ServiceInstance:
        raise ServiceUnavailableError(service_name)

    def invalidate(self, service_name: str) -> None:
        pass


class InvalidatingResolver(StaticInstanceResolver):
    def __init__(self, base_url: str):
        super().__init__(base_url)
        self.invalidated = []

    def invalidate(self, service_name: str) -> None:
        self.invalidated.append(service_name)


class Upstreams:
    """Echoes the forwarded request back as JSON."""

    def __init__(self):
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(
            200,
            json={
                "host": request.url.host,
                "path": request.url.path,
                "query": str(request.url.query, "ascii"),
                "body": request.content.decode(),
                "forwarded_for": request.headers.get("x-forwarded-for"),
            },
            headers={"X-Upstream": request.url.host},
        )


def make_gateway(upstreams, stats_resolver=None, events_resolver=None) -> Gateway:
    resolvers = {
        "stats-server": stats_resolver or StaticInstanceResolver("http://stats:9090"),
        "event-service": events_resolver or StaticInstanceResolver("http://events:8080"),
    }
    return Gateway(ROUTES, resolvers, transport=httpx.MockTransport(upstreams))


@pytest.fixture
def upstreams():
    return Upstreams()


@pytest_asyncio.fixture
async def client():
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def use_gateway(gateway: Gateway) -> None:
    app.dependency_overrides[get_gateway] = lambda: gateway


class TestRouting:

    def test_route_for(self, upstreams):
        gateway = make_gateway(upstreams)

        assert gateway.route_for("/hit") == "stats-server"
        assert gateway.route_for("stats/total") == "stats-server"
        assert gateway.route_for("/info") == "stats-server"
        assert gateway.route_for("/events/5") == "event-service"
        assert gateway.route_for("/users/1/events") == "event-service"
        assert gateway.route_for("/admin/events/1") == "event-service"
        assert gateway.route_for("/unknown") is None
        assert gateway.route_for("/") is None


class TestForwarding:

    @pytest.mark.asyncio
    async def test_stats_request_forwarded(self, client, upstreams):
        use_gateway(make_gateway(upstreams))

        response = await client.get("/stats", params=[("start", "a"), ("uris", "/events/1"), ("uris", "/events/2")])

        assert response.status_code == 200
        assert response.headers["x-upstream"] == "stats"
        body = response.json()
        assert body["path"] == "/stats"
        assert body["query"].count("uris=") == 2
        assert body["forwarded_for"] == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_event_request_forwarded_with_body(self, client, upstreams):
        use_gateway(make_gateway(upstreams))

        response = await client.post("/users/1/events", json={"title": "Jazz night"})

        body = response.json()
        assert body["host"] == "events"
        assert body["path"] == "/users/1/events"
        assert json.loads(body["body"]) == {"title": "Jazz night"}

    @pytest.mark.asyncio
    async def test_upstream_status_passed_through(self, client):
        use_gateway(make_gateway(lambda request: httpx.Response(409, json={"status": "CONFLICT"})))

        response = await client.patch("/admin/events/1", json={"stateAction": "PUBLISH_EVENT"})

        assert response.status_code == 409
        assert response.json() == {"status": "CONFLICT"}

    @pytest.mark.asyncio
    async def test_unknown_prefix(self, client, upstreams):
        use_gateway(make_gateway(upstreams))

        response = await client.get("/unknown/path")

        assert response.status_code == 404
        assert upstreams.requests == []

    @pytest.mark.asyncio
    async def test_unlocatable_upstream(self, client, upstreams):
        use_gateway(make_gateway(upstreams, stats_resolver=UnavailableResolver()))

        response = await client.post("/hit", json={})

        assert response.status_code == 503
        assert "stats-server" in response.text

    @pytest.mark.asyncio
    async def test_unreachable_upstream(self, client):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        resolver = InvalidatingResolver("http://events:8080")
        use_gateway(make_gateway(refuse, events_resolver=resolver))

        response = await client.get("/events/1")

        assert response.status_code == 502
        assert resolver.invalidated == ["event-service"]

    @pytest.mark.asyncio
    async def test_gateway_health_not_forwarded(self, client, upstreams):
        use_gateway(make_gateway(upstreams))

        response = await client.get("/health")

        assert response.json() == {"status": "healthy"}
        assert upstreams.requests == []

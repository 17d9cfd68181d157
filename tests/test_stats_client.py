"""
Tests for StatsClient.

The stats server is replaced by an httpx.MockTransport, except for the
end-to-end tests which run the real stats application in-process.
"""

import json
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from hitstats.api.schemas import HitRecord
from hitstats.core.exceptions import ServiceUnavailableError, StatsValidationError
from hitstats.core.validators import utcnow
from hitstats.services.service_registry import (
    RegistryInstanceResolver,
    ServiceInstance,
    StaticInstanceResolver,
)
from hitstats.services.stats_client import StatsClient, StatsQuery

APP = "ewm-main-service"


class RecordingResolver:
    """Fixed instance that counts lookups and invalidations."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.resolved = 0
        self.invalidated = 0

    async def resolve_instance(self, service_name: str) -> ServiceInstance:
        self.resolved += 1
        if self.fail:
            raise ServiceUnavailableError(service_name)
        return ServiceInstance(service_name=service_name, host="stats", port=9090)

    def invalidate(self, service_name: str) -> None:
        self.invalidated += 1


class StatsServer:
    """MockTransport handler replaying scripted responses per path."""

    def __init__(self, **scripts):
        self.scripts = {path.replace("_", "/"): list(responses) for path, responses in scripts.items()}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        script = self.scripts.get(request.url.path.strip("/"), [])
        outcome = script.pop(0) if len(script) > 1 else (script[0] if script else 201)
        if isinstance(outcome, type) and issubclass(outcome, httpx.TransportError):
            raise outcome("Connection refused", request=request)
        if isinstance(outcome, int):
            return httpx.Response(outcome)
        return outcome

    def calls(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]


def make_client(server, resolver=None, **kwargs) -> StatsClient:
    kwargs.setdefault("retry_delay_ms", 0)
    return StatsClient(
        resolver or RecordingResolver(),
        transport=httpx.MockTransport(server),
        **kwargs,
    )


def make_hit(uri: str = "/events/1", ip: str = "10.0.0.1") -> HitRecord:
    return HitRecord.now(APP, uri, ip)


def stats_response(*stats: tuple[str, int]) -> httpx.Response:
    return httpx.Response(200, json=[{"app": APP, "uri": uri, "hits": hits} for uri, hits in stats])


class TestReportHit:

    @pytest.mark.asyncio
    async def test_delivered(self):
        server = StatsServer(hit=[201])
        client = make_client(server)

        assert await client.report_hit(make_hit()) is True

        [request] = server.requests
        assert request.method == "POST"
        assert str(request.url) == "http://stats:9090/hit"
        body = json.loads(request.content)
        assert body["app"] == APP
        assert body["uri"] == "/events/1"
        assert body["ip"] == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        server = StatsServer(hit=[503, 500, 201])
        client = make_client(server)

        assert await client.report_hit(make_hit()) is True
        assert len(server.requests) == 3

    @pytest.mark.asyncio
    async def test_retries_too_many_requests(self):
        server = StatsServer(hit=[429, 201])
        client = make_client(server)

        assert await client.report_hit(make_hit()) is True
        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        server = StatsServer(hit=[500])
        client = make_client(server, retry_attempts=3)

        assert await client.report_hit(make_hit()) is False
        assert len(server.requests) == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        server = StatsServer(hit=[400])
        client = make_client(server)

        assert await client.report_hit(make_hit()) is False
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error_invalidates_instance(self):
        resolver = RecordingResolver()
        server = StatsServer(hit=[httpx.ConnectError, httpx.ConnectError, 201])
        client = make_client(server, resolver=resolver)

        assert await client.report_hit(make_hit()) is True
        assert resolver.invalidated == 2
        assert resolver.resolved == 3

    @pytest.mark.asyncio
    async def test_unreachable_server(self):
        server = StatsServer(hit=[httpx.ConnectError])
        client = make_client(server)

        assert await client.report_hit(make_hit()) is False
        assert len(server.requests) == 3

    @pytest.mark.asyncio
    async def test_registry_miss_fails_fast(self):
        resolver = RecordingResolver(fail=True)
        server = StatsServer()
        client = make_client(server, resolver=resolver)

        assert await client.report_hit(make_hit()) is False
        assert resolver.resolved == 1
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_registry_connection_error_is_not_raised(self):
        def unreachable_session_factory():
            raise ConnectionRefusedError("registry database is down")

        server = StatsServer()
        client = make_client(server, resolver=RegistryInstanceResolver(unreachable_session_factory))

        assert await client.report_hit(make_hit()) is False
        assert await client.get_views_for_entities([1]) == {1: 0}
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_missing_record(self):
        server = StatsServer()
        client = make_client(server)

        assert await client.report_hit(None) is False
        assert server.requests == []


class TestReportHits:

    @pytest.mark.asyncio
    async def test_chunked_by_batch_size(self):
        server = StatsServer()
        client = make_client(server, max_batch_size=100)
        hits = [make_hit(f"/events/{i}") for i in range(250)]

        report = await client.report_hits(hits)

        batch_calls = server.calls("/hit/batch")
        assert len(batch_calls) == 3
        assert [len(json.loads(request.content)) for request in batch_calls] == [100, 100, 50]
        assert report.batches == 3
        assert report.delivered == 250
        assert report.fallback_batches == 0

    @pytest.mark.asyncio
    async def test_failed_batch_falls_back_to_single_sends(self):
        server = StatsServer(hit_batch=[500], hit=[201])
        client = make_client(server, max_batch_size=10)
        hits = [make_hit(f"/events/{i}") for i in range(4)]

        report = await client.report_hits(hits)

        # Batches are not retried
        assert len(server.calls("/hit/batch")) == 1
        assert len(server.calls("/hit")) == 4
        assert report.fallback_batches == 1
        assert report.delivered == 4
        assert report.failed == 0

    @pytest.mark.asyncio
    async def test_fallback_failures_are_counted(self):
        server = StatsServer(hit_batch=[httpx.ConnectError], hit=[400])
        client = make_client(server)

        report = await client.report_hits([make_hit("/events/1"), make_hit("/events/2")])

        assert report.delivered == 0
        assert report.failed == 2

    @pytest.mark.asyncio
    async def test_empty_input(self):
        server = StatsServer()
        client = make_client(server)

        report = await client.report_hits([])

        assert report.batches == 0
        assert server.requests == []


class TestGetStats:

    @pytest.mark.asyncio
    async def test_query_parameters(self):
        server = StatsServer(stats=[stats_response(("/events/1", 3))])
        client = make_client(server)
        end = utcnow()
        start = end - timedelta(days=1)

        stats = await client.get_stats(StatsQuery(start, end, ["/events/1", "/events/2"], unique=True))

        assert [(s.uri, s.hits) for s in stats] == [("/events/1", 3)]
        [request] = server.requests
        assert request.url.params.get_list("uris") == ["/events/1", "/events/2"]
        assert request.url.params["unique"] == "true"
        assert request.url.params["start"] == start.strftime("%Y-%m-%d %H:%M:%S")

    @pytest.mark.asyncio
    async def test_invalid_window_raises_before_network(self):
        server = StatsServer()
        client = make_client(server)
        end = utcnow()

        with pytest.raises(StatsValidationError):
            await client.get_stats(StatsQuery(end, end - timedelta(seconds=1)))
        with pytest.raises(StatsValidationError):
            await client.get_stats(StatsQuery(None, end))
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_long_uri_list_split(self):
        server = StatsServer(stats=[stats_response(("/events/1", 1)), stats_response(("/events/149", 2))])
        client = make_client(server, max_uris_per_query=100)
        end = utcnow()
        uris = [f"/events/{i}" for i in range(150)]

        stats = await client.get_stats(StatsQuery(end - timedelta(days=1), end, uris))

        assert [len(request.url.params.get_list("uris")) for request in server.requests] == [100, 50]
        assert [s.hits for s in stats] == [1, 2]

    @pytest.mark.asyncio
    async def test_server_failure_yields_empty_list(self):
        server = StatsServer(stats=[500])
        client = make_client(server)
        end = utcnow()

        assert await client.get_stats(StatsQuery(end - timedelta(days=1), end)) == []
        assert len(server.requests) == 3


class TestViewsForEntities:

    @pytest.mark.asyncio
    async def test_counts_reconciled(self):
        server = StatsServer(stats=[stats_response(("/events/5", 7))])
        client = make_client(server)

        assert await client.get_views_for_entities([5, 6]) == {5: 7, 6: 0}
        assert server.requests[0].url.params["unique"] == "true"

    @pytest.mark.asyncio
    async def test_unexpected_uris_ignored(self):
        server = StatsServer(stats=[stats_response(
            ("/events/5", 7),
            ("/events/abc", 3),
            ("/other/5", 4),
            ("/events/99", 1),
        )])
        client = make_client(server)

        assert await client.get_views_for_entities([5]) == {5: 7}

    @pytest.mark.asyncio
    async def test_same_uri_from_several_apps_summed(self):
        payload = [
            {"app": "app-a", "uri": "/events/1", "hits": 2},
            {"app": "app-b", "uri": "/events/1", "hits": 3},
        ]
        server = StatsServer(stats=[httpx.Response(200, json=payload)])
        client = make_client(server)

        assert await client.get_views_for_entities([1]) == {1: 5}

    @pytest.mark.asyncio
    async def test_unreachable_server_gives_zeros(self):
        server = StatsServer(stats=[httpx.ConnectError])
        client = make_client(server)

        assert await client.get_views_for_entities([1, 2, 3]) == {1: 0, 2: 0, 3: 0}

    @pytest.mark.asyncio
    async def test_duplicate_and_empty_ids(self):
        server = StatsServer(stats=[stats_response()])
        client = make_client(server)

        assert await client.get_views_for_entities([]) == {}
        assert server.requests == []
        assert await client.get_views_for_entities([4, 4]) == {4: 0}
        assert server.requests[0].url.params.get_list("uris") == ["/events/4"]


class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy(self):
        client = make_client(StatsServer(health=[httpx.Response(200, text="OK")]))
        assert await client.check_health() is True

    @pytest.mark.asyncio
    async def test_unhealthy_single_attempt(self):
        server = StatsServer(health=[503])
        client = make_client(server)

        assert await client.check_health() is False
        assert len(server.requests) == 1


class TestAgainstStatsApp:
    """StatsClient talking to the real stats application in-process."""

    @pytest_asyncio.fixture
    async def client(self, database):
        from hitstats.stats_app import app

        client = StatsClient(
            StaticInstanceResolver("http://stats"),
            retry_delay_ms=0,
            transport=httpx.ASGITransport(app=app),
        )
        yield client
        await client.aclose()

    @pytest.mark.asyncio
    async def test_reported_hits_become_views(self, client):
        assert await client.report_hit(make_hit("/events/1", "10.0.0.1")) is True
        assert await client.report_hit(make_hit("/events/1", "10.0.0.2")) is True
        report = await client.report_hits([make_hit("/events/2", "10.0.0.1"), make_hit("/events/2", "10.0.0.1")])
        assert report.delivered == 2

        assert await client.get_views_for_entities([1, 2, 3]) == {1: 2, 2: 1, 3: 0}

    @pytest.mark.asyncio
    async def test_health(self, client):
        assert await client.check_health() is True

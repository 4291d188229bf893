"""Tests for the built-in log and rate-limit scenarios."""

import random

import httpx
import pytest

from stampede.exceptions import StampedeError
from stampede.http import HttpTarget
from stampede.orchestrator import HookContext
from stampede.scenario import ScenarioContext
from stampede.scenarios import default_registry, logs, ratelimit
from tests.services.log_service import BASE_URL, create_log_service


def make_ctx(sink, target, *, seed=1):
    return ScenarioContext(
        scenario="test",
        vu_id=1,
        iteration=0,
        sink=sink,
        target=target,
        rng=random.Random(seed),
    )


class TestRegistry:
    def test_default_registry_contents(self):
        registry = default_registry()
        assert registry.list_scenarios() == [
            "logs.read",
            "logs.search",
            "logs.write",
            "ratelimit.ping",
        ]
        assert registry.list_hooks() == ["logs.setup", "logs.teardown"]

    def test_registries_are_independent(self):
        a = default_registry()
        a.register("custom", lambda ctx: True)
        assert "custom" not in default_registry()


class TestLogEntry:
    def test_shape(self):
        entry = logs.generate_log_entry(random.Random(3))
        assert entry["service_name"] in logs.SERVICES
        assert entry["level"] in logs.LEVELS
        assert entry["message"].split(" - ")[0] in logs.MESSAGES
        assert entry["timestamp"].endswith("+00:00")


class TestLogScenarios:
    @pytest.mark.anyio
    async def test_write(self, sink, log_app, log_transport):
        async with HttpTarget(BASE_URL, sink=sink, transport=log_transport) as target:
            outcome = await logs.write(make_ctx(sink, target))

        assert outcome.success is True
        assert len(log_app.state.logs.logs) == 1
        assert sink.snapshot()["checks{check:write status is 201}"].rate == 1.0

    @pytest.mark.anyio
    async def test_read_accepts_404(self, sink, log_transport):
        async with HttpTarget(BASE_URL, sink=sink, transport=log_transport) as target:
            outcome = await logs.read(make_ctx(sink, target))

        assert outcome.success is True
        # Nothing seeded: the read is a 404, which still passes.
        assert sink.snapshot()["http_req_failed"].rate == 1.0

    @pytest.mark.anyio
    async def test_search(self, sink, log_transport):
        async with HttpTarget(BASE_URL, sink=sink, transport=log_transport) as target:
            outcome = await logs.search(make_ctx(sink, target))

        assert outcome.success is True
        assert outcome.tags == {
            "search status is 200": "pass",
            "search returns array": "pass",
        }

    @pytest.mark.anyio
    async def test_search_without_data_field_fails(self, sink):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        async with HttpTarget(BASE_URL, sink=sink, transport=transport) as target:
            outcome = await logs.search(make_ctx(sink, target))

        assert outcome.success is False
        assert outcome.tags["search returns array"] == "fail"

    @pytest.mark.anyio
    async def test_search_accepts_null_data(self, sink):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"data": None})
        )
        async with HttpTarget(BASE_URL, sink=sink, transport=transport) as target:
            outcome = await logs.search(make_ctx(sink, target))

        assert outcome.success is True
        assert outcome.tags["search returns array"] == "pass"

    @pytest.mark.anyio
    async def test_scenarios_need_a_target(self, sink):
        with pytest.raises(StampedeError):
            await logs.write(make_ctx(sink, None))


class TestLogHooks:
    @pytest.mark.anyio
    async def test_setup_checks_ping_and_seeds(self, sink, log_app, log_transport):
        async with HttpTarget(BASE_URL, sink=sink, transport=log_transport) as target:
            data = await logs.setup(HookContext(sink, target))

        assert data == {"seeded": logs.SEED_LOGS}
        assert len(log_app.state.logs.logs) == logs.SEED_LOGS
        assert log_app.state.logs.pings == 1

    @pytest.mark.anyio
    async def test_setup_fails_when_not_ready(self, sink):
        app = create_log_service(ping_status=503)
        transport = httpx.ASGITransport(app=app)
        async with HttpTarget(BASE_URL, sink=sink, transport=transport) as target:
            with pytest.raises(StampedeError) as exc_info:
                await logs.setup(HookContext(sink, target))

        assert exc_info.value.code == "not_ready"
        assert app.state.logs.logs == {}

    @pytest.mark.anyio
    async def test_teardown_is_harmless(self, sink):
        assert await logs.teardown(HookContext(sink, None, {"seeded": 1})) is None


class TestRateLimitPing:
    @pytest.mark.anyio
    async def test_counts_allowed_and_limited(self, sink):
        app = create_log_service(ping_capacity=3)
        transport = httpx.ASGITransport(app=app)
        async with HttpTarget(BASE_URL, sink=sink, transport=transport) as target:
            outcomes = [await ratelimit.ping(make_ctx(sink, target)) for _ in range(5)]

        assert all(o.success for o in outcomes)
        snap = sink.snapshot()
        assert snap[ratelimit.REQUESTS_ALLOWED].value == 3
        assert snap[ratelimit.REQUESTS_RATE_LIMITED].value == 2
        assert snap["checks{check:status is 429 (rate limited)}"].passes == 2

    @pytest.mark.anyio
    async def test_other_status_fails(self, sink):
        app = create_log_service(ping_status=500)
        transport = httpx.ASGITransport(app=app)
        async with HttpTarget(BASE_URL, sink=sink, transport=transport) as target:
            outcome = await ratelimit.ping(make_ctx(sink, target))

        assert outcome.success is False
        snap = sink.snapshot()
        assert ratelimit.REQUESTS_ALLOWED not in snap
        assert ratelimit.REQUESTS_RATE_LIMITED not in snap

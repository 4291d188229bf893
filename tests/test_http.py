"""Tests for the HTTP target, check() and request metrics."""

import asyncio
import time

import httpx
import pytest

from stampede.exceptions import StampedeError
from stampede.http import (
    CHECKS,
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    HTTP_REQS,
    HttpTarget,
    Response,
    check,
    require_target,
    target_factory,
)
from tests.services.log_service import BASE_URL


class TestHttpTarget:
    @pytest.mark.anyio
    async def test_records_request_metrics(self, sink, log_transport):
        async with HttpTarget(BASE_URL, sink=sink, transport=log_transport) as target:
            res = await target.get("/ping")

        assert res.status == 200
        assert res.json("message") == "pong"
        assert res.elapsed_ms >= 0
        snap = sink.snapshot()
        assert snap[HTTP_REQS].value == 1
        assert snap[HTTP_REQ_DURATION].samples == 1
        assert snap[HTTP_REQ_FAILED].rate == 0.0

    @pytest.mark.anyio
    async def test_error_status_counts_as_failed(self, sink, log_transport):
        async with HttpTarget(BASE_URL, sink=sink, transport=log_transport) as target:
            res = await target.get("/logs/999")

        assert res.status == 404
        assert sink.snapshot()[HTTP_REQ_FAILED].rate == 1.0

    @pytest.mark.anyio
    async def test_post_json_and_tags(self, sink, log_transport):
        target = HttpTarget(
            BASE_URL, sink=sink, transport=log_transport, tags={"scenario": "write_load"}
        )
        try:
            res = await target.post("/logs", json={"message": "hello"})
        finally:
            await target.aclose()

        assert res.status == 201
        assert res.json()["id"] == 1
        snap = sink.snapshot()
        assert snap["http_reqs{scenario:write_load}"].value == 1
        assert snap["http_req_duration{scenario:write_load}"].samples == 1

    @pytest.mark.anyio
    async def test_transport_error_recorded_and_raised(self, sink):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport = httpx.MockTransport(handler)
        async with HttpTarget(BASE_URL, sink=sink, transport=transport) as target:
            with pytest.raises(httpx.ConnectError):
                await target.get("/ping")

        snap = sink.snapshot()
        assert snap[HTTP_REQS].value == 1
        assert snap[HTTP_REQ_FAILED].rate == 1.0

    @pytest.mark.anyio
    async def test_timeout_bounds_the_whole_request(self, sink):
        async def slow(request):
            await asyncio.sleep(2)
            return httpx.Response(200)

        transport = httpx.MockTransport(slow)
        started = time.monotonic()
        async with HttpTarget(
            BASE_URL, sink=sink, transport=transport, timeout=0.05
        ) as target:
            with pytest.raises(asyncio.TimeoutError):
                await target.get("/ping")

        assert time.monotonic() - started < 1
        snap = sink.snapshot()
        assert snap[HTTP_REQS].value == 1
        assert snap[HTTP_REQ_FAILED].rate == 1.0

    @pytest.mark.anyio
    async def test_factory_makes_independent_targets(self, sink, log_transport):
        make = target_factory(BASE_URL, sink=sink, transport=log_transport, timeout=2)
        a = make({"scenario": "a"})
        b = make({"scenario": "b"})
        try:
            assert a is not b
            await a.get("/ping")
            await b.get("/ping")
        finally:
            await a.aclose()
            await b.aclose()

        snap = sink.snapshot()
        assert snap["http_reqs{scenario:a}"].value == 1
        assert snap["http_reqs{scenario:b}"].value == 1
        assert snap[HTTP_REQS].value == 2

    def test_require_target(self):
        with pytest.raises(StampedeError) as exc_info:
            require_target(None)
        assert exc_info.value.code == "missing_target"


class TestResponse:
    def test_json_key(self):
        res = Response(status=200, content=b'{"data": []}')
        assert res.json("data") == []
        assert res.json("missing") is None

    def test_json_non_object(self):
        assert Response(status=200, content=b"[1, 2]").json("data") is None

    def test_json_invalid_raises(self):
        with pytest.raises(ValueError):
            Response(status=200, content=b"<html>").json()

    def test_text(self):
        assert Response(status=200, content=b"pong").text == "pong"


class TestCheck:
    def test_all_pass(self, sink):
        res = Response(status=201)
        outcome = check(sink, res, {"status is 201": lambda r: r.status == 201})
        assert outcome.success is True
        assert outcome.tags == {"status is 201": "pass"}
        assert sink.snapshot()[CHECKS].rate == 1.0

    def test_one_failure_fails_outcome(self, sink):
        res = Response(status=500, content=b"{}")
        outcome = check(
            sink,
            res,
            {
                "status is 200": lambda r: r.status == 200,
                "is json": lambda r: r.json() is not None,
            },
        )
        assert outcome.success is False
        assert outcome.tags == {"status is 200": "fail", "is json": "pass"}
        snap = sink.snapshot()
        assert snap[CHECKS].samples == 2
        assert snap[CHECKS].passes == 1
        assert snap["checks{check:status is 200}"].rate == 0.0
        assert snap["checks{check:is json}"].rate == 1.0

    def test_raising_predicate_fails(self, sink):
        res = Response(status=200, content=b"not json")
        outcome = check(sink, res, {"has data": lambda r: r.json("data") is not None})
        assert outcome.success is False
        assert sink.snapshot()["checks{check:has data}"].rate == 0.0

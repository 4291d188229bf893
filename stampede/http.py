"""
HTTP access to the system under test.

Each virtual user owns one HttpTarget (its own httpx.AsyncClient and
connection pool); targets are never shared between VUs. The target's
timeout bounds each whole request (httpx's own timeout only bounds each
connect, read or write step). Every request is recorded into the run's sink:

    http_reqs           counter, one per request
    http_req_duration   trend, milliseconds
    http_req_failed     rate, true when the request errored or the status
                        is outside 200-399

Transport errors (timeouts, refused connections) are recorded and then
re-raised, and a request over the timeout raises asyncio.TimeoutError.
The scenario executor turns either into a failing iteration.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from stampede.exceptions import StampedeError
from stampede.metrics.sink import MetricSink
from stampede.scenario import Outcome

logger = logging.getLogger(__name__)

HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
CHECKS = "checks"


@dataclass(frozen=True)
class Response:
    """
    A completed response.

    Attributes:
        status: HTTP status code.
        headers: Response headers (lower-cased names).
        content: Raw body.
        elapsed_ms: Time from sending the request to receiving the body.
    """

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""
    elapsed_ms: float = 0.0

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self, key: Optional[str] = None) -> Any:
        """
        Decode the body as JSON.

        With `key`, return that top-level field (None when absent). Raises
        ValueError when the body is not JSON.
        """
        data = json.loads(self.content or b"null")
        if key is None:
            return data
        if isinstance(data, dict):
            return data.get(key)
        return None


class HttpTarget:
    """
    Request/response client bound to one base URL.

    Example:
        async with HttpTarget("http://localhost", sink=sink, timeout=5) as target:
            res = await target.get("/ping")
            print(res.status)
    """

    def __init__(
        self,
        base_url: str,
        *,
        sink: MetricSink,
        timeout: float = 10.0,
        headers: Optional[Mapping[str, str]] = None,
        tags: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._sink = sink
        self._timeout = timeout
        self._tags = dict(tags or {})
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            headers=dict(headers or {}),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Response:
        started = time.perf_counter()
        try:
            raw = await asyncio.wait_for(
                self._client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    content=content,
                    headers=headers,
                ),
                timeout=self._timeout,
            )
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self._record(elapsed_ms, failed=True)
            logger.debug(
                "%s %s failed: %s: %s", method, path, type(exc).__name__, exc
            )
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._record(elapsed_ms, failed=not 200 <= raw.status_code < 400)
        return Response(
            status=raw.status_code,
            headers={k.lower(): v for k, v in raw.headers.items()},
            content=raw.content,
            elapsed_ms=elapsed_ms,
        )

    async def get(self, path: str, **kwargs: Any) -> Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Response:
        return await self.request("POST", path, **kwargs)

    def _record(self, elapsed_ms: float, *, failed: bool) -> None:
        self._sink.add(HTTP_REQS, 1, self._tags)
        self._sink.add_trend(HTTP_REQ_DURATION, elapsed_ms, self._tags)
        self._sink.add_rate(HTTP_REQ_FAILED, failed, self._tags)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpTarget":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def require_target(target: Optional[HttpTarget]) -> HttpTarget:
    """Return `target`, or raise when the run has no base_url."""
    if target is None:
        raise StampedeError(
            "this scenario needs an HTTP target; set base_url", code="missing_target"
        )
    return target


TargetFactory = Callable[[Mapping[str, str]], HttpTarget]


def target_factory(
    base_url: str,
    *,
    sink: MetricSink,
    timeout: float = 10.0,
    headers: Optional[Mapping[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TargetFactory:
    """Factory producing one fresh HttpTarget per call (per VU)."""

    def make(tags: Mapping[str, str]) -> HttpTarget:
        return HttpTarget(
            base_url,
            sink=sink,
            timeout=timeout,
            headers=headers,
            tags=tags,
            transport=transport,
        )

    return make


def check(
    sink: MetricSink,
    value: Any,
    checks: Mapping[str, Callable[[Any], bool]],
) -> Outcome:
    """
    Evaluate named predicates against a value.

    Each predicate is recorded into the "checks" rate and its
    "checks{check:<name>}" sub-metric. A predicate that raises counts as
    a failed check. The returned Outcome succeeds only if all checks pass
    and is tagged {<name>: "pass" | "fail"}.
    """
    results: Dict[str, str] = {}
    for name, predicate in checks.items():
        try:
            passed = bool(predicate(value))
        except Exception as exc:  # noqa: BLE001
            logger.debug("Check %r raised %s: %s", name, type(exc).__name__, exc)
            passed = False
        sink.add_rate(CHECKS, passed, {"check": name})
        results[name] = "pass" if passed else "fail"
    return Outcome(
        success=all(v == "pass" for v in results.values()),
        tags=results,
    )

"""
Rate limiter probe: hammer GET /ping and count allowed vs. limited replies.

A 429 is an expected answer here, so the iteration succeeds on either
200 or 429; anything else is a failure.
"""

from __future__ import annotations

from stampede.http import check, require_target
from stampede.scenario import Outcome, ScenarioContext, ScenarioRegistry

REQUESTS_ALLOWED = "requests_allowed"
REQUESTS_RATE_LIMITED = "requests_rate_limited"


async def ping(ctx: ScenarioContext) -> Outcome:
    target = require_target(ctx.target)
    res = await target.get("/ping")
    outcome = check(
        ctx.sink,
        res,
        {
            "status is 200 (allowed)": lambda r: r.status == 200,
            "status is 429 (rate limited)": lambda r: r.status == 429,
        },
    )
    if res.status == 200:
        ctx.sink.add(REQUESTS_ALLOWED)
    elif res.status == 429:
        ctx.sink.add(REQUESTS_RATE_LIMITED)
    return Outcome(success=res.status in (200, 429), tags=outcome.tags)


def register(registry: ScenarioRegistry) -> None:
    registry.register("ratelimit.ping", ping)

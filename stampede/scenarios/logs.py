"""
Log service load: write, read and search scenarios plus lifecycle hooks.

Target API:
    GET  /ping                 liveness, 200 when ready
    POST /logs                 create a log entry, 201 on success
    GET  /logs/<id>            fetch one entry, 200 or 404
    GET  /logs/search?q=<kw>   full-text search, 200 with a "data" field
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from stampede.exceptions import StampedeError
from stampede.http import Response, check, require_target
from stampede.orchestrator import HookContext
from stampede.scenario import Outcome, ScenarioContext, ScenarioRegistry

logger = logging.getLogger(__name__)

SERVICES = [
    "auth-service",
    "payment-service",
    "order-service",
    "user-service",
    "notification-service",
]
LEVELS = ["INFO", "WARN", "ERROR", "DEBUG"]
MESSAGES = [
    "User login successful via OAuth",
    "Database connection timeout during transaction",
    "Processing order items",
    "Cache miss, fetching from database",
    "Request validation failed",
    "Payment processed successfully",
    "Session expired for user",
    "API rate limit exceeded",
    "File upload completed",
    "Background job started",
]
SEARCH_KEYWORDS = ["login", "timeout", "order", "payment", "ERROR", "auth-service", "user"]

SEED_LOGS = 100
MAX_LOG_ID = 1000


def generate_log_entry(rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Random log entry payload for POST /logs."""
    rng = rng or random.Random()
    now_ms = int(time.time() * 1000)
    return {
        "service_name": rng.choice(SERVICES),
        "level": rng.choice(LEVELS),
        "message": f"{rng.choice(MESSAGES)} - {now_ms}",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def write(ctx: ScenarioContext) -> Outcome:
    target = require_target(ctx.target)
    res = await target.post("/logs", json=generate_log_entry(ctx.rng))
    return check(ctx.sink, res, {"write status is 201": lambda r: r.status == 201})


async def read(ctx: ScenarioContext) -> Outcome:
    target = require_target(ctx.target)
    log_id = ctx.rng.randint(1, MAX_LOG_ID)
    res = await target.get(f"/logs/{log_id}")
    return check(
        ctx.sink,
        res,
        {"read status is 200 or 404": lambda r: r.status in (200, 404)},
    )


def _has_data_field(res: Response) -> bool:
    body = res.json()
    return isinstance(body, dict) and "data" in body


async def search(ctx: ScenarioContext) -> Outcome:
    target = require_target(ctx.target)
    keyword = ctx.rng.choice(SEARCH_KEYWORDS)
    res = await target.get("/logs/search", params={"q": keyword})
    return check(
        ctx.sink,
        res,
        {
            "search status is 200": lambda r: r.status == 200,
            "search returns array": _has_data_field,
        },
    )


async def setup(ctx: HookContext) -> Dict[str, Any]:
    """Verify the service answers /ping, then seed entries for reads."""
    target = require_target(ctx.target)
    res = await target.get("/ping")
    if res.status != 200:
        raise StampedeError(
            f"Server not responding at {target.base_url} (status {res.status})",
            code="not_ready",
            details={"status": res.status},
        )
    logger.info("Server is ready at %s", target.base_url)

    logger.info("Seeding %d initial logs", SEED_LOGS)
    rng = random.Random()
    seeded = 0
    for _ in range(SEED_LOGS):
        res = await target.post("/logs", json=generate_log_entry(rng))
        if res.status == 201:
            seeded += 1
    logger.info("Seeded %d/%d initial logs", seeded, SEED_LOGS)
    return {"seeded": seeded}


async def teardown(ctx: HookContext) -> None:
    logger.info("Stress test completed (setup data: %s)", ctx.setup_data)


def register(registry: ScenarioRegistry) -> None:
    registry.register("logs.write", write)
    registry.register("logs.read", read)
    registry.register("logs.search", search)
    registry.register_hook("logs.setup", setup)
    registry.register_hook("logs.teardown", teardown)

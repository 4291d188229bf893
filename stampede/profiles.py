"""
Built-in run profiles, in run-config shape.

    config = load_run_config(get_profile("log-stress"))
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List

from stampede.exceptions import StampedeConfigError

LOG_STRESS: Dict[str, Any] = {
    "setup": "logs.setup",
    "teardown": "logs.teardown",
    "scenarios": {
        "write_load": {
            "exec": "logs.write",
            "metric_prefix": "write",
            "stages": [
                {"duration": "30s", "target": 200},
                {"duration": "1m", "target": 500},
                {"duration": "5m", "target": 500},
                {"duration": "30s", "target": 0},
            ],
            "delay": "uniform(0, 100ms)",
        },
        "read_load": {
            "exec": "logs.read",
            "metric_prefix": "read",
            "start_time": "10s",
            "stages": [
                {"duration": "30s", "target": 30},
                {"duration": "1m", "target": 60},
                {"duration": "2m", "target": 60},
                {"duration": "30s", "target": 0},
            ],
            "delay": "uniform(0, 300ms)",
        },
        "search_load": {
            "exec": "logs.search",
            "metric_prefix": "search",
            "start_time": "20s",
            "stages": [
                {"duration": "30s", "target": 20},
                {"duration": "1m", "target": 40},
                {"duration": "2m", "target": 40},
                {"duration": "30s", "target": 0},
            ],
            "delay": "uniform(0, 500ms)",
        },
    },
    "thresholds": {
        "http_req_duration": ["p(95)<1000"],
        "write_success_rate": ["rate>0.90"],
        "read_success_rate": ["rate>0.90"],
        "search_success_rate": ["rate>0.90"],
    },
}

RATE_LIMIT: Dict[str, Any] = {
    "scenarios": {
        "rate_limit_test": {
            "exec": "ratelimit.ping",
            "executor": "constant-vus",
            "vus": 20,
            "duration": "30s",
            "delay": "50ms",
        },
    },
    "thresholds": {
        "http_req_duration": ["p(95)<500"],
        # Both outcomes must show up: the limiter has to let some through
        # and reject some.
        "requests_allowed": ["count>0"],
        "requests_rate_limited": ["count>0"],
    },
}

_PROFILES: Dict[str, Dict[str, Any]] = {
    "log-stress": LOG_STRESS,
    "rate-limit": RATE_LIMIT,
}


def list_profiles() -> List[str]:
    return sorted(_PROFILES)


def get_profile(name: str) -> Dict[str, Any]:
    """Deep copy of a built-in profile, safe to modify."""
    try:
        return copy.deepcopy(_PROFILES[name])
    except KeyError:
        raise StampedeConfigError(
            f"Unknown profile {name!r}",
            code="unknown_profile",
            details={"profile": name, "known": list_profiles()},
        ) from None

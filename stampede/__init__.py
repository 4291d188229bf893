"""
stampede - Concurrent load generation with pass/fail thresholds.

Programmatic usage:
    from stampede import RunOrchestrator, Scenario, RampStage, parse_thresholds
    from stampede.delays import uniform

    async def write(ctx):
        res = await ctx.target.post("/logs", json={"message": "hi"})
        return res.status == 201

    orchestrator = RunOrchestrator(
        [Scenario("write", write, stages=[RampStage(duration="30s", target=50)],
                  delay=uniform(0, 0.1))],
        thresholds=parse_thresholds({"write_success_rate": ["rate>0.95"]}),
        base_url="http://localhost:8080",
    )
    result = orchestrator.run_sync()
    print(result.passed)

Config files and built-in profiles:
    from stampede.config import load_run_config, build_orchestrator
    from stampede.profiles import get_profile
    from stampede.scenarios import default_registry

    config = load_run_config(get_profile("rate-limit"))
    result = build_orchestrator(config, default_registry()).run_sync()

Command line:
    stampede --profile log-stress --base-url http://localhost
"""

# =============================================================================
# Run API
# =============================================================================
from stampede.orchestrator import HookContext, RunOrchestrator  # noqa: F401
from stampede.scenario import (  # noqa: F401
    Outcome,
    Scenario,
    ScenarioContext,
    ScenarioRegistry,
)
from stampede.http import HttpTarget, Response, check  # noqa: F401

# =============================================================================
# Building blocks
# =============================================================================
from stampede.metrics import MetricSink, MetricSnapshot, MetricView  # noqa: F401
from stampede.thresholds import Threshold, parse_thresholds  # noqa: F401
from stampede.executor import ScenarioExecutor  # noqa: F401
from stampede.pool import VUPool  # noqa: F401
from stampede.ramp import RampSchedule  # noqa: F401
from stampede.models import (  # noqa: F401
    MetricKind,
    MetricValues,
    RampPolicy,
    RampStage,
    RunResult,
    ThresholdResult,
)

# =============================================================================
# Errors
# =============================================================================
from stampede.exceptions import (  # noqa: F401
    SetupFailedError,
    StampedeConfigError,
    StampedeError,
    TeardownError,
)

__all__ = [
    # Run API
    "RunOrchestrator",
    "HookContext",
    "Scenario",
    "ScenarioContext",
    "ScenarioRegistry",
    "Outcome",
    "HttpTarget",
    "Response",
    "check",
    # Building blocks
    "MetricSink",
    "MetricSnapshot",
    "MetricView",
    "Threshold",
    "parse_thresholds",
    "ScenarioExecutor",
    "VUPool",
    "RampSchedule",
    "MetricKind",
    "MetricValues",
    "RampPolicy",
    "RampStage",
    "RunResult",
    "ThresholdResult",
    # Errors
    "StampedeError",
    "StampedeConfigError",
    "SetupFailedError",
    "TeardownError",
]

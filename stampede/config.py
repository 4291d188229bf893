"""
Configuration: environment settings and run configuration files.

Usage:
    from stampede.config import get_settings, load_run_config, build_orchestrator

    settings = get_settings()
    config = load_run_config("run.json")
    orchestrator = build_orchestrator(config, registry, settings=settings)

Run config files are JSON, shaped like k6 options:

    {
      "base_url": "http://localhost",
      "setup": "logs.setup",
      "scenarios": {
        "write_load": {
          "exec": "logs.write",
          "stages": [{"duration": "30s", "target": 200}],
          "delay": "uniform(0, 100ms)"
        }
      },
      "thresholds": {"write_success_rate": ["rate>0.90"]}
    }

Precedence: explicit CLI value > config file value > environment default.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from stampede.delays import parse_delay
from stampede.exceptions import StampedeConfigError
from stampede.metrics.sink import MetricSink
from stampede.models import RampPolicy, RampStage, coerce_duration
from stampede.orchestrator import RunOrchestrator
from stampede.scenario import Scenario, ScenarioRegistry
from stampede.thresholds import parse_thresholds


def _env_duration(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return coerce_duration(value)
    except ValueError as exc:
        raise StampedeConfigError(
            f"{name}: {exc}", code="invalid_env", details={"variable": name}
        ) from exc


def _env_positive_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if not value:
        return None
    try:
        parsed = int(value)
    except ValueError:
        parsed = 0
    if parsed < 1:
        raise StampedeConfigError(
            f"{name} must be a positive integer, got {value!r}",
            code="invalid_env",
            details={"variable": name},
        )
    return parsed


class Settings:
    """Defaults loaded from environment variables.

    Raises:
        StampedeConfigError: a variable is set to an unparseable value.
    """

    def __init__(self) -> None:
        # Target
        self.base_url: str = os.getenv("STAMPEDE_BASE_URL", "http://localhost")
        self.request_timeout: float = _env_duration("STAMPEDE_REQUEST_TIMEOUT", "10")

        # Scheduling
        self.tick_seconds: float = _env_duration("STAMPEDE_TICK_SECONDS", "0.1")
        self.graceful_stop: float = _env_duration("STAMPEDE_GRACEFUL_STOP", "30")

        # Metrics
        self.trend_max_samples: Optional[int] = _env_positive_int(
            "STAMPEDE_TREND_MAX_SAMPLES"
        )

        # Logging
        self.log_level: str = os.getenv("STAMPEDE_LOG_LEVEL", "INFO").upper()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()


def _duration(value: Any) -> Any:
    if value is None:
        return None
    return coerce_duration(value)


class ScenarioConfig(BaseModel):
    """
    One entry under "scenarios".

    executor "ramping-vus" (default) uses start_vus + stages.
    executor "constant-vus" uses vus + duration.
    """

    model_config = ConfigDict(extra="forbid")

    exec: str
    executor: Literal["ramping-vus", "constant-vus"] = "ramping-vus"

    start_vus: int = Field(default=0, ge=0)
    stages: List[RampStage] = Field(default_factory=list)
    vus: Optional[int] = Field(default=None, ge=0)
    duration: Optional[float] = Field(default=None, ge=0)

    start_time: float = Field(default=0.0, ge=0)
    delay: Optional[Union[str, float]] = None
    ramp_policy: RampPolicy = RampPolicy.LINEAR
    graceful_stop: Optional[float] = Field(default=None, ge=0)
    metric_prefix: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("start_time", "duration", "graceful_stop", "timeout", mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        return _duration(value)

    @model_validator(mode="after")
    def _check_shape(self) -> "ScenarioConfig":
        if self.executor == "constant-vus":
            if self.vus is None or self.duration is None:
                raise ValueError("constant-vus needs both 'vus' and 'duration'")
            if self.stages:
                raise ValueError("constant-vus does not take 'stages'")
        elif not self.stages:
            raise ValueError("ramping-vus needs at least one stage")
        return self


class RunConfig(BaseModel):
    """A complete run description."""

    model_config = ConfigDict(extra="forbid")

    base_url: Optional[str] = None
    request_timeout: Optional[float] = Field(default=None, gt=0)
    tick: Optional[float] = Field(default=None, gt=0)
    check_interval: Optional[float] = Field(default=None, gt=0)
    trend_max_samples: Optional[int] = Field(default=None, ge=1)
    seed: int = 0

    setup: Optional[str] = None
    teardown: Optional[str] = None

    scenarios: Dict[str, ScenarioConfig] = Field(..., min_length=1)
    thresholds: Dict[str, List[Union[str, Dict[str, Any]]]] = Field(default_factory=dict)

    @field_validator("request_timeout", "tick", "check_interval", mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        return _duration(value)

    @field_validator("thresholds", mode="before")
    @classmethod
    def _listify_thresholds(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: v if isinstance(v, list) else [v] for k, v in value.items()
            }
        return value


def load_run_config(source: Union[str, Path, Mapping[str, Any]]) -> RunConfig:
    """
    Load and validate a run config from a JSON file path or a mapping.

    Raises:
        StampedeConfigError: unreadable file, invalid JSON or invalid shape.
    """
    if isinstance(source, Mapping):
        data: Any = dict(source)
    else:
        path = Path(source)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StampedeConfigError(
                f"Cannot read config file {path}: {exc}",
                code="config_unreadable",
                details={"path": str(path)},
            ) from exc
        except json.JSONDecodeError as exc:
            raise StampedeConfigError(
                f"Config file {path} is not valid JSON: {exc}",
                code="config_invalid_json",
                details={"path": str(path)},
            ) from exc
    if not isinstance(data, dict):
        raise StampedeConfigError("Run config must be a JSON object")
    try:
        return RunConfig.model_validate(data)
    except ValidationError as exc:
        raise StampedeConfigError(
            f"Invalid run config: {exc}",
            code="config_invalid",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def build_scenarios(
    config: RunConfig, registry: ScenarioRegistry, *, settings: Settings
) -> List[Scenario]:
    """Resolve every scenario's body and build Scenario objects."""
    scenarios: List[Scenario] = []
    for index, (name, sc) in enumerate(config.scenarios.items()):
        body = registry.resolve(sc.exec)
        delay = parse_delay(sc.delay, seed=config.seed + index)
        graceful_stop = (
            sc.graceful_stop if sc.graceful_stop is not None else settings.graceful_stop
        )
        common: Dict[str, Any] = dict(
            start_time=sc.start_time,
            delay=delay,
            ramp_policy=sc.ramp_policy,
            graceful_stop=graceful_stop,
            metric_prefix=sc.metric_prefix,
            timeout=sc.timeout,
        )
        if sc.executor == "constant-vus":
            assert sc.vus is not None and sc.duration is not None
            scenario = Scenario.constant(
                name, body, vus=sc.vus, duration=sc.duration, **common
            )
        else:
            scenario = Scenario(
                name=name,
                body=body,
                stages=sc.stages,
                start_vus=sc.start_vus,
                **common,
            )
        scenarios.append(scenario)
    return scenarios


def build_orchestrator(
    config: RunConfig,
    registry: ScenarioRegistry,
    *,
    settings: Optional[Settings] = None,
    base_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RunOrchestrator:
    """
    Turn a validated RunConfig into a ready-to-run orchestrator.

    Every name (scenario exec, setup, teardown) and every threshold
    expression is resolved here, before any traffic is sent.
    """
    settings = settings or get_settings()
    scenarios = build_scenarios(config, registry, settings=settings)
    thresholds = parse_thresholds(config.thresholds)
    setup = registry.resolve_hook(config.setup) if config.setup else None
    teardown = registry.resolve_hook(config.teardown) if config.teardown else None

    trend_max_samples = (
        config.trend_max_samples
        if config.trend_max_samples is not None
        else settings.trend_max_samples
    )
    sink = MetricSink(trend_max_samples=trend_max_samples, seed=config.seed)

    return RunOrchestrator(
        scenarios,
        thresholds=thresholds,
        setup=setup,
        teardown=teardown,
        base_url=base_url or config.base_url or settings.base_url,
        request_timeout=(
            config.request_timeout
            if config.request_timeout is not None
            else settings.request_timeout
        ),
        tick=config.tick if config.tick is not None else settings.tick_seconds,
        check_interval=config.check_interval,
        sink=sink,
        transport=transport,
        seed=config.seed,
    )

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

import httpx
from dotenv import load_dotenv

from stampede.config import (
    RunConfig,
    build_orchestrator,
    get_settings,
    load_run_config,
    reset_settings,
)
from stampede.exceptions import SetupFailedError, StampedeConfigError
from stampede.models import coerce_duration
from stampede.profiles import get_profile, list_profiles
from stampede.report import export_summary, format_summary
from stampede.scenario import ScenarioRegistry
from stampede.scenarios import default_registry

logger = logging.getLogger(__name__)

EXIT_PASSED = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_SETUP_FAILED = 2
EXIT_CONFIG_ERROR = 3


def _duration_arg(value: str) -> float:
    try:
        return coerce_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stampede",
        description="Run a load test from a JSON run config or a built-in profile.",
    )
    parser.add_argument("config", nargs="?", help="Path to a JSON run config.")
    parser.add_argument(
        "--profile", help=f"Built-in profile ({', '.join(list_profiles())})."
    )
    parser.add_argument("--base-url", help="Base URL of the system under test.")
    parser.add_argument("--env-file", help="Load environment variables from this file.")
    parser.add_argument(
        "--log-level", help="Logging level (default: STAMPEDE_LOG_LEVEL or INFO)."
    )
    parser.add_argument(
        "--tick", type=_duration_arg, help="Scheduling tick, e.g. 100ms."
    )
    parser.add_argument(
        "--check-interval",
        type=_duration_arg,
        help="Evaluate abort_on_fail thresholds on this interval during the run.",
    )
    parser.add_argument(
        "--summary-export", help="Write the run result as JSON to this path."
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run result as JSON on stdout instead of the text summary.",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List built-in profiles, scenarios and hooks, then exit.",
    )
    return parser.parse_args(argv)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        raise StampedeConfigError(
            f"Unknown log level {level_name!r}", code="invalid_log_level"
        )
    # stderr keeps stdout clean for --json.
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _load(args: argparse.Namespace) -> RunConfig:
    if args.config and args.profile:
        raise StampedeConfigError("Pass either a config file or --profile, not both")
    if args.profile:
        config = load_run_config(get_profile(args.profile))
    elif args.config:
        config = load_run_config(args.config)
    else:
        raise StampedeConfigError("A config file or --profile is required")

    overrides = {}
    if args.tick is not None:
        overrides["tick"] = args.tick
    if args.check_interval is not None:
        overrides["check_interval"] = args.check_interval
    if overrides:
        config = config.model_copy(update=overrides)
    return config


def _print_listing(registry: ScenarioRegistry) -> None:
    print("Profiles:")
    for name in list_profiles():
        print(f"  {name}")
    print("Scenarios:")
    for name in registry.list_scenarios():
        print(f"  {name}")
    print("Hooks:")
    for name in registry.list_hooks():
        print(f"  {name}")


def main(
    argv: Optional[List[str]] = None,
    *,
    registry: Optional[ScenarioRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    args = _parse_args(argv)
    if args.env_file:
        load_dotenv(args.env_file, override=True)
    else:
        load_dotenv()
    reset_settings()
    registry = registry or default_registry()

    try:
        settings = get_settings()
        _configure_logging(args.log_level or settings.log_level)
        if args.list:
            _print_listing(registry)
            return EXIT_PASSED
        config = _load(args)
        orchestrator = build_orchestrator(
            config,
            registry,
            settings=settings,
            base_url=args.base_url,
            transport=transport,
        )
    except StampedeConfigError as exc:
        print(json.dumps(exc.to_dict(), default=str), file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        result = orchestrator.run_sync()
    except SetupFailedError as exc:
        print(json.dumps(exc.to_dict(), default=str), file=sys.stderr)
        return EXIT_SETUP_FAILED

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print(format_summary(result))
    if args.summary_export:
        path = export_summary(result, args.summary_export)
        logger.info("Summary written to %s", path)

    return EXIT_PASSED if result.passed else EXIT_THRESHOLDS_FAILED


if __name__ == "__main__":
    raise SystemExit(main())

"""
Built-in scenario bodies and hooks.

    registry = default_registry()
    registry.list_scenarios()
    # ['logs.read', 'logs.search', 'logs.write', 'ratelimit.ping']
"""

from stampede.scenario import ScenarioRegistry
from stampede.scenarios import logs, ratelimit


def default_registry() -> ScenarioRegistry:
    """Fresh registry holding every built-in scenario and hook."""
    registry = ScenarioRegistry()
    logs.register(registry)
    ratelimit.register(registry)
    return registry


__all__ = ["default_registry", "logs", "ratelimit"]

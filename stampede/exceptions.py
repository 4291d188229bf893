"""
Typed exceptions for stampede.

Provides structured error handling with:
- StampedeError: Base exception for all stampede errors
- StampedeConfigError: Configuration and validation errors
- SetupFailedError: The run's setup phase failed (the only run-aborting fault)
- TeardownError: Teardown failed (captured on the result, never raised from a run)

Per-iteration request failures are not exceptions at this level: they are
recorded as failing samples and the run continues.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class StampedeError(Exception):
    """Base exception for all stampede errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or JSON output."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class StampedeConfigError(StampedeError):
    """Configuration or validation error.

    Raised at configuration-load time when:
    - A duration, stage, delay or threshold expression is malformed
    - A scenario, setup or teardown name is not registered
    - A config file cannot be read or decoded

    Examples:
        StampedeConfigError("Unknown scenario", details={"exec": "logs.wrte"})
        StampedeConfigError("Invalid threshold", code="invalid_threshold")
    """

    pass


class SetupFailedError(StampedeError):
    """Setup phase failed; no scenario pool was started.

    Attributes:
        base_url: Target the setup phase was probing, if known
    """

    def __init__(
        self,
        message: str,
        *,
        base_url: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if base_url:
            details["base_url"] = base_url

        self.base_url = base_url

        super().__init__(message, code=code or "setup_failed", details=details)


class TeardownError(StampedeError):
    """Teardown phase failed.

    Best-effort cleanup: the orchestrator logs this and stores it on the
    run result without touching threshold verdicts.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "teardown_failed", details=details)


__all__ = [
    "StampedeError",
    "StampedeConfigError",
    "SetupFailedError",
    "TeardownError",
]

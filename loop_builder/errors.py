"""Error types raised by the loop route engine."""

from typing import Dict, Optional


class LoopRunnerError(Exception):
    """Base class for engine errors."""


class ExternalApiError(LoopRunnerError):
    """Network failure, timeout, non-2xx or non-OK payload from a routing/elevation backend."""

    def __init__(self, service: str, message: str, status: Optional[int] = None):
        self.service = service
        self.status = status
        self.message = message
        suffix = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"{service}: {message}{suffix}")


ApiError = ExternalApiError


class ValidationFailure(LoopRunnerError):
    """A candidate failed the geometric accept rule."""


class CalibrationFailure(LoopRunnerError):
    """The distance calibrator ran out of iterations without an acceptable error."""


class ConfigurationError(LoopRunnerError):
    """Missing credentials or invalid engine configuration."""


class NoValidRouteError(LoopRunnerError):
    """No candidate survived the attempt budget."""

    DEFAULT_SUGGESTION = (
        "Could not generate a valid route. Try a different distance or start location."
    )

    def __init__(
        self,
        suggestion: str = DEFAULT_SUGGESTION,
        attempts: int = 0,
        failure_counts: Optional[Dict[str, int]] = None,
    ):
        self.suggestion = suggestion
        self.attempts = attempts
        self.failure_counts = dict(failure_counts or {})
        super().__init__(suggestion)

"""Loop route builder: ranked circular running routes of a requested distance."""

from .builder import LoopRouteEngine, build_engine
from .config import EngineConfig
from .errors import ConfigurationError, ExternalApiError, NoValidRouteError
from .models import Coordinate, GeneratedRoute

__all__ = [
    "LoopRouteEngine",
    "build_engine",
    "EngineConfig",
    "ConfigurationError",
    "ExternalApiError",
    "NoValidRouteError",
    "Coordinate",
    "GeneratedRoute",
]

"""
Engine configuration and tunable thresholds.

The two historical tolerance policies disagree (distance +/-10% vs +/-15%, U-turn
cutoff 155/160/180 degrees, highway severity cutoffs). Each threshold is a named
constant below with one canonical default; override per field on EngineConfig.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# ---------------------------------------------------------------------------
# Validation thresholds
# ---------------------------------------------------------------------------
DISTANCE_TOLERANCE = 0.15  # relative error allowed vs target distance
DISTANCE_GROSS_ERROR = 0.20  # above this a distance mismatch is HIGH severity
UTURN_ANGLE_DEG = 160.0
HIGHWAY_MEDIUM_PCT = 10.0
HIGHWAY_HIGH_PCT = 30.0
MAX_MEDIUM_ISSUES = 2
BACKTRACK_GRID_DEG = 0.0003  # ~33 m cells
BACKTRACK_EXCLUDE_M = 300.0  # ignore start/finish overlap
BACKTRACK_MIN_GAP_M = 250.0  # reversals closer than this along the path are one corner, not a retrace
MAX_BACKTRACK_RATIO = 0.35
MIN_ANGULAR_SPREAD_DEG = 180.0
CLOSURE_EPSILON_M = 50.0

# ---------------------------------------------------------------------------
# Diversity / scoring
# ---------------------------------------------------------------------------
OVERLAP_GRID_DEG = 0.0005
MAX_OVERLAP = 0.40
DEFAULT_POPULARITY = 0.1
HILLY_GAIN_PER_KM = 25.0

# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------
CALIBRATION_MIN_SCALE = 0.1
CALIBRATION_MAX_SCALE = 5.0
CALIBRATION_ITERATIONS = 10
CALIBRATION_EARLY_EXIT = 0.15
CALIBRATION_MAX_ERROR = 0.25
BASE_RADIUS_DIVISOR = 4.0  # street routes meander: base radius = target km / 4

# ---------------------------------------------------------------------------
# Orchestration / transport
# ---------------------------------------------------------------------------
DEFAULT_TOP_K = 5
MAX_TOP_K = 5
DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_WORKERS = 4
DEFAULT_DEADLINE_S = 90.0
REQUEST_TIMEOUT_S = 30.0
MIN_CALL_INTERVAL_S = 0.5

MODE_TEMPLATE = "template"
MODE_ROUND_TRIP = "round_trip"
MODES = (MODE_TEMPLATE, MODE_ROUND_TRIP)


@dataclass(frozen=True)
class EngineConfig:
    mode: str = MODE_TEMPLATE
    google_api_key: Optional[str] = field(default=None, repr=False)
    graphhopper_api_key: Optional[str] = field(default=None, repr=False)
    popularity_db_url: Optional[str] = None

    distance_tolerance: float = DISTANCE_TOLERANCE
    distance_gross_error: float = DISTANCE_GROSS_ERROR
    uturn_angle_deg: float = UTURN_ANGLE_DEG
    highway_medium_pct: float = HIGHWAY_MEDIUM_PCT
    highway_high_pct: float = HIGHWAY_HIGH_PCT
    max_medium_issues: int = MAX_MEDIUM_ISSUES
    backtrack_grid_deg: float = BACKTRACK_GRID_DEG
    backtrack_exclude_m: float = BACKTRACK_EXCLUDE_M
    backtrack_min_gap_m: float = BACKTRACK_MIN_GAP_M
    max_backtrack_ratio: float = MAX_BACKTRACK_RATIO
    min_angular_spread_deg: float = MIN_ANGULAR_SPREAD_DEG
    closure_epsilon_m: float = CLOSURE_EPSILON_M

    overlap_grid_deg: float = OVERLAP_GRID_DEG
    max_overlap: float = MAX_OVERLAP
    default_popularity: float = DEFAULT_POPULARITY
    hilly_gain_per_km: float = HILLY_GAIN_PER_KM

    calibration_min_scale: float = CALIBRATION_MIN_SCALE
    calibration_max_scale: float = CALIBRATION_MAX_SCALE
    calibration_iterations: int = CALIBRATION_ITERATIONS
    calibration_early_exit: float = CALIBRATION_EARLY_EXIT
    calibration_max_error: float = CALIBRATION_MAX_ERROR
    base_radius_divisor: float = BASE_RADIUS_DIVISOR

    top_k: int = DEFAULT_TOP_K
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    workers: int = DEFAULT_WORKERS
    deadline_s: float = DEFAULT_DEADLINE_S
    request_timeout_s: float = REQUEST_TIMEOUT_S
    min_call_interval_s: float = MIN_CALL_INTERVAL_S

    def with_overrides(self, **changes) -> "EngineConfig":
        return replace(self, **changes)

    def check(self) -> None:
        """Raise ConfigurationError for an unusable configuration."""
        if self.mode not in MODES:
            raise ConfigurationError(f"Unknown mode {self.mode!r}; expected one of {MODES}")
        if self.mode == MODE_TEMPLATE and not self.google_api_key:
            raise ConfigurationError("GOOGLE_MAPS_API_KEY must be set for template mode")
        if self.mode == MODE_ROUND_TRIP and not self.graphhopper_api_key:
            raise ConfigurationError("GRAPHHOPPER_API_KEY must be set for round_trip mode")
        if not 1 <= self.top_k <= MAX_TOP_K:
            raise ConfigurationError(f"top_k must be between 1 and {MAX_TOP_K}")
        if self.workers < 1:
            raise ConfigurationError("workers must be at least 1")

    @classmethod
    def from_env(cls, env_path: Optional[str] = None) -> "EngineConfig":
        """Build a config from environment variables (a .env file is loaded first if present)."""
        load_dotenv(env_path)
        overrides = {}
        for env_name, attr, cast in (
            ("LOOPRUNNER_DISTANCE_TOLERANCE", "distance_tolerance", float),
            ("LOOPRUNNER_MAX_ATTEMPTS", "max_attempts", int),
            ("LOOPRUNNER_TOP_K", "top_k", int),
            ("LOOPRUNNER_DEADLINE_S", "deadline_s", float),
            ("LOOPRUNNER_WORKERS", "workers", int),
        ):
            raw = os.getenv(env_name)
            if raw is None or not raw.strip():
                continue
            try:
                overrides[attr] = cast(raw)
            except ValueError:
                raise ConfigurationError(f"{env_name}={raw!r} is not a valid {cast.__name__}")
        return cls(
            mode=os.getenv("LOOPRUNNER_MODE", MODE_TEMPLATE).strip().lower(),
            google_api_key=os.getenv("GOOGLE_MAPS_API_KEY") or None,
            graphhopper_api_key=os.getenv("GRAPHHOPPER_API_KEY") or None,
            popularity_db_url=os.getenv("LOOPRUNNER_POPULARITY_DB") or None,
            **overrides,
        )

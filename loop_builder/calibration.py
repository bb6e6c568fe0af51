"""
Distance calibration for waypoint-based loops.

Binary search on a scale applied to each waypoint's offset from the origin until the
backend's reported distance is close enough to the target:

    Searching --(error < early_exit)--> EarlyExit
    Searching --(budget spent, best < max_error)--> ExhaustedAccept
    Searching --(budget spent, otherwise)--> ExhaustedReject
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .config import EngineConfig
from .errors import ExternalApiError
from .geometry import scale_from
from .models import Coordinate, PathResult
from .requester import PathRequester, WaypointParams
from .utils import get_logger

logger = get_logger("calibration")


class CalibrationState(str, Enum):
    SEARCHING = "searching"
    EARLY_EXIT = "early_exit"
    EXHAUSTED_ACCEPT = "exhausted_accept"
    EXHAUSTED_REJECT = "exhausted_reject"


@dataclass
class CalibratedRoute:
    waypoints: List[Coordinate]
    path: PathResult
    scale: float
    error: float


@dataclass
class CalibrationTrace:
    """Final state plus per-iteration (scale, distance_m or None) for diagnostics."""

    state: CalibrationState = CalibrationState.SEARCHING
    iterations: List[tuple] = field(default_factory=list)
    api_errors: List[str] = field(default_factory=list)


def relative_error(distance_m: float, target_m: float) -> float:
    if target_m <= 0:
        return float("inf")
    return abs(distance_m - target_m) / target_m


class DistanceCalibrator:
    def __init__(self, requester: PathRequester, config: Optional[EngineConfig] = None, optimize_order: bool = False):
        self.requester = requester
        self.config = config or EngineConfig()
        self.optimize_order = optimize_order

    def calibrate(
        self,
        origin: Coordinate,
        base_waypoints: Sequence[Coordinate],
        target_m: float,
        trace: Optional[CalibrationTrace] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[CalibratedRoute]:
        """
        Return the calibrated waypoints and path, or None when calibration fails.
        Once `cancel` is set no further backend calls are made.
        """
        cfg = self.config
        trace = trace if trace is not None else CalibrationTrace()
        min_scale, max_scale = cfg.calibration_min_scale, cfg.calibration_max_scale
        scale = 1.0
        best: Optional[CalibratedRoute] = None

        for _ in range(cfg.calibration_iterations):
            if cancel is not None and cancel.is_set():
                logger.debug("Calibration cancelled after %d call(s)", len(trace.iterations))
                break
            scaled = [scale_from(origin, wp, scale) for wp in base_waypoints]
            try:
                path = self.requester.request_path(
                    origin, WaypointParams(scaled, optimize_order=self.optimize_order)
                )
            except ExternalApiError as e:
                # Assume the loop sprawled too far; shrink.
                trace.api_errors.append(f"{e} (scale={scale:.2f})")
                trace.iterations.append((scale, None))
                max_scale = scale
                scale = (min_scale + max_scale) / 2
                continue

            trace.iterations.append((scale, path.distance_m))
            error = relative_error(path.distance_m, target_m)
            if best is None or error < best.error:
                best = CalibratedRoute(scaled, path, scale, error)

            if error < cfg.calibration_early_exit:
                trace.state = CalibrationState.EARLY_EXIT
                return CalibratedRoute(scaled, path, scale, error)

            if path.distance_m < target_m:
                min_scale = scale
            else:
                max_scale = scale
            scale = (min_scale + max_scale) / 2

        if best is not None and best.error < cfg.calibration_max_error:
            trace.state = CalibrationState.EXHAUSTED_ACCEPT
            return best

        trace.state = CalibrationState.EXHAUSTED_REJECT
        if best is None:
            logger.info(
                "Calibration failed: 0/%d backend calls succeeded. Errors: %s",
                cfg.calibration_iterations,
                "; ".join(trace.api_errors[:3]),
            )
        else:
            logger.info(
                "Calibration failed: best error %.1f%% exceeds %.0f%% (dist=%.0fm, target=%.0fm)",
                best.error * 100,
                cfg.calibration_max_error * 100,
                best.path.distance_m,
                target_m,
            )
        return None

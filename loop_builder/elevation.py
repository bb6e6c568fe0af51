"""
Climb profile of a route from a sampled elevation lookup.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

import numpy as np

from .errors import ExternalApiError
from .geometry import haversine_m
from .models import Coordinate, PathResult
from .utils import get_logger

logger = get_logger("elevation")

MAX_SAMPLES = 50
MIN_GRADIENT_RUN_M = 5.0  # shorter hops give meaningless gradients


class ElevationBackend(Protocol):
    def lookup(self, points: Sequence[Coordinate]) -> List[float]:
        ...


@dataclass(frozen=True)
class ElevationProfile:
    gain_m: float = 0.0
    loss_m: float = 0.0
    max_gradient_pct: float = 0.0
    max_gradient_deg: float = 0.0


def sample_points(coords: Sequence[Coordinate], max_samples: int = MAX_SAMPLES) -> List[Coordinate]:
    step = max(1, len(coords) // max_samples)
    return list(coords[::step])


def summarize_elevation(elevations: Sequence[float], points: Sequence[Coordinate]) -> ElevationProfile:
    n = min(len(elevations), len(points))
    if n < 2:
        return ElevationProfile()
    ele = np.asarray(elevations[:n], dtype=float)
    deltas = np.diff(ele)
    gain = float(deltas[deltas > 0].sum())
    loss = float(-deltas[deltas < 0].sum())

    max_grad = 0.0
    for i in range(n - 1):
        run = haversine_m(points[i], points[i + 1])
        if run > MIN_GRADIENT_RUN_M:
            max_grad = max(max_grad, abs(float(deltas[i])) / run * 100.0)
    return ElevationProfile(
        gain_m=round(gain),
        loss_m=round(loss),
        max_gradient_pct=round(max_grad, 1),
        max_gradient_deg=round(math.degrees(math.atan(max_grad / 100.0)), 1),
    )


def profile_for_path(path: PathResult, backend: Optional[ElevationBackend]) -> ElevationProfile:
    """Backend-reported ascend/descend wins; otherwise sample and look up. Failures give zeros."""
    if path.ascend_m is not None:
        return ElevationProfile(gain_m=round(path.ascend_m), loss_m=round(path.descend_m or 0.0))
    if backend is None:
        return ElevationProfile()
    points = sample_points(path.coordinates)
    try:
        elevations = backend.lookup(points)
    except (ExternalApiError, TypeError, ValueError, KeyError) as e:
        logger.warning("Elevation lookup failed, reporting flat profile: %s", e)
        return ElevationProfile()
    return summarize_elevation(elevations, points)

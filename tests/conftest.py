"""
Shared fakes: routing backends that synthesize loops through the requested
waypoints, and a minimal stand-in for requests.Session.
"""
import math
import sys
import threading
from pathlib import Path
from typing import List, Sequence

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from loop_builder.geometry import haversine_m, path_length_m, project
from loop_builder.models import Coordinate, PathResult, RoadClassSegment, StepInstruction

START = Coordinate(40.0, -73.0)
SQUARE_PERIMETER_FACTOR = 2 + 3 * math.sqrt(2)  # two spokes plus three chords of the circle


def densify(points: Sequence[Coordinate], step_m: float = 25.0) -> List[Coordinate]:
    out = [points[0]]
    for a, b in zip(points, points[1:]):
        n = max(1, int(math.ceil(haversine_m(a, b) / step_m)))
        for i in range(1, n + 1):
            t = i / n
            out.append(Coordinate(a.lat + (b.lat - a.lat) * t, a.lng + (b.lng - a.lng) * t))
    return out


def loop_through(origin: Coordinate, waypoints: Sequence[Coordinate]) -> List[Coordinate]:
    return densify([origin] + list(waypoints) + [origin])


def square_loop(origin: Coordinate, distance_m: float, rotation: float = 0.0) -> List[Coordinate]:
    radius_km = distance_m / SQUARE_PERIMETER_FACTOR / 1000.0
    corners = [project(origin, rotation + b, radius_km) for b in (0, 90, 180, 270)]
    return loop_through(origin, corners)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Records get() calls and replays queued responses (or raises queued exceptions)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class LoopDirections:
    """Directions backend: straight lines origin -> waypoints -> origin, true length as distance."""

    def __init__(self, segment_label: str = ""):
        self.segment_label = segment_label
        self.calls = 0
        self._lock = threading.Lock()

    def fetch(self, origin, waypoints, optimize_order=True):
        with self._lock:
            self.calls += 1
        coords = loop_through(origin, waypoints)
        distance = path_length_m(coords)
        segments = []
        if self.segment_label:
            segments = [RoadClassSegment(0, len(coords) - 1, self.segment_label)]
        return PathResult(
            coordinates=coords,
            distance_m=distance,
            duration_s=distance / 2.5,
            steps=[StepInstruction("Head north", 100.0)],
            road_class_segments=segments,
        )


class FixedDistanceDirections(LoopDirections):
    """Always reports the same distance, whatever the waypoints."""

    def __init__(self, distance_m: float):
        super().__init__()
        self.distance_m = distance_m

    def fetch(self, origin, waypoints, optimize_order=True):
        path = super().fetch(origin, waypoints, optimize_order)
        path.distance_m = self.distance_m
        return path


class SquareRoundTrip:
    """Round-trip backend: a square loop rotated by the seed, sized to the requested distance."""

    def __init__(self, distance_factor: float = 1.0, hilly_odd_seeds: bool = False):
        self.distance_factor = distance_factor
        self.hilly_odd_seeds = hilly_odd_seeds
        self.profiles = []
        self._lock = threading.Lock()

    def fetch_round_trip(self, origin, seed, distance_m, profile="foot"):
        with self._lock:
            self.profiles.append(profile)
        coords = square_loop(origin, distance_m, rotation=float(seed % 90))
        ascend = None
        if self.hilly_odd_seeds:
            ascend = 500.0 if seed % 2 else 0.0
        return PathResult(
            coordinates=coords,
            distance_m=path_length_m(coords) * self.distance_factor,
            duration_s=0.0,
            ascend_m=ascend,
            descend_m=ascend,
        )


@pytest.fixture
def start():
    return START

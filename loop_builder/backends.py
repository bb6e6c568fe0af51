"""
HTTP clients for the external collaborators:
  - Google Directions (walking, avoid highways) for waypoint-based loops
  - GraphHopper round_trip for seed-based loops
  - Google Elevation for climb profiles
Sole responsibility: talk HTTP and normalize responses. Failures surface as ExternalApiError.
"""

import re
from typing import Any, Dict, List, Optional, Sequence

import requests

from .config import REQUEST_TIMEOUT_S
from .ephemeral_store import Throttle
from .errors import ConfigurationError, ExternalApiError
from .geometry import decode_polyline
from .models import Coordinate, PathResult, RoadClassSegment, StepInstruction
from .utils import get_logger

logger = get_logger("backends")

_TAG_RE = re.compile(r"<[^>]*>")


def _fmt(p: Coordinate) -> str:
    return f"{p.lat:.6f},{p.lng:.6f}"


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "").strip()


class _JsonClient:
    service = "backend"

    def __init__(
        self,
        api_key: Optional[str],
        timeout_s: float = REQUEST_TIMEOUT_S,
        session: Optional[requests.Session] = None,
        throttle: Optional[Throttle] = None,
    ):
        if not api_key:
            raise ConfigurationError(f"{self.service} API key not configured")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.throttle = throttle

    def _get_json(self, url: str, params: Any) -> Dict[str, Any]:
        if self.throttle is not None:
            self.throttle.wait()
        try:
            r = self.session.get(url, params=params, timeout=self.timeout_s)
        except requests.Timeout:
            raise ExternalApiError(self.service, f"timed out after {self.timeout_s:.0f}s")
        except requests.RequestException as e:
            raise ExternalApiError(self.service, f"request failed: {e}")
        try:
            data = r.json()
        except ValueError:
            data = None
        if r.status_code >= 400:
            message = (data or {}).get("message") if isinstance(data, dict) else None
            raise ExternalApiError(self.service, message or "request rejected", status=r.status_code)
        if not isinstance(data, dict):
            raise ExternalApiError(self.service, "malformed JSON response", status=r.status_code)
        return data


class GoogleDirectionsClient(_JsonClient):
    """Turn-by-turn walking directions from origin through waypoints and back to origin."""

    service = "google_directions"
    BASE_URL = "https://maps.googleapis.com/maps/api/directions/json"

    def fetch(self, origin: Coordinate, waypoints: Sequence[Coordinate], optimize_order: bool = True) -> PathResult:
        prefix = "optimize:true|" if optimize_order else ""
        params = {
            "origin": _fmt(origin),
            "destination": _fmt(origin),
            "waypoints": prefix + "|".join(_fmt(w) for w in waypoints),
            "mode": "walking",
            "avoid": "highways",
            "key": self.api_key,
        }
        data = self._get_json(self.BASE_URL, params)
        status = data.get("status")
        routes = data.get("routes") or []
        if status != "OK" or not routes:
            raise ExternalApiError(self.service, data.get("error_message") or status or "No routes found")
        try:
            return parse_directions_route(routes[0])
        except (TypeError, ValueError, KeyError, IndexError, AttributeError) as e:
            raise ExternalApiError(self.service, f"malformed route payload: {e!r}")


def parse_directions_route(route: Dict[str, Any]) -> PathResult:
    """Normalize one Google Directions route. Each step becomes a labelled index range."""
    coords: List[Coordinate] = []
    steps: List[StepInstruction] = []
    segments: List[RoadClassSegment] = []
    total_m = 0.0
    total_s = 0.0
    for leg in route.get("legs") or []:
        total_m += float((leg.get("distance") or {}).get("value", 0))
        total_s += float((leg.get("duration") or {}).get("value", 0))
        for step in leg.get("steps") or []:
            text = strip_html(step.get("html_instructions", ""))
            steps.append(StepInstruction(text, float((step.get("distance") or {}).get("value", 0))))
            pts = decode_polyline((step.get("polyline") or {}).get("points", ""))
            if not pts:
                continue
            if coords and coords[-1] == pts[0]:
                pts = pts[1:]
                start_idx = len(coords) - 1
            else:
                start_idx = len(coords)
            coords.extend(pts)
            if len(coords) - 1 > start_idx:
                segments.append(RoadClassSegment(start_idx, len(coords) - 1, text))
    if len(coords) < 2:
        coords = decode_polyline((route.get("overview_polyline") or {}).get("points", ""))
        segments = []
    return PathResult(
        coordinates=coords,
        distance_m=total_m,
        duration_s=total_s,
        steps=steps,
        road_class_segments=segments,
    )


class GraphHopperClient(_JsonClient):
    """GraphHopper round_trip: one closed loop per (seed, distance)."""

    service = "graphhopper"
    BASE_URL = "https://graphhopper.com/api/1/route"

    def fetch_round_trip(self, origin: Coordinate, seed: int, distance_m: float, profile: str = "foot") -> PathResult:
        params = [
            ("point", _fmt(origin)),
            ("profile", profile),
            ("algorithm", "round_trip"),
            ("round_trip.distance", int(round(distance_m))),
            ("round_trip.seed", int(seed)),
            ("points_encoded", "false"),
            ("elevation", "true"),
            ("instructions", "true"),
            ("details", "road_class"),
            ("details", "surface"),
            ("key", self.api_key),
        ]
        data = self._get_json(self.BASE_URL, params)
        paths = data.get("paths") or []
        if not paths:
            raise ExternalApiError(self.service, data.get("message") or "No route found")
        try:
            return parse_graphhopper_path(paths[0])
        except (TypeError, ValueError, KeyError, IndexError, AttributeError) as e:
            raise ExternalApiError(self.service, f"malformed path payload: {e!r}")


def parse_graphhopper_path(path: Dict[str, Any]) -> PathResult:
    raw = (path.get("points") or {}).get("coordinates") or []
    # GraphHopper uses [lng, lat, (ele)]
    coords = [Coordinate(float(c[1]), float(c[0])) for c in raw if len(c) >= 2]
    steps = [
        StepInstruction(str(i.get("text", "")), float(i.get("distance", 0.0)))
        for i in path.get("instructions") or []
    ]
    segments = [
        RoadClassSegment(int(d[0]), int(d[1]), str(d[2]))
        for d in (path.get("details") or {}).get("road_class") or []
        if len(d) >= 3
    ]
    ascend = path.get("ascend")
    descend = path.get("descend")
    return PathResult(
        coordinates=coords,
        distance_m=float(path.get("distance", 0.0)),
        duration_s=float(path.get("time", 0.0)) / 1000.0,
        steps=steps,
        road_class_segments=segments,
        ascend_m=float(ascend) if ascend is not None else None,
        descend_m=float(descend) if descend is not None else None,
    )


class GoogleElevationClient(_JsonClient):
    """Per-point elevation (meters) for already-sampled path points."""

    service = "google_elevation"
    BASE_URL = "https://maps.googleapis.com/maps/api/elevation/json"

    def lookup(self, points: Sequence[Coordinate]) -> List[float]:
        if len(points) < 2:
            return []
        params = {
            "locations": "|".join(_fmt(p) for p in points),
            "key": self.api_key,
        }
        data = self._get_json(self.BASE_URL, params)
        if data.get("status") != "OK" or not data.get("results"):
            raise ExternalApiError(self.service, data.get("error_message") or data.get("status") or "no results")
        try:
            return [float(r["elevation"]) for r in data["results"] if "elevation" in r]
        except (TypeError, ValueError) as e:
            raise ExternalApiError(self.service, f"malformed elevation payload: {e!r}")

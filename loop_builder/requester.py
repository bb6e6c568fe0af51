"""
Round-trip path requester: one backend call per request, in one of two modes.
  - WaypointParams: directions through projected waypoints (mode B)
  - RoundTripParams: backend-generated loop for a seed + distance (mode A)
The first and last coordinate of every result are overwritten with the origin.
"""

from dataclasses import dataclass, replace
from typing import List, Optional, Protocol, Sequence, Union

from .errors import ConfigurationError, ExternalApiError
from .geometry import encode_polyline
from .models import Coordinate, PathResult


class DirectionsBackend(Protocol):
    def fetch(self, origin: Coordinate, waypoints: Sequence[Coordinate], optimize_order: bool = True) -> PathResult:
        ...


class RoundTripBackend(Protocol):
    def fetch_round_trip(self, origin: Coordinate, seed: int, distance_m: float, profile: str = "foot") -> PathResult:
        ...


@dataclass(frozen=True)
class WaypointParams:
    waypoints: Sequence[Coordinate]
    optimize_order: bool = False


@dataclass(frozen=True)
class RoundTripParams:
    seed: int
    target_distance_m: float
    profile: str = "foot"


PathParams = Union[WaypointParams, RoundTripParams]


def snap_endpoints(path: PathResult, origin: Coordinate) -> PathResult:
    """Force loop closure on origin and re-encode the polyline from the snapped coordinates."""
    coords: List[Coordinate] = list(path.coordinates)
    if len(coords) < 2:
        raise ExternalApiError("requester", "backend returned no usable geometry")
    coords[0] = origin
    coords[-1] = origin
    return replace(path, coordinates=coords, encoded_polyline=encode_polyline(coords))


class PathRequester:
    def __init__(
        self,
        directions: Optional[DirectionsBackend] = None,
        round_trip: Optional[RoundTripBackend] = None,
    ):
        self.directions = directions
        self.round_trip = round_trip

    def request_path(self, origin: Coordinate, params: PathParams) -> PathResult:
        """Issue one backend call. Raises ExternalApiError on any backend failure."""
        if isinstance(params, WaypointParams):
            if self.directions is None:
                raise ConfigurationError("No directions backend configured")
            raw = self.directions.fetch(origin, list(params.waypoints), params.optimize_order)
        elif isinstance(params, RoundTripParams):
            if self.round_trip is None:
                raise ConfigurationError("No round-trip backend configured")
            raw = self.round_trip.fetch_round_trip(
                origin, params.seed, params.target_distance_m, params.profile
            )
        else:
            raise TypeError(f"Unsupported path params: {type(params).__name__}")
        if raw.distance_m <= 0:
            raise ExternalApiError("requester", "backend returned a zero-length route")
        return snap_endpoints(raw, origin)

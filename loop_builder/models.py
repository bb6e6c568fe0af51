"""
Value types shared by the loop route engine.
Coordinates are (lat, lng) in degrees; distances are meters unless the name says otherwise.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class IssueKind(str, Enum):
    U_TURN = "U_TURN"
    REPEATED_SEGMENT = "REPEATED_SEGMENT"
    HIGHWAY = "HIGHWAY"
    DISTANCE_MISMATCH = "DISTANCE_MISMATCH"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RoadClass(str, Enum):
    HIGHWAY = "highway"
    TRAIL = "trail"
    PATH = "path"
    OTHER = "other"


class Difficulty(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    HARD = "hard"


class FailureReason(str, Enum):
    API = "api"
    CALIBRATION = "calibration"
    DISTANCE = "distance"
    VALIDATION = "validation"
    NOT_CIRCUIT = "not_circuit"
    DUPLICATE = "duplicate"
    CLOSURE = "closure"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)

    @classmethod
    def from_pair(cls, pair) -> "Coordinate":
        return cls(float(pair[0]), float(pair[1]))


@dataclass(frozen=True)
class StepInstruction:
    text: str
    distance_m: float


@dataclass(frozen=True)
class RoadClassSegment:
    """Index range [start_idx, end_idx] of PathResult.coordinates carrying a raw backend label."""

    start_idx: int
    end_idx: int
    label: str


@dataclass
class PathResult:
    coordinates: List[Coordinate]
    distance_m: float
    duration_s: float
    encoded_polyline: str = ""
    steps: List[StepInstruction] = field(default_factory=list)
    road_class_segments: List[RoadClassSegment] = field(default_factory=list)
    # Some backends (GraphHopper) report climb directly.
    ascend_m: Optional[float] = None
    descend_m: Optional[float] = None


@dataclass(frozen=True)
class ValidationIssue:
    kind: IssueKind
    location: Coordinate
    severity: Severity


@dataclass
class ValidationReport:
    issues: List[ValidationIssue]
    quality_score: float
    backtrack_ratio: float = 0.0
    angular_spread_deg: float = 0.0
    highway_pct: float = 0.0
    trail_pct: float = 0.0
    terrain_score: float = 0.0

    def count(self, severity: Severity) -> int:
        return sum(1 for i in self.issues if i.severity == severity)

    @property
    def high_count(self) -> int:
        return self.count(Severity.HIGH)

    @property
    def medium_count(self) -> int:
        return self.count(Severity.MEDIUM)


@dataclass
class RouteCandidate:
    path: PathResult
    issues: List[ValidationIssue]
    quality_score: float
    backtrack_ratio: float
    angular_spread_deg: float
    terrain_score: float
    template_label: str
    waypoints: List[Coordinate] = field(default_factory=list)
    popularity_score: float = 0.0
    highway_pct: float = 0.0


@dataclass
class AttemptResult:
    """Outcome of one generation attempt: either a candidate or a failure reason."""

    label: str
    candidate: Optional[RouteCandidate] = None
    reason: Optional[FailureReason] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.candidate is not None

    @classmethod
    def success(cls, label: str, candidate: RouteCandidate) -> "AttemptResult":
        return cls(label=label, candidate=candidate)

    @classmethod
    def failure(cls, label: str, reason: FailureReason, detail: str = "") -> "AttemptResult":
        return cls(label=label, reason=reason, detail=detail)


@dataclass
class GeneratedRoute:
    id: str
    name: str
    distance_km: float
    duration_s: float
    elevation_gain_m: float
    elevation_loss_m: float
    difficulty: Difficulty
    polyline: str
    waypoints: List[Coordinate]
    turn_instructions: List[StepInstruction]
    backtrack_ratio: float
    angular_spread_deg: float
    template_label: str = ""
    description: str = ""
    quality_score: float = 0.0
    popularity_score: float = 0.0
    terrain_score: float = 0.0
    score: float = 0.0
    max_gradient_pct: float = 0.0
    max_gradient_deg: float = 0.0

    @property
    def circuit_quality(self) -> Dict[str, float]:
        return {
            "backtrackRatio": self.backtrack_ratio,
            "angularSpreadDegrees": self.angular_spread_deg,
        }

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly dict using the camelCase keys of the HTTP API."""
        return {
            "id": self.id,
            "name": self.name,
            "distanceKm": round(self.distance_km, 3),
            "durationSec": round(self.duration_s),
            "elevationGainM": self.elevation_gain_m,
            "elevationLossM": self.elevation_loss_m,
            "maxGradientPercent": self.max_gradient_pct,
            "maxGradientDegrees": self.max_gradient_deg,
            "difficulty": self.difficulty.value,
            "polyline": self.polyline,
            "waypoints": [asdict(w) for w in self.waypoints],
            "turnInstructions": [
                {"text": s.text, "distanceM": s.distance_m} for s in self.turn_instructions
            ],
            "description": self.description,
            "templateName": self.template_label,
            "qualityScore": round(self.quality_score, 3),
            "popularityScore": round(self.popularity_score, 3),
            "terrainScore": round(self.terrain_score, 3),
            "score": round(self.score, 4),
            "circuitQuality": self.circuit_quality,
        }

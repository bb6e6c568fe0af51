"""
Geometric validation of a returned loop: distance tolerance, U-turns, backtracking,
repeated segments, angular spread around the start, and road-class mix.
Produces typed issues plus a 0-1 quality score.
"""

import math
from typing import Dict, List, Optional, Sequence, Tuple

from .config import BACKTRACK_EXCLUDE_M, BACKTRACK_GRID_DEG, BACKTRACK_MIN_GAP_M, EngineConfig
from .geometry import angle_between, bearing_deg, cumulative_distances_m, grid_cell, haversine_m, path_length_m
from .models import (
    Coordinate,
    IssueKind,
    RoadClass,
    RoadClassSegment,
    Severity,
    ValidationIssue,
    ValidationReport,
)

# Checked in this order: a label matching any highway keyword is HIGHWAY even if it also says "trail".
HIGHWAY_KEYWORDS = (
    "motorway", "trunk", "primary", "highway", "hwy",
    "expressway", "freeway", "interstate", "turnpike",
)
TRAIL_KEYWORDS = ("trail", "track", "bridleway", "hiking")
PATH_KEYWORDS = ("path", "footway", "pedestrian", "steps", "cycleway", "walkway", "sidewalk")

SECTOR_DEG = 30
START_RADIUS_DEG = 0.0001  # points this close to the start carry no bearing information


def classify_road_class(label: Optional[str]) -> RoadClass:
    """Map a free-form backend label (road_class value or step text) onto RoadClass."""
    text = (label or "").strip().lower()
    if not text:
        return RoadClass.OTHER
    if any(k in text for k in HIGHWAY_KEYWORDS):
        return RoadClass.HIGHWAY
    if any(k in text for k in TRAIL_KEYWORDS):
        return RoadClass.TRAIL
    if any(k in text for k in PATH_KEYWORDS):
        return RoadClass.PATH
    return RoadClass.OTHER


def road_class_breakdown(
    coords: Sequence[Coordinate], segments: Sequence[RoadClassSegment]
) -> Dict[RoadClass, float]:
    """Percentage (0-100) of path length per RoadClass; unlabelled length counts as OTHER."""
    total = path_length_m(coords)
    out = {rc: 0.0 for rc in RoadClass}
    if total <= 0:
        return out
    labelled = 0.0
    last = len(coords) - 1
    for seg in segments:
        start = max(0, min(seg.start_idx, last))
        end = max(0, min(seg.end_idx, last))
        if end <= start:
            continue
        length = path_length_m(coords[start:end + 1])
        out[classify_road_class(seg.label)] += length
        labelled += length
    out[RoadClass.OTHER] += max(0.0, total - labelled)
    return {rc: 100.0 * v / total for rc, v in out.items()}


def _window(coords: Sequence[Coordinate], exclude_m: float) -> Tuple[int, int]:
    """Index range skipping the first/last exclude_m of the route."""
    dists = cumulative_distances_m(coords)
    total = dists[-1]
    start, end = 0, len(coords) - 1
    for i, d in enumerate(dists):
        if d >= exclude_m:
            start = i
            break
    for i in range(len(dists) - 1, -1, -1):
        if total - dists[i] >= exclude_m:
            end = i
            break
    if end <= start + 5:
        return 0, len(coords) - 1
    return start, end


def _directed_edges(
    coords: Sequence[Coordinate], grid_deg: float, start: int, end: int
) -> List[Tuple[tuple, tuple, int]]:
    edges = []
    for i in range(start, end):
        g1 = grid_cell(coords[i], grid_deg)
        g2 = grid_cell(coords[i + 1], grid_deg)
        if g1 is None or g2 is None or g1 == g2:
            continue
        edges.append((g1, g2, i))
    return edges


def backtrack_ratio(
    coords: Sequence[Coordinate],
    grid_deg: float = BACKTRACK_GRID_DEG,
    exclude_m: float = BACKTRACK_EXCLUDE_M,
    min_gap_m: float = BACKTRACK_MIN_GAP_M,
) -> float:
    """
    Fraction of distinct directed grid edges whose reverse also appears at least
    min_gap_m further along (or back along) the path.
    """
    if len(coords) < 10:
        return 0.0
    start, end = _window(coords, exclude_m)
    dists = cumulative_distances_m(coords)
    # (first, last) path distance at which each directed edge is traversed
    seen: Dict[Tuple[tuple, tuple], Tuple[float, float]] = {}
    for a, b, i in _directed_edges(coords, grid_deg, start, end):
        d = dists[i]
        lo, hi = seen.get((a, b), (d, d))
        seen[(a, b)] = (min(lo, d), max(hi, d))
    if not seen:
        return 0.0
    reversed_count = 0
    for (a, b), (lo, hi) in seen.items():
        other = seen.get((b, a))
        if other is not None and max(other[1] - lo, hi - other[0]) >= min_gap_m:
            reversed_count += 1
    return reversed_count / len(seen)


def repeated_segment_locations(
    coords: Sequence[Coordinate],
    grid_deg: float = BACKTRACK_GRID_DEG,
    exclude_m: float = BACKTRACK_EXCLUDE_M,
    min_gap_m: float = BACKTRACK_MIN_GAP_M,
) -> List[Coordinate]:
    """One location per distinct grid edge traversed again (either direction) at least min_gap_m later."""
    if len(coords) < 10:
        return []
    start, end = _window(coords, exclude_m)
    dists = cumulative_distances_m(coords)
    first_at: Dict[Tuple[tuple, tuple], float] = {}
    flagged = set()
    out = []
    for a, b, i in _directed_edges(coords, grid_deg, start, end):
        key = (a, b) if a <= b else (b, a)
        if key not in first_at:
            first_at[key] = dists[i]
        elif key not in flagged and dists[i] - first_at[key] >= min_gap_m:
            flagged.add(key)
            out.append(coords[i])
    return out


def angular_spread(coords: Sequence[Coordinate], start: Coordinate) -> float:
    """Degrees of compass (in 30 degree sectors) covered by route points as seen from start."""
    if len(coords) < 5:
        return 0.0
    sectors = set()
    bearings = 0
    for p in coords:
        if abs(p.lat - start.lat) < START_RADIUS_DEG and abs(p.lng - start.lng) < START_RADIUS_DEG:
            continue
        b = bearing_deg(start, p)
        if not math.isfinite(b):
            continue
        bearings += 1
        sectors.add(int(b // SECTOR_DEG) % (360 // SECTOR_DEG))
    if bearings < 3:
        return 0.0
    return float(len(sectors) * SECTOR_DEG)


def uturn_locations(coords: Sequence[Coordinate], threshold_deg: float = 160.0) -> List[Coordinate]:
    out = []
    for i in range(1, len(coords) - 1):
        # zero-length hops carry no heading
        if haversine_m(coords[i - 1], coords[i]) <= 0 or haversine_m(coords[i], coords[i + 1]) <= 0:
            continue
        if angle_between(coords[i - 1], coords[i], coords[i + 1]) > threshold_deg:
            out.append(coords[i])
    return out


def distance_issue(
    actual_m: float, target_m: float, location: Coordinate, config: EngineConfig
) -> Optional[ValidationIssue]:
    if target_m <= 0:
        return None
    error = abs(actual_m - target_m) / target_m
    if error <= config.distance_tolerance:
        return None
    severity = Severity.HIGH if error > config.distance_gross_error else Severity.MEDIUM
    return ValidationIssue(IssueKind.DISTANCE_MISMATCH, location, severity)


def quality_score(issues: Sequence[ValidationIssue]) -> float:
    high = sum(1 for i in issues if i.severity == Severity.HIGH)
    medium = sum(1 for i in issues if i.severity == Severity.MEDIUM)
    return max(0.0, 1.0 - (high * 0.5 + medium * 0.2))


def validate(
    coords: Sequence[Coordinate],
    actual_distance_m: float,
    target_m: float,
    road_class_segments: Optional[Sequence[RoadClassSegment]] = None,
    config: Optional[EngineConfig] = None,
    start: Optional[Coordinate] = None,
) -> ValidationReport:
    cfg = config or EngineConfig()
    issues: List[ValidationIssue] = []
    if len(coords) < 3:
        return ValidationReport(issues=issues, quality_score=0.0)
    start = start or coords[0]

    dist_issue = distance_issue(actual_distance_m, target_m, start, cfg)
    if dist_issue is not None:
        issues.append(dist_issue)

    for loc in uturn_locations(coords, cfg.uturn_angle_deg):
        issues.append(ValidationIssue(IssueKind.U_TURN, loc, Severity.HIGH))

    for loc in repeated_segment_locations(
        coords, cfg.backtrack_grid_deg, cfg.backtrack_exclude_m, cfg.backtrack_min_gap_m
    ):
        issues.append(ValidationIssue(IssueKind.REPEATED_SEGMENT, loc, Severity.MEDIUM))

    highway_pct = trail_pct = terrain = 0.0
    if road_class_segments:
        breakdown = road_class_breakdown(coords, road_class_segments)
        highway_pct = breakdown[RoadClass.HIGHWAY]
        trail_pct = breakdown[RoadClass.TRAIL] + breakdown[RoadClass.PATH]
        terrain = min(1.0, trail_pct / 100.0)
        severity = None
        if highway_pct > cfg.highway_high_pct:
            severity = Severity.HIGH
        elif highway_pct > cfg.highway_medium_pct:
            severity = Severity.MEDIUM
        if severity is not None:
            first = next(
                s for s in road_class_segments if classify_road_class(s.label) == RoadClass.HIGHWAY
            )
            loc = coords[max(0, min(first.start_idx, len(coords) - 1))]
            issues.append(ValidationIssue(IssueKind.HIGHWAY, loc, severity))

    return ValidationReport(
        issues=issues,
        quality_score=quality_score(issues),
        backtrack_ratio=backtrack_ratio(
            coords, cfg.backtrack_grid_deg, cfg.backtrack_exclude_m, cfg.backtrack_min_gap_m
        ),
        angular_spread_deg=angular_spread(coords, start),
        highway_pct=highway_pct,
        trail_pct=trail_pct,
        terrain_score=terrain,
    )


def is_accepted(report: ValidationReport, config: Optional[EngineConfig] = None) -> bool:
    cfg = config or EngineConfig()
    return report.high_count == 0 and report.medium_count <= cfg.max_medium_issues


def is_genuine_circuit(report: ValidationReport, config: Optional[EngineConfig] = None) -> bool:
    """A loop rather than an out-and-back."""
    cfg = config or EngineConfig()
    return (
        report.angular_spread_deg >= cfg.min_angular_spread_deg
        and report.backtrack_ratio <= cfg.max_backtrack_ratio
    )

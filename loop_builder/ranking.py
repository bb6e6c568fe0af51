"""
Diversity filter, composite scoring and difficulty labels for accepted candidates.
"""

from typing import List, Optional, Sequence, Set, Tuple

from .config import HILLY_GAIN_PER_KM, MAX_OVERLAP, OVERLAP_GRID_DEG
from .geometry import grid_cell
from .models import Coordinate, Difficulty, RoadClass, RoadClassSegment, RouteCandidate
from .validation import classify_road_class

# ---------------------------------------------------------------------------
# Diversity
# ---------------------------------------------------------------------------


def undirected_edges(coords: Sequence[Coordinate], grid_deg: float = OVERLAP_GRID_DEG) -> Set[Tuple[tuple, tuple]]:
    edges = set()
    for i in range(len(coords) - 1):
        a = grid_cell(coords[i], grid_deg)
        b = grid_cell(coords[i + 1], grid_deg)
        if a is None or b is None or a == b:
            continue
        edges.add((a, b) if a <= b else (b, a))
    return edges


def overlap_ratio(
    path_a: Sequence[Coordinate],
    path_b: Sequence[Coordinate],
    grid_deg: float = OVERLAP_GRID_DEG,
) -> float:
    """|A & B| / min(|A|, |B|) over undirected grid edges; 0.0 if either path has no edges."""
    a = undirected_edges(path_a, grid_deg)
    b = undirected_edges(path_b, grid_deg)
    if not a or not b:
        return 0.0
    return len(a & b) / min(len(a), len(b))


def is_too_similar(
    coords: Sequence[Coordinate],
    accepted: Sequence[RouteCandidate],
    max_overlap: float = MAX_OVERLAP,
    grid_deg: float = OVERLAP_GRID_DEG,
) -> bool:
    return any(
        overlap_ratio(coords, other.path.coordinates, grid_deg) > max_overlap
        for other in accepted
    )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def score(candidate: RouteCandidate, prefer_trails: bool = False) -> float:
    q = candidate.quality_score
    third = candidate.terrain_score if prefer_trails else q
    return q * 0.5 + candidate.popularity_score * 0.3 + third * 0.2


def rank(
    candidates: Sequence[RouteCandidate],
    k: int,
    prefer_trails: bool = False,
) -> List[RouteCandidate]:
    """Sort by score, best first, and keep the top k. Ties keep acceptance order."""
    ordered = sorted(candidates, key=lambda c: score(c, prefer_trails), reverse=True)
    return ordered[:max(0, k)]


def is_hilly(distance_km: float, elevation_gain_m: float, threshold: float = HILLY_GAIN_PER_KM) -> bool:
    if distance_km <= 0:
        return False
    return elevation_gain_m / distance_km > threshold


# ---------------------------------------------------------------------------
# Difficulty
# ---------------------------------------------------------------------------


def contains_major_roads(segments: Optional[Sequence[RoadClassSegment]]) -> bool:
    return any(classify_road_class(s.label) == RoadClass.HIGHWAY for s in segments or [])


def assign_difficulty(backtrack: float, has_major_roads: bool, elevation_gain_m: float = 0.0) -> Difficulty:
    if elevation_gain_m > 200:
        return Difficulty.HARD
    if backtrack <= 0.25 and not has_major_roads and elevation_gain_m <= 100:
        return Difficulty.EASY
    return Difficulty.MODERATE

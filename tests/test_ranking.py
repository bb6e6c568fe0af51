import pytest

from loop_builder.builder import merge_attempt
from loop_builder.config import EngineConfig
from loop_builder.models import (
    AttemptResult,
    Coordinate,
    Difficulty,
    FailureReason,
    PathResult,
    RoadClassSegment,
    RouteCandidate,
)
from loop_builder.ranking import (
    assign_difficulty,
    contains_major_roads,
    is_hilly,
    is_too_similar,
    overlap_ratio,
    rank,
    score,
)

G = 0.0005  # one overlap grid cell
LAT0, LNG0 = 40.0, -73.0


def _north(n, lat0=LAT0, lng0=LNG0):
    return [Coordinate(lat0 + i * G, lng0) for i in range(n + 1)]


def _candidate(coords, label="A", quality=1.0, popularity=0.1, terrain=0.0):
    return RouteCandidate(
        path=PathResult(coords, 3000.0, 900.0),
        issues=[],
        quality_score=quality,
        backtrack_ratio=0.0,
        angular_spread_deg=300.0,
        terrain_score=terrain,
        template_label=label,
        popularity_score=popularity,
    )


def test_overlap_with_itself_is_one():
    path = _north(20)
    assert overlap_ratio(path, path) == 1.0


def test_overlap_of_disjoint_paths_is_zero():
    a = _north(20)
    b = _north(20, lng0=LNG0 + 50 * G)
    assert overlap_ratio(a, b) == 0.0


def test_overlap_ignores_direction():
    path = _north(20)
    assert overlap_ratio(path, list(reversed(path))) == 1.0


def test_overlap_empty_path():
    assert overlap_ratio([], _north(5)) == 0.0


def _forty_five_percent_pair():
    a = _north(20)  # 20 edges
    shared = _north(9)  # first 9 edges of a
    turn = [Coordinate(LAT0 + 9 * G, LNG0 + j * G) for j in range(1, 12)]  # 11 new edges
    return a, shared + turn


def test_forty_five_percent_overlap_is_rejected():
    a, b = _forty_five_percent_pair()
    assert overlap_ratio(a, b) == pytest.approx(0.45)
    assert is_too_similar(b, [_candidate(a)])


def test_merge_rejects_near_duplicate_and_keeps_accepted_unchanged():
    a, b = _forty_five_percent_pair()
    cfg = EngineConfig()
    accepted, first = merge_attempt((), AttemptResult.success("A", _candidate(a, "A")), cfg)
    assert first.ok and len(accepted) == 1
    after, second = merge_attempt(accepted, AttemptResult.success("B", _candidate(b, "B")), cfg)
    assert after == accepted
    assert second.reason == FailureReason.DUPLICATE


def test_merge_judges_distinct_geometry_not_label():
    cfg = EngineConfig()
    accepted, _ = merge_attempt((), AttemptResult.success("A", _candidate(_north(20), "A")), cfg)
    far = _north(20, lng0=LNG0 + 50 * G)
    after, result = merge_attempt(accepted, AttemptResult.success("A", _candidate(far, "A")), cfg)
    assert len(after) == 2
    assert result.ok


def test_merge_passes_failures_through():
    failure = AttemptResult.failure("A", FailureReason.API, "timeout")
    accepted, result = merge_attempt((), failure, EngineConfig())
    assert accepted == ()
    assert result is failure


def test_score_weights():
    c = _candidate(_north(3), quality=0.8, popularity=0.5, terrain=0.9)
    assert score(c, prefer_trails=False) == pytest.approx(0.8 * 0.5 + 0.5 * 0.3 + 0.8 * 0.2)
    assert score(c, prefer_trails=True) == pytest.approx(0.8 * 0.5 + 0.5 * 0.3 + 0.9 * 0.2)


def test_rank_sorts_and_truncates():
    low = _candidate(_north(3), "low", quality=0.4)
    mid = _candidate(_north(3), "mid", quality=0.7)
    high = _candidate(_north(3), "high", quality=1.0)
    ranked = rank([low, high, mid], 2)
    assert [c.template_label for c in ranked] == ["high", "mid"]


def test_rank_prefers_trails_when_asked():
    road = _candidate(_north(3), "road", quality=1.0, terrain=0.0)
    trail = _candidate(_north(3), "trail", quality=0.8, terrain=1.0)
    assert rank([road, trail], 2, prefer_trails=True)[0].template_label == "trail"
    assert rank([road, trail], 2, prefer_trails=False)[0].template_label == "road"


def test_difficulty_rules():
    assert assign_difficulty(0.1, False, 0) == Difficulty.EASY
    assert assign_difficulty(0.3, False, 0) == Difficulty.MODERATE
    assert assign_difficulty(0.1, True, 0) == Difficulty.MODERATE
    assert assign_difficulty(0.1, False, 150) == Difficulty.MODERATE
    assert assign_difficulty(0.1, False, 250) == Difficulty.HARD


def test_major_roads_from_segment_labels():
    assert contains_major_roads([RoadClassSegment(0, 3, "Merge onto Interstate 90")])
    assert not contains_major_roads([RoadClassSegment(0, 3, "footway")])
    assert not contains_major_roads(None)


def test_is_hilly():
    assert is_hilly(4.0, 120.0)
    assert not is_hilly(4.0, 80.0)
    assert not is_hilly(0.0, 80.0)


def test_overlap_skips_non_finite_points():
    path = _north(20)
    broken = path[:10] + [Coordinate(float("nan"), LNG0)] + path[10:]
    assert overlap_ratio(broken, path) == 1.0
    assert overlap_ratio([Coordinate(float("nan"), LNG0)] * 3, path) == 0.0

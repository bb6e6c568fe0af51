"""
Loop route engine.
Start point + target distance -> a few ranked, geometrically sound, mutually distinct loops.
Uses: requests (via backends), numpy (elevation), polyline + geopy (geometry), sqlalchemy (popularity).
"""

import math
import random
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import requests

from .backends import GoogleDirectionsClient, GoogleElevationClient, GraphHopperClient
from .calibration import CalibrationTrace, DistanceCalibrator, relative_error
from .config import MAX_TOP_K, MODE_ROUND_TRIP, MODE_TEMPLATE, EngineConfig
from .elevation import ElevationBackend, profile_for_path
from .ephemeral_store import Throttle, TTLStore
from .errors import ExternalApiError, NoValidRouteError
from .geometry import haversine_m
from .models import (
    AttemptResult,
    Coordinate,
    FailureReason,
    GeneratedRoute,
    RouteCandidate,
)
from .popularity import PopularityStore, SqlitePopularityStore, route_popularity_score
from .ranking import assign_difficulty, contains_major_roads, is_hilly, is_too_similar, rank, score
from .requester import PathRequester, RoundTripParams
from .templates import LoopTemplate, generate_waypoints, shuffled_templates
from .utils import get_logger
from .validation import is_accepted, is_genuine_circuit, validate

logger = get_logger("builder")

ACTIVITY_TYPES = ("run", "walk", "hike")
MAX_SEED = 1_000_000

# Pace used when the backend gives no duration: 6 min/km plus 1 min per 100 m climbed.
FALLBACK_MIN_PER_KM = 6.0
FALLBACK_MIN_PER_100M_CLIMB = 1.0


@dataclass(frozen=True)
class AttemptPlan:
    """One unit of work: a template (waypoint mode) or a seed (round-trip mode)."""

    label: str
    template: Optional[LoopTemplate] = None
    seed: Optional[int] = None


# ---------------------------------------------------------------------------
# Attempt planning
# ---------------------------------------------------------------------------


def plan_attempts(mode: str, max_attempts: int, rng: random.Random) -> List[AttemptPlan]:
    if mode == MODE_ROUND_TRIP:
        seeds = rng.sample(range(1, MAX_SEED), max_attempts)
        return [AttemptPlan(label=f"Round Trip {s}", seed=s) for s in seeds]
    # each template contributes at most one attempt
    return [AttemptPlan(label=t.name, template=t) for t in shuffled_templates(rng)[:max_attempts]]


def merge_attempt(
    accepted: Tuple[RouteCandidate, ...],
    result: AttemptResult,
    config: EngineConfig,
) -> Tuple[Tuple[RouteCandidate, ...], AttemptResult]:
    """
    Fold one attempt into the accepted set. Returns the new accepted tuple and the
    (possibly downgraded) result; a near-duplicate success becomes a DUPLICATE failure.
    """
    if not result.ok:
        return accepted, result
    cand = result.candidate
    if is_too_similar(cand.path.coordinates, accepted, config.max_overlap, config.overlap_grid_deg):
        return accepted, AttemptResult.failure(result.label, FailureReason.DUPLICATE, "overlaps an accepted route")
    return accepted + (cand,), result


def safety_check(cand: RouteCandidate, origin: Coordinate, target_m: float, config: EngineConfig) -> Optional[FailureReason]:
    coords = cand.path.coordinates
    if not coords:
        return FailureReason.CLOSURE
    if haversine_m(coords[0], coords[-1]) >= config.closure_epsilon_m:
        return FailureReason.CLOSURE
    if haversine_m(coords[0], origin) >= config.closure_epsilon_m:
        return FailureReason.CLOSURE
    if relative_error(cand.path.distance_m, target_m) > config.distance_tolerance:
        return FailureReason.DISTANCE
    return None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class LoopRouteEngine:
    """
    Drives the attempt loop. Stateless between generate() calls; the only shared
    resources are the injected requester/backends and the read-only popularity store.
    """

    def __init__(
        self,
        requester: PathRequester,
        config: Optional[EngineConfig] = None,
        popularity_store: Optional[PopularityStore] = None,
        elevation: Optional[ElevationBackend] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.requester = requester
        self.config = config or EngineConfig()
        self.popularity_store = popularity_store
        self.elevation = elevation
        self.rng = rng or random.Random()
        self._clock = clock

    # -- single attempt (runs on a worker thread) ---------------------------

    def _path_for(
        self,
        plan: AttemptPlan,
        origin: Coordinate,
        target_m: float,
        profile: str,
        cancel: Optional[threading.Event] = None,
    ) -> Union[AttemptResult, Tuple[object, List[Coordinate]]]:
        cfg = self.config
        if plan.template is not None:
            base_radius_km = target_m / 1000.0 / cfg.base_radius_divisor
            waypoints = generate_waypoints(origin, base_radius_km, plan.template)
            trace = CalibrationTrace()
            calibrated = DistanceCalibrator(self.requester, cfg).calibrate(
                origin, waypoints, target_m, trace, cancel=cancel
            )
            if calibrated is None:
                if trace.api_errors and len(trace.api_errors) == len(trace.iterations):
                    return AttemptResult.failure(plan.label, FailureReason.API, trace.api_errors[-1])
                return AttemptResult.failure(plan.label, FailureReason.CALIBRATION, trace.state.value)
            return calibrated.path, calibrated.waypoints
        try:
            path = self.requester.request_path(origin, RoundTripParams(plan.seed, target_m, profile))
        except ExternalApiError as e:
            logger.warning("%s: %s", plan.label, e)
            return AttemptResult.failure(plan.label, FailureReason.API, str(e))
        return path, []

    def run_attempt(
        self,
        plan: AttemptPlan,
        origin: Coordinate,
        target_m: float,
        profile: str = "foot",
        cancel: Optional[threading.Event] = None,
    ) -> AttemptResult:
        cfg = self.config
        if cancel is not None and cancel.is_set():
            return AttemptResult.failure(plan.label, FailureReason.API, "cancelled")
        got = self._path_for(plan, origin, target_m, profile, cancel)
        if isinstance(got, AttemptResult):
            return got
        path, waypoints = got

        # cheap reject before the full validation pass
        err = relative_error(path.distance_m, target_m)
        if err > cfg.distance_tolerance:
            return AttemptResult.failure(
                plan.label, FailureReason.DISTANCE, f"{path.distance_m:.0f}m vs {target_m:.0f}m"
            )

        report = validate(
            path.coordinates,
            path.distance_m,
            target_m,
            path.road_class_segments,
            config=cfg,
            start=origin,
        )
        if not is_accepted(report, cfg):
            kinds = ",".join(sorted({i.kind.value for i in report.issues}))
            return AttemptResult.failure(plan.label, FailureReason.VALIDATION, kinds)
        if not is_genuine_circuit(report, cfg):
            return AttemptResult.failure(
                plan.label,
                FailureReason.NOT_CIRCUIT,
                f"spread={report.angular_spread_deg:.0f} backtrack={report.backtrack_ratio:.2f}",
            )
        return AttemptResult.success(
            plan.label,
            RouteCandidate(
                path=path,
                issues=report.issues,
                quality_score=report.quality_score,
                backtrack_ratio=report.backtrack_ratio,
                angular_spread_deg=report.angular_spread_deg,
                terrain_score=report.terrain_score,
                template_label=plan.label,
                waypoints=list(waypoints),
                highway_pct=report.highway_pct,
            ),
        )

    # -- orchestration ----------------------------------------------------

    def collect_candidates(
        self,
        origin: Coordinate,
        target_m: float,
        plans: Sequence[AttemptPlan],
        k: int,
        profile: str,
        deadline_s: float,
    ) -> Tuple[Tuple[RouteCandidate, ...], Dict[str, int]]:
        """
        Run attempts on a bounded pool until k diverse candidates are accepted or time runs out.
        Attempts still in flight on return are told to stop before their next backend call.
        """
        accepted: Tuple[RouteCandidate, ...] = ()
        failures: Dict[str, int] = {}
        deadline = self._clock() + deadline_s
        cancel = threading.Event()
        pool = ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="loop-attempt")
        futures = {pool.submit(self.run_attempt, p, origin, target_m, profile, cancel): p for p in plans}
        try:
            for fut in as_completed(futures, timeout=max(0.0, deadline - self._clock())):
                plan = futures[fut]
                try:
                    result = fut.result()
                except Exception as e:
                    logger.warning("%s raised %r", plan.label, e)
                    result = AttemptResult.failure(plan.label, FailureReason.API, repr(e))
                accepted, result = merge_attempt(accepted, result, self.config)
                if result.ok:
                    c = result.candidate
                    logger.info(
                        "Accepted %s: %.2fkm, backtrack %.2f, spread %.0f deg",
                        result.label, c.path.distance_m / 1000, c.backtrack_ratio, c.angular_spread_deg,
                    )
                else:
                    failures[result.reason.value] = failures.get(result.reason.value, 0) + 1
                    logger.info("Rejected %s (%s) %s", result.label, result.reason.value, result.detail)
                if len(accepted) >= k:
                    break
        except FuturesTimeout:
            logger.warning("Deadline of %.0fs reached with %d route(s) accepted", deadline_s, len(accepted))
        finally:
            cancel.set()
            pool.shutdown(wait=False, cancel_futures=True)
        return accepted, failures

    def generate(
        self,
        origin: Coordinate,
        target_distance_km: float,
        prefer_trails: bool = False,
        max_attempts: Optional[int] = None,
        avoid_hills: bool = False,
        activity_type: str = "run",
        top_k: Optional[int] = None,
        deadline_s: Optional[float] = None,
    ) -> List[GeneratedRoute]:
        """
        Return up to top_k ranked loops starting and ending at origin.
        Raises NoValidRouteError when nothing survives; ValueError on bad input.
        """
        cfg = self.config
        if not (isinstance(target_distance_km, (int, float)) and math.isfinite(target_distance_km)):
            raise ValueError("target_distance_km must be a finite number")
        if target_distance_km <= 0:
            raise ValueError("target_distance_km must be positive")
        if not (-90 <= origin.lat <= 90 and -180 <= origin.lng <= 180):
            raise ValueError("origin is outside valid lat/lng ranges")
        activity_type = (activity_type or "run").lower()
        if activity_type not in ACTIVITY_TYPES:
            raise ValueError(f"activity_type must be one of {ACTIVITY_TYPES}")
        k = top_k if top_k is not None else cfg.top_k
        if k < 1:
            raise ValueError("top_k must be at least 1")
        k = min(k, MAX_TOP_K)
        attempts = max_attempts if max_attempts is not None else cfg.max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        target_m = target_distance_km * 1000.0
        profile = "hike" if (prefer_trails or activity_type == "hike") else "foot"
        plans = plan_attempts(cfg.mode, attempts, self.rng)
        logger.info(
            "Generating %.1fkm %s loop at (%.5f, %.5f): %d attempts, mode=%s",
            target_distance_km, activity_type, origin.lat, origin.lng, len(plans), cfg.mode,
        )

        accepted, failures = self.collect_candidates(
            origin, target_m, plans, k, profile, deadline_s if deadline_s is not None else cfg.deadline_s
        )

        survivors = []
        for cand in accepted:
            reason = safety_check(cand, origin, target_m, cfg)
            if reason is None:
                survivors.append(cand)
            else:
                failures[reason.value] = failures.get(reason.value, 0) + 1
                logger.warning("Dropped %s in final check (%s)", cand.template_label, reason.value)

        if not survivors:
            logger.info("No valid route after %d attempts: %s", len(plans), failures)
            raise NoValidRouteError(attempts=len(plans), failure_counts=failures)

        for cand in survivors:
            cand.popularity_score = route_popularity_score(
                cand.path.coordinates, self.popularity_store, cfg.default_popularity
            )
        ranked = rank(survivors, k, prefer_trails)
        routes = [self._to_route(c, score(c, prefer_trails), activity_type) for c in ranked]
        if avoid_hills:
            # stable: score order is kept within the flat and hilly groups
            routes.sort(key=lambda r: is_hilly(r.distance_km, r.elevation_gain_m, cfg.hilly_gain_per_km))
        logger.info("Returning %d route(s)", len(routes))
        return routes

    def _to_route(self, cand: RouteCandidate, route_score: float, activity_type: str) -> GeneratedRoute:
        path = cand.path
        elev = profile_for_path(path, self.elevation)
        distance_km = path.distance_m / 1000.0
        duration_s = path.duration_s
        if duration_s <= 0:
            minutes = distance_km * FALLBACK_MIN_PER_KM + elev.gain_m / 100.0 * FALLBACK_MIN_PER_100M_CLIMB
            duration_s = minutes * 60.0
        difficulty = assign_difficulty(
            cand.backtrack_ratio, contains_major_roads(path.road_class_segments), elev.gain_m
        )
        name = cand.template_label if cand.template_label.startswith("Round Trip") else f"{cand.template_label} Route"
        if activity_type != "run":
            name = f"{name} ({activity_type.title()})"
        return GeneratedRoute(
            id=f"route_{uuid.uuid4().hex}",
            name=name,
            distance_km=distance_km,
            duration_s=duration_s,
            elevation_gain_m=elev.gain_m,
            elevation_loss_m=elev.loss_m,
            difficulty=difficulty,
            polyline=path.encoded_polyline,
            waypoints=list(cand.waypoints) or [path.coordinates[0]],
            turn_instructions=list(path.steps),
            backtrack_ratio=cand.backtrack_ratio,
            angular_spread_deg=cand.angular_spread_deg,
            template_label=cand.template_label,
            description=f"{distance_km:.1f} km {activity_type} loop with {elev.gain_m:.0f} m of climbing",
            quality_score=cand.quality_score,
            popularity_score=cand.popularity_score,
            terrain_score=cand.terrain_score,
            score=route_score,
            max_gradient_pct=elev.max_gradient_pct,
            max_gradient_deg=elev.max_gradient_deg,
        )


def build_engine(
    config: EngineConfig,
    store: Optional[TTLStore] = None,
    popularity_store: Optional[PopularityStore] = None,
    session: Optional[requests.Session] = None,
    rng: Optional[random.Random] = None,
) -> LoopRouteEngine:
    """
    Wire HTTP clients for config.mode. Raises ConfigurationError when the
    credentials that mode needs are missing.
    """
    config.check()
    store = store if store is not None else TTLStore()
    session = session or requests.Session()

    def client(cls, key):
        throttle = Throttle(store, cls.service, config.min_call_interval_s)
        return cls(key, timeout_s=config.request_timeout_s, session=session, throttle=throttle)

    if config.mode == MODE_TEMPLATE:
        requester = PathRequester(directions=client(GoogleDirectionsClient, config.google_api_key))
    else:
        requester = PathRequester(round_trip=client(GraphHopperClient, config.graphhopper_api_key))
    elevation = client(GoogleElevationClient, config.google_api_key) if config.google_api_key else None
    if popularity_store is None and config.popularity_db_url:
        popularity_store = SqlitePopularityStore(config.popularity_db_url)
    logger.info(
        "Engine ready: mode=%s, elevation=%s, popularity=%s",
        config.mode, elevation is not None, type(popularity_store).__name__ if popularity_store else None,
    )
    return LoopRouteEngine(requester, config, popularity_store, elevation, rng)

"""
Segment popularity lookups (read-only from the engine's point of view).
Segments are keyed by their endpoints floored to 4 decimal places (~11 m).
Missing segments mean "unpopular", never an error.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence

from sqlalchemy import Float, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .config import DEFAULT_POPULARITY
from .geometry import haversine_m
from .models import Coordinate
from .utils import get_logger

logger = get_logger("popularity")

_LOOKUP_CHUNK = 500


@dataclass(frozen=True)
class SegmentUsage:
    run_count: int
    unique_users: int = 0
    avg_rating: Optional[float] = None


class PopularityStore(Protocol):
    def lookup(self, keys: Sequence[str]) -> Dict[str, SegmentUsage]:
        ...


def segment_key(p1: Coordinate, p2: Coordinate) -> str:
    def q(v: float) -> int:
        return math.floor(v * 10000)

    return f"{q(p1.lat)},{q(p1.lng)}->{q(p2.lat)},{q(p2.lng)}"


def route_segment_keys(coords: Sequence[Coordinate]) -> List[str]:
    return [segment_key(coords[i], coords[i + 1]) for i in range(len(coords) - 1)]


def segment_score(usage: Optional[SegmentUsage], default: float = DEFAULT_POPULARITY) -> float:
    if usage is None:
        return default
    rating = usage.avg_rating if usage.avg_rating is not None else 3.0
    return (usage.run_count * 0.6 + rating * 0.4) / 50.0


def route_popularity_score(
    coords: Sequence[Coordinate],
    store: Optional[PopularityStore],
    default: float = DEFAULT_POPULARITY,
) -> float:
    """Distance-weighted mean of segment scores, capped at 1.0."""
    if store is None or len(coords) < 2:
        return default
    keys = route_segment_keys(coords)
    try:
        rows = store.lookup(sorted(set(keys)))
    except Exception as e:
        logger.warning("Popularity lookup failed, treating route as unpopular: %s", e)
        return default
    if not rows:
        return default
    total_score = 0.0
    total_distance = 0.0
    for i, key in enumerate(keys):
        d = haversine_m(coords[i], coords[i + 1])
        total_score += segment_score(rows.get(key), default) * d
        total_distance += d
    if total_distance <= 0:
        return default
    return min(total_score / total_distance, 1.0)


class InMemoryPopularityStore:
    def __init__(self, rows: Optional[Dict[str, SegmentUsage]] = None):
        self._rows: Dict[str, SegmentUsage] = dict(rows or {})

    def record(self, key: str, usage: SegmentUsage) -> None:
        self._rows[key] = usage

    def record_route(self, coords: Sequence[Coordinate], usage: SegmentUsage) -> None:
        for key in route_segment_keys(coords):
            self._rows[key] = usage

    def lookup(self, keys: Sequence[str]) -> Dict[str, SegmentUsage]:
        return {k: self._rows[k] for k in keys if k in self._rows}


class Base(DeclarativeBase):
    pass


class SegmentPopularity(Base):
    __tablename__ = "segment_popularity"

    segment_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    run_count: Mapped[int] = mapped_column(nullable=False, default=0)
    unique_users: Mapped[int] = mapped_column(nullable=False, default=0)
    avg_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class SqlitePopularityStore:
    """SQLAlchemy-backed store over the segment_popularity table."""

    def __init__(self, db_url: str):
        self._engine = create_engine(db_url, echo=False)
        self._Session = sessionmaker(self._engine, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(self._engine)

    def record(self, key: str, usage: SegmentUsage) -> None:
        """Store or update usage for one segment (used by sync jobs and fixtures)."""
        with self._Session() as session:
            row = session.get(SegmentPopularity, key)
            if row:
                row.run_count = usage.run_count
                row.unique_users = usage.unique_users
                row.avg_rating = usage.avg_rating
            else:
                session.add(
                    SegmentPopularity(
                        segment_key=key,
                        run_count=usage.run_count,
                        unique_users=usage.unique_users,
                        avg_rating=usage.avg_rating,
                    )
                )
            session.commit()

    def lookup(self, keys: Sequence[str]) -> Dict[str, SegmentUsage]:
        out: Dict[str, SegmentUsage] = {}
        keys = list(keys)
        with self._Session() as session:
            for i in range(0, len(keys), _LOOKUP_CHUNK):
                chunk = keys[i:i + _LOOKUP_CHUNK]
                stmt = select(SegmentPopularity).where(SegmentPopularity.segment_key.in_(chunk))
                for row in session.scalars(stmt):
                    out[row.segment_key] = SegmentUsage(row.run_count, row.unique_users, row.avg_rating)
        return out

    def dispose(self) -> None:
        self._engine.dispose()

from datetime import datetime
from typing import Callable, List, Optional
from sqlalchemy import and_, case, func, or_
from sqlmodel import Session, select
import logging

from collaboration_graph.config import CollaborationSettings
from collaboration_graph.data_access.database import retry_on_transient
from collaboration_graph.data_access.models.collaboration import CollaborationDetail, CollaborationPair, utc_now
from collaboration_graph.domain.errors import InvalidInputError
from collaboration_graph.domain.models.collaboration import (
    ApplyResult, CollaborationType, Collaborator, DiversityStats, PairStats, PathHop, PathResult,
    PersonYearActivity, RebuildResult, RoleFilter, SharedWork, TrendingPair, canonical_pair
)
from .job_guard import REBUILD_JOB, TREND_REFRESH_JOB
from .path_finder import Defer, PathCache, PathFinder
from .population_service import PopulationService
from .trend_engine import TrendEngine

logger = logging.getLogger(__name__)

MAX_LIMIT = 100
SIMILAR_MIN_SHARED = 2
SIMILAR_RATING_MARGIN = 0.5
HIGH_DIVERSITY = 0.7


class CollaborationService:
    """Read and write entry points of the collaboration graph."""

    def __init__(self, db_engine, settings: CollaborationSettings, clock: Callable[[], datetime] = utc_now):
        self.db_engine = db_engine
        self.settings = settings
        self.population = PopulationService(db_engine, settings, clock=clock)
        self.job_guard = self.population.job_guard
        self.path_finder = PathFinder(
            db_engine,
            PathCache(db_engine, ttl=settings.path_cache_ttl, clock=clock),
            self.population.extractor,
        )
        self.trend_engine = TrendEngine(db_engine, settings, self.job_guard, clock=clock)

    # Reads

    @retry_on_transient
    def pair_stats(self, person_a: int, person_b: int) -> Optional[PairStats]:
        """Aggregate stats for two people, or None when they never collaborated."""
        if person_a == person_b:
            return None
        with Session(self.db_engine) as session:
            pair = self._find_pair(session, person_a, person_b)
            if pair is None or pair.collaboration_count == 0:
                return None
            return _to_stats(pair)

    @retry_on_transient
    def top_collaborators(self, person_id: int, role_filter: Optional[RoleFilter] = None,
                          limit: int = 10, min_shared: int = 1) -> List[Collaborator]:
        """Rank a person's collaborators by number of shared works.

        Without a filter the pair's overall count is used. With a filter only
        shared works of that collaboration type count, and if ``as_role`` is
        set, only those where ``person_id`` played that side. Collaborators
        with fewer than ``min_shared`` counted works are left out.
        """
        self._check_limit(limit)
        if min_shared < 1:
            raise InvalidInputError(f"min_shared must be positive, got {min_shared}")
        with Session(self.db_engine) as session:
            if role_filter is None:
                other = case(
                    (CollaborationPair.person_low_id == person_id, CollaborationPair.person_high_id),
                    else_=CollaborationPair.person_low_id,
                )
                rows = session.exec(
                    select(other.label("other_id"), CollaborationPair.collaboration_count)
                    .where(or_(CollaborationPair.person_low_id == person_id,
                               CollaborationPair.person_high_id == person_id))
                    .where(CollaborationPair.collaboration_count >= min_shared)
                    .order_by(CollaborationPair.collaboration_count.desc(), other)
                    .limit(limit)
                ).all()
            else:
                other = case(
                    (CollaborationDetail.person_low_id == person_id, CollaborationDetail.person_high_id),
                    else_=CollaborationDetail.person_low_id,
                )
                shared = func.count(func.distinct(CollaborationDetail.work_id))
                stmt = (
                    select(other.label("other_id"), shared.label("shared"))
                    .where(CollaborationDetail.collaboration_type == role_filter.collaboration_type.value)
                )
                if role_filter.as_role is None:
                    stmt = stmt.where(or_(CollaborationDetail.person_low_id == person_id,
                                          CollaborationDetail.person_high_id == person_id))
                else:
                    role = role_filter.as_role.value
                    stmt = stmt.where(or_(
                        and_(CollaborationDetail.person_low_id == person_id, CollaborationDetail.low_role == role),
                        and_(CollaborationDetail.person_high_id == person_id, CollaborationDetail.high_role == role),
                    ))
                rows = session.exec(
                    stmt.group_by(other)
                    .having(shared >= min_shared)
                    .order_by(shared.desc(), other)
                    .limit(limit)
                ).all()

        return [Collaborator(person_id=other_id, collaboration_count=count) for other_id, count in rows]

    @retry_on_transient
    def similar_collaborations(self, person_a: int, person_b: int, limit: int = 10) -> List[PairStats]:
        """Recurring performer-director pairs that resemble the given pair.

        Candidates share at least two works and at least one of them as
        performer and director. Pairs whose average rating is within
        ``SIMILAR_RATING_MARGIN`` of the given pair's rank first, then by
        shared works. An unknown pair has no similar pairs.
        """
        self._check_limit(limit)
        if person_a == person_b:
            return []
        with Session(self.db_engine) as session:
            original = self._find_pair(session, person_a, person_b)
            if original is None or original.collaboration_count == 0:
                return []

            performer_director = (
                select(CollaborationDetail.detail_id)
                .where(CollaborationDetail.person_low_id == CollaborationPair.person_low_id)
                .where(CollaborationDetail.person_high_id == CollaborationPair.person_high_id)
                .where(CollaborationDetail.collaboration_type == CollaborationType.PERFORMER_DIRECTOR.value)
                .exists()
            )
            ordering = []
            if original.avg_rating is not None:
                close_rating = case(
                    (func.abs(CollaborationPair.avg_rating - original.avg_rating) < SIMILAR_RATING_MARGIN, 1),
                    else_=0,
                )
                ordering.append(close_rating.desc())
            ordering += [
                CollaborationPair.collaboration_count.desc(),
                CollaborationPair.person_low_id,
                CollaborationPair.person_high_id,
            ]
            pairs = session.exec(
                select(CollaborationPair)
                .where(CollaborationPair.pair_id != original.pair_id)
                .where(CollaborationPair.collaboration_count >= SIMILAR_MIN_SHARED)
                .where(performer_director)
                .order_by(*ordering)
                .limit(limit)
            ).all()
            return [_to_stats(pair) for pair in pairs]

    @retry_on_transient
    def diversity_stats(self) -> DiversityStats:
        """Summary of genre and role diversity across every scored pair."""
        high_genre = func.sum(case((CollaborationPair.genre_diversity_score > HIGH_DIVERSITY, 1), else_=0))
        high_role = func.sum(case((CollaborationPair.role_diversity_score > HIGH_DIVERSITY, 1), else_=0))
        with Session(self.db_engine) as session:
            total, avg_genre, avg_role, genre_count, role_count = session.exec(
                select(
                    func.count(CollaborationPair.pair_id),
                    func.avg(CollaborationPair.genre_diversity_score),
                    func.avg(CollaborationPair.role_diversity_score),
                    high_genre,
                    high_role,
                ).where(CollaborationPair.genre_diversity_score.is_not(None))
            ).one()
        return DiversityStats(
            total=total,
            avg_genre_diversity=round(float(avg_genre), 4) if avg_genre is not None else None,
            avg_role_diversity=round(float(avg_role), 4) if avg_role is not None else None,
            high_genre_diversity=int(genre_count or 0),
            high_role_diversity=int(role_count or 0),
        )

    @retry_on_transient
    def works_together(self, person_a: int, person_b: int,
                       collaboration_type: Optional[CollaborationType] = None) -> List[SharedWork]:
        """Works two people share, newest first."""
        if person_a == person_b:
            return []
        low, high = canonical_pair(person_a, person_b)
        stmt = (
            select(CollaborationDetail)
            .where(CollaborationDetail.person_low_id == low)
            .where(CollaborationDetail.person_high_id == high)
        )
        if collaboration_type is not None:
            stmt = stmt.where(CollaborationDetail.collaboration_type == collaboration_type.value)
        with Session(self.db_engine) as session:
            rows = session.exec(
                stmt.order_by(CollaborationDetail.release_year.desc(), CollaborationDetail.work_id)
            ).all()
            return [
                SharedWork(
                    work_id=row.work_id,
                    release_year=row.release_year,
                    collaboration_type=row.collaboration_type,
                    rating=row.rating,
                    revenue=row.revenue,
                )
                for row in rows
            ]

    def shortest_path(self, person_a: int, person_b: int, max_depth: Optional[int] = None,
                      with_works: bool = False, defer: Optional[Defer] = None) -> PathResult:
        depth = self.settings.max_path_depth if max_depth is None else max_depth
        result = self.path_finder.shortest_path(person_a, person_b, depth, defer=defer)
        if with_works and result.found:
            result.connections = self.path_finder.path_connections(result.path)
        return result

    def path_connections(self, path: List[int]) -> List[PathHop]:
        return self.path_finder.path_connections(path)

    def top_trending(self, limit: int = 20) -> List[TrendingPair]:
        self._check_limit(limit)
        return self.trend_engine.top_trending(limit)

    def person_activity(self, person_id: int) -> List[PersonYearActivity]:
        return self.trend_engine.person_activity(person_id)

    # Writes

    def apply_incremental(self, work_id: int) -> ApplyResult:
        return self.population.apply_incremental(work_id)

    def rebuild_all(self, run_id: Optional[str] = None) -> RebuildResult:
        return self.population.rebuild_all(run_id=run_id)

    def refresh_trends(self, run_id: Optional[str] = None) -> int:
        return self.trend_engine.refresh(run_id=run_id)

    def reserve_rebuild(self) -> str:
        """Take the rebuild flag now so a background run can start without racing.

        Returns the run id to hand to ``rebuild_all``.
        """
        return self.job_guard.acquire(REBUILD_JOB)

    def reserve_trend_refresh(self) -> str:
        return self.job_guard.acquire(TREND_REFRESH_JOB)

    @staticmethod
    def _check_limit(limit: int) -> None:
        if limit < 1 or limit > MAX_LIMIT:
            raise InvalidInputError(f"limit must be between 1 and {MAX_LIMIT}, got {limit}")

    @staticmethod
    def _find_pair(session: Session, person_a: int, person_b: int) -> Optional[CollaborationPair]:
        low, high = canonical_pair(person_a, person_b)
        return session.exec(
            select(CollaborationPair)
            .where(CollaborationPair.person_low_id == low)
            .where(CollaborationPair.person_high_id == high)
        ).first()


def _to_stats(pair: CollaborationPair) -> PairStats:
    return PairStats(
        person_low_id=pair.person_low_id,
        person_high_id=pair.person_high_id,
        collaboration_count=pair.collaboration_count,
        first_year=pair.first_year,
        last_year=pair.last_year,
        avg_rating=pair.avg_rating,
        total_revenue=pair.total_revenue,
        types=list(pair.types or []),
        years_active=list(pair.years_active or []),
        peak_year=pair.peak_year,
        genre_diversity_score=pair.genre_diversity_score,
        role_diversity_score=pair.role_diversity_score,
    )

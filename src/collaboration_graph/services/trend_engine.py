from datetime import datetime
from typing import Callable, List, Optional
from sqlalchemy import delete, or_
from sqlmodel import Session, select
import pandas as pd
import logging

from collaboration_graph.config import CollaborationSettings
from collaboration_graph.data_access.database import retry_on_transient
from collaboration_graph.data_access.models.collaboration import CollaborationDetail, TrendSnapshot, utc_now
from collaboration_graph.domain.errors import InvalidInputError
from collaboration_graph.domain.models.collaboration import PersonYearActivity, TrendingPair
from .job_guard import JobGuard, TREND_REFRESH_JOB

logger = logging.getLogger(__name__)

PAIR_KEY = ["person_low_id", "person_high_id"]


class TrendEngine:
    """Rank pairs by recent collaboration velocity against their own history.

    Each detail row contributes a weight that halves every
    ``trend_half_life_years`` of work age. A pair's score is the summed weight
    of its details inside the recent window, divided by one plus its yearly
    rate of shared works over the baseline period before the window. Pairs
    with no detail in the window get no snapshot row.
    """

    def __init__(self, db_engine, settings: CollaborationSettings, job_guard: JobGuard,
                 clock: Callable[[], datetime] = utc_now):
        self.db_engine = db_engine
        self.window_years = settings.trend_window_years
        self.half_life_years = settings.trend_half_life_years
        self.baseline_years = settings.trend_baseline_years
        self.job_guard = job_guard
        self.clock = clock

    def refresh(self, run_id: Optional[str] = None) -> int:
        """Recompute the whole snapshot and swap it in atomically; return its row count."""
        with self.job_guard.hold(TREND_REFRESH_JOB, run_id=run_id):
            logger.info("Starting trend snapshot refresh")
            details = self._load_details()
            scores = self.score(details, self.clock().year)
            refreshed_at = self.clock()

            with Session(self.db_engine) as session:
                try:
                    # Readers keep seeing the previous snapshot until this commits
                    session.execute(delete(TrendSnapshot))
                    session.add_all(
                        TrendSnapshot(
                            person_low_id=int(row.person_low_id),
                            person_high_id=int(row.person_high_id),
                            trend_score=float(row.trend_score),
                            recent_count=int(row.recent_count),
                            baseline_count=int(row.baseline_count),
                            last_year=int(row.last_year),
                            refreshed_at=refreshed_at,
                        )
                        for row in scores.itertuples(index=False)
                    )
                    session.commit()
                except Exception as e:
                    session.rollback()
                    logger.error(f"Failed to write trend snapshot: {str(e)}")
                    raise

        logger.info(f"Trend snapshot refreshed with {len(scores)} pairs")
        return len(scores)

    def score(self, details: pd.DataFrame, reference_year: int) -> pd.DataFrame:
        """Score pairs from a frame of (person_low_id, person_high_id, work_id, release_year)."""
        columns = PAIR_KEY + ["trend_score", "recent_count", "baseline_count", "last_year"]
        if details.empty:
            return pd.DataFrame(columns=columns)

        window_start = reference_year - self.window_years
        baseline_start = window_start - self.baseline_years

        df = details.copy()
        age = (reference_year - df["release_year"]).clip(lower=0)
        df["weight"] = 0.5 ** (age / self.half_life_years)

        in_window = df["release_year"] >= window_start
        in_baseline = (df["release_year"] < window_start) & (df["release_year"] >= baseline_start)
        df["recent_weight"] = df["weight"].where(in_window, 0.0)
        df["recent_work"] = df["work_id"].where(in_window)
        df["recent_year"] = df["release_year"].where(in_window)
        df["baseline_work"] = df["work_id"].where(in_baseline)

        scored = df.groupby(PAIR_KEY).agg(
            recent_weight=("recent_weight", "sum"),
            recent_count=("recent_work", "nunique"),
            baseline_count=("baseline_work", "nunique"),
            last_year=("recent_year", "max"),
        )
        scored = scored[scored["recent_count"] > 0].copy()
        if scored.empty:
            return pd.DataFrame(columns=columns)

        scored["trend_score"] = (
            scored["recent_weight"] / (1.0 + scored["baseline_count"] / self.baseline_years)
        ).round(6)

        scored = scored.reset_index().sort_values(
            ["trend_score"] + PAIR_KEY, ascending=[False, True, True]
        )
        return scored[columns].reset_index(drop=True)

    @retry_on_transient
    def top_trending(self, limit: int) -> List[TrendingPair]:
        if limit <= 0:
            raise InvalidInputError(f"limit must be positive, got {limit}")
        with Session(self.db_engine) as session:
            rows = session.exec(
                select(TrendSnapshot)
                .order_by(TrendSnapshot.trend_score.desc(), TrendSnapshot.person_low_id, TrendSnapshot.person_high_id)
                .limit(limit)
            ).all()
        return [
            TrendingPair(
                person_low_id=row.person_low_id,
                person_high_id=row.person_high_id,
                trend_score=row.trend_score,
                recent_count=row.recent_count,
                baseline_count=row.baseline_count,
                last_year=row.last_year,
            )
            for row in rows
        ]

    @retry_on_transient
    def person_activity(self, person_id: int) -> List[PersonYearActivity]:
        """Year-by-year collaboration activity for one person, newest year first."""
        stmt = select(
            CollaborationDetail.person_low_id,
            CollaborationDetail.person_high_id,
            CollaborationDetail.work_id,
            CollaborationDetail.release_year,
            CollaborationDetail.rating,
            CollaborationDetail.revenue,
        ).where(or_(CollaborationDetail.person_low_id == person_id, CollaborationDetail.person_high_id == person_id))
        df = pd.read_sql(stmt, self.db_engine)
        if df.empty:
            return []

        df["rating"] = pd.to_numeric(df["rating"], errors="coerce")
        df["revenue"] = pd.to_numeric(df["revenue"], errors="coerce")
        df["collaborator_id"] = df["person_high_id"].where(df["person_low_id"] == person_id, df["person_low_id"])
        first_year = df.groupby("collaborator_id")["release_year"].min().rename("first_year")
        df = df.join(first_year, on="collaborator_id")

        # Ratings and revenues are per work, so aggregate them over distinct works
        works = df.drop_duplicates("work_id")
        per_year = df.groupby("release_year").agg(
            unique_collaborators=("collaborator_id", "nunique"),
            total_works=("work_id", "nunique"),
        )
        new = df[df["release_year"] == df["first_year"]].groupby("release_year")["collaborator_id"].nunique()
        ratings = works.groupby("release_year")["rating"].mean()
        revenues = works.groupby("release_year")["revenue"].sum(min_count=1)

        activity = []
        for year in sorted(per_year.index, reverse=True):
            rating = ratings.get(year)
            revenue = revenues.get(year)
            activity.append(
                PersonYearActivity(
                    year=int(year),
                    unique_collaborators=int(per_year.at[year, "unique_collaborators"]),
                    new_collaborators=int(new.get(year, 0)),
                    total_works=int(per_year.at[year, "total_works"]),
                    avg_rating=round(float(rating), 4) if pd.notna(rating) else None,
                    total_revenue=int(revenue) if pd.notna(revenue) else None,
                )
            )
        return activity

    @retry_on_transient
    def _load_details(self) -> pd.DataFrame:
        stmt = select(
            CollaborationDetail.person_low_id,
            CollaborationDetail.person_high_id,
            CollaborationDetail.work_id,
            CollaborationDetail.release_year,
        )
        return pd.read_sql(stmt, self.db_engine)

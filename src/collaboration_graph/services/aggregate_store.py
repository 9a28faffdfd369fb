from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Tuple
from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
import logging

from collaboration_graph.data_access.database import dialect_insert
from collaboration_graph.data_access.models.collaboration import CollaborationDetail, CollaborationPair, utc_now
from collaboration_graph.domain.models.collaboration import ApplyResult, CandidatePair, TYPE_PRECEDENCE
from collaboration_graph.domain.models.credit import WorkRecord
from collaboration_graph.domain.errors import InvalidInputError

logger = logging.getLogger(__name__)

GENRE_DIVERSITY_SCALE = 10.0
ROLE_DIVERSITY_SCALE = 5.0

_RANK = {collaboration_type: rank for rank, collaboration_type in enumerate(TYPE_PRECEDENCE)}


def summarize_details(details: List[CollaborationDetail]) -> Dict[str, Any]:
    """Compute a pair's aggregate columns from its full set of detail rows.

    Details are folded in work_id order so the result does not depend on the
    order in which works were applied.
    """
    details = sorted(details, key=lambda d: d.work_id)
    years = [d.release_year for d in details]
    ratings = [d.rating for d in details if d.rating is not None]
    revenues = [d.revenue for d in details if d.revenue is not None]
    types = sorted({d.collaboration_type for d in details})
    genres = {genre for d in details for genre in (d.genres or [])}

    year_counts = Counter(years)
    peak_year = min(year_counts, key=lambda y: (-year_counts[y], y)) if year_counts else None

    return {
        "collaboration_count": len({d.work_id for d in details}),
        "first_year": min(years) if years else None,
        "last_year": max(years) if years else None,
        "avg_rating": round(sum(ratings) / len(ratings), 4) if ratings else None,
        "total_revenue": sum(revenues) if revenues else None,
        "types": types,
        "years_active": sorted(year_counts),
        "peak_year": peak_year,
        "genre_diversity_score": round(min(len(genres) / GENRE_DIVERSITY_SCALE, 1.0), 2) if details else None,
        "role_diversity_score": round(min(len(types) / ROLE_DIVERSITY_SCALE, 1.0), 2) if details else None,
    }


class AggregateStore:
    """Idempotent writer for collaboration pairs and their per-work details."""

    def __init__(self, db_engine, clock: Callable[[], datetime] = utc_now):
        self.db_engine = db_engine
        self.clock = clock

    @retry(
        retry=retry_if_exception_type((IntegrityError, OperationalError)),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=5),
        reraise=True,
    )
    def apply(self, work: WorkRecord, candidates: Iterable[CandidatePair]) -> ApplyResult:
        """Apply one work's candidates in a single transaction.

        Pairs are touched in (low, high) order so concurrent writers always
        take row locks in the same sequence.
        """
        if work.release_year is None:
            raise InvalidInputError(f"Work {work.work_id} has no release year")
        ordered = self._prepare(work.work_id, candidates)
        details_written = 0
        pairs_recomputed = 0

        with Session(self.db_engine) as session:
            try:
                for candidate in ordered:
                    self._ensure_pair(session, candidate)
                    pair = self._lock_pair(session, candidate)
                    changed = self._write_detail(session, candidate, work)
                    if changed:
                        details_written += 1
                    if changed or pair.collaboration_count == 0:
                        self._recompute(session, pair)
                        pairs_recomputed += 1
                session.commit()
            except (IntegrityError, OperationalError) as e:
                session.rollback()
                logger.warning(f"Conflict applying work {work.work_id}, retrying: {str(e)}")
                raise
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to apply work {work.work_id}: {str(e)}")
                raise

        logger.info(
            f"Applied work {work.work_id}: {len(ordered)} candidates, "
            f"{details_written} details written, {pairs_recomputed} pairs recomputed"
        )
        return ApplyResult(
            work_id=work.work_id,
            candidate_pairs=len(ordered),
            details_written=details_written,
            pairs_recomputed=pairs_recomputed,
        )

    def clear(self) -> None:
        """Delete every pair and detail row."""
        with Session(self.db_engine) as session:
            session.execute(delete(CollaborationDetail))
            session.execute(delete(CollaborationPair))
            session.commit()
        logger.info("Cleared collaboration pairs and details")

    def counts(self) -> Tuple[int, int]:
        """Return (pair rows, detail rows)."""
        with Session(self.db_engine) as session:
            pairs = session.exec(select(func.count()).select_from(CollaborationPair)).one()
            details = session.exec(select(func.count()).select_from(CollaborationDetail)).one()
        return pairs, details

    @staticmethod
    def _prepare(work_id: int, candidates: Iterable[CandidatePair]) -> List[CandidatePair]:
        chosen: Dict[Tuple[int, int], CandidatePair] = {}
        for candidate in candidates:
            if candidate.person_low_id >= candidate.person_high_id:
                logger.warning(f"Skipping non-canonical pair {candidate[:2]} on work {work_id}")
                continue
            key = (candidate.person_low_id, candidate.person_high_id)
            existing = chosen.get(key)
            if existing is None or _RANK[candidate.collaboration_type] < _RANK[existing.collaboration_type]:
                chosen[key] = candidate
        return [chosen[key] for key in sorted(chosen)]

    def _ensure_pair(self, session: Session, candidate: CandidatePair) -> None:
        stmt = dialect_insert(session, CollaborationPair).values(
            person_low_id=candidate.person_low_id,
            person_high_id=candidate.person_high_id,
            collaboration_count=0,
            types=[],
            years_active=[],
            updated_at=self.clock(),
        )
        session.execute(stmt.on_conflict_do_nothing(index_elements=["person_low_id", "person_high_id"]))

    @staticmethod
    def _lock_pair(session: Session, candidate: CandidatePair) -> CollaborationPair:
        return session.exec(
            select(CollaborationPair)
            .where(CollaborationPair.person_low_id == candidate.person_low_id)
            .where(CollaborationPair.person_high_id == candidate.person_high_id)
            .with_for_update()
        ).one()

    def _write_detail(self, session: Session, candidate: CandidatePair, work: WorkRecord) -> bool:
        """Insert or refresh the (pair, work) detail; return True if anything changed."""
        values = {
            "collaboration_type": candidate.collaboration_type.value,
            "low_role": candidate.low_role.value,
            "high_role": candidate.high_role.value,
            "release_year": work.release_year,
            "rating": work.rating,
            "revenue": work.revenue,
            "genres": sorted(set(work.genres)),
        }
        stmt = dialect_insert(session, CollaborationDetail).values(
            person_low_id=candidate.person_low_id,
            person_high_id=candidate.person_high_id,
            work_id=work.work_id,
            **values,
        )
        result = session.execute(
            stmt.on_conflict_do_nothing(index_elements=["person_low_id", "person_high_id", "work_id"])
        )
        if result.rowcount:
            return True

        existing = session.exec(
            select(CollaborationDetail)
            .where(CollaborationDetail.person_low_id == candidate.person_low_id)
            .where(CollaborationDetail.person_high_id == candidate.person_high_id)
            .where(CollaborationDetail.work_id == work.work_id)
        ).one()
        stale = {key: value for key, value in values.items() if getattr(existing, key) != value}
        if not stale:
            return False

        logger.debug(f"Refreshing detail {candidate[:2]} on work {work.work_id}: {sorted(stale)}")
        for key, value in stale.items():
            setattr(existing, key, value)
        session.add(existing)
        session.flush()
        return True

    def _recompute(self, session: Session, pair: CollaborationPair) -> None:
        details = session.exec(
            select(CollaborationDetail)
            .where(CollaborationDetail.person_low_id == pair.person_low_id)
            .where(CollaborationDetail.person_high_id == pair.person_high_id)
        ).all()
        for key, value in summarize_details(list(details)).items():
            setattr(pair, key, value)
        pair.updated_at = self.clock()
        session.add(pair)
        session.flush()

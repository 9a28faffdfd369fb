from typing import Iterable, List, Optional, Set
from sqlmodel import Session, select
import logging

from collaboration_graph.data_access.database import retry_on_transient
from collaboration_graph.data_access.models.catalog import Credit, Person, Work
from collaboration_graph.domain.models.credit import CreditRecord, WorkRecord

logger = logging.getLogger(__name__)


class CreditExtractor:
    def __init__(self, db_engine):
        """Initialize the CreditExtractor over the catalog tables."""
        self.db_engine = db_engine

    @retry_on_transient
    def load_work(self, work_id: int) -> Optional[WorkRecord]:
        """Load the work-level facts needed for aggregation, or None if unknown."""
        with Session(self.db_engine) as session:
            work = session.get(Work, work_id)
            if work is None:
                return None
            return WorkRecord(
                work_id=work.work_id,
                release_year=work.release_year,
                rating=work.rating,
                revenue=work.revenue,
                genres=sorted(set(work.genres or [])),
            )

    @retry_on_transient
    def load_credits(self, work_id: int) -> List[CreditRecord]:
        """Load every credit row for a work."""
        with Session(self.db_engine) as session:
            rows = session.exec(
                select(Credit).where(Credit.work_id == work_id).order_by(Credit.credit_id)
            ).all()
        logger.debug(f"Loaded {len(rows)} credits for work {work_id}")
        return [
            CreditRecord(person_id=row.person_id, role_kind=row.role_kind, billing_ordinal=row.billing_ordinal)
            for row in rows
        ]

    @retry_on_transient
    def list_work_ids(self) -> List[int]:
        """List every work id in the catalog, ascending."""
        with Session(self.db_engine) as session:
            return list(session.exec(select(Work.work_id).order_by(Work.work_id)).all())

    @retry_on_transient
    def known_people(self, person_ids: Iterable[int]) -> Set[int]:
        """Return the subset of ``person_ids`` present in the catalog."""
        ids = set(person_ids)
        if not ids:
            return set()
        with Session(self.db_engine) as session:
            return set(session.exec(select(Person.person_id).where(Person.person_id.in_(ids))).all())

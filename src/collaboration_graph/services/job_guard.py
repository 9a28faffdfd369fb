from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional
from uuid import uuid4
from sqlalchemy import delete
from sqlmodel import Session, select
import logging

from collaboration_graph.data_access.database import dialect_insert, retry_on_transient
from collaboration_graph.data_access.models.collaboration import BatchJobFlag, utc_now
from collaboration_graph.domain.errors import AlreadyRunningError

logger = logging.getLogger(__name__)

REBUILD_JOB = "rebuild_all"
TREND_REFRESH_JOB = "trend_refresh"


class JobGuard:
    """Advisory single-flight flags stored as rows in ``batch_job_flags``.

    The flag row is the lock: inserting it succeeds for exactly one caller.
    Flags older than ``stale_after`` are reclaimed so a crashed run does not
    block the job forever. Each flag carries the ``run_id`` of the run that
    took it, and only that run can release it.
    """

    def __init__(self, db_engine, stale_after: timedelta = timedelta(hours=6),
                 clock: Callable[[], datetime] = utc_now):
        self.db_engine = db_engine
        self.stale_after = stale_after
        self.clock = clock

    @retry_on_transient
    def acquire(self, job_name: str) -> str:
        """Take the flag for ``job_name`` and return the run id that owns it."""
        now = self.clock()
        run_id = uuid4().hex
        with Session(self.db_engine) as session:
            reclaimed = session.execute(
                delete(BatchJobFlag)
                .where(BatchJobFlag.job_name == job_name)
                .where(BatchJobFlag.started_at < now - self.stale_after)
            )
            if reclaimed.rowcount:
                logger.warning(f"Reclaimed stale flag for job '{job_name}'")

            stmt = dialect_insert(session, BatchJobFlag).values(job_name=job_name, run_id=run_id, started_at=now)
            result = session.execute(stmt.on_conflict_do_nothing(index_elements=["job_name"]))
            session.commit()

        if result.rowcount == 0:
            logger.warning(f"Rejected start of job '{job_name}': already running")
            raise AlreadyRunningError(job_name)
        logger.info(f"Acquired flag for job '{job_name}' (run {run_id})")
        return run_id

    @retry_on_transient
    def release(self, job_name: str, run_id: str) -> None:
        with Session(self.db_engine) as session:
            result = session.execute(
                delete(BatchJobFlag)
                .where(BatchJobFlag.job_name == job_name)
                .where(BatchJobFlag.run_id == run_id)
            )
            session.commit()
        if result.rowcount:
            logger.info(f"Released flag for job '{job_name}' (run {run_id})")
        else:
            logger.warning(f"Flag for job '{job_name}' was reclaimed from run {run_id} before it finished")

    @retry_on_transient
    def is_running(self, job_name: str) -> bool:
        with Session(self.db_engine) as session:
            flag = session.exec(select(BatchJobFlag).where(BatchJobFlag.job_name == job_name)).first()
        if flag is None:
            return False
        started_at = flag.started_at
        # SQLite hands back naive values; they were written in UTC
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=timezone.utc)
        return started_at >= self.clock() - self.stale_after

    @contextmanager
    def hold(self, job_name: str, run_id: Optional[str] = None) -> Iterator[str]:
        """Hold the flag for the duration of the block, releasing it on exit.

        Pass the ``run_id`` returned by an earlier ``acquire`` to take over a
        reservation instead of acquiring a new flag.
        """
        if run_id is None:
            run_id = self.acquire(job_name)
        try:
            yield run_id
        finally:
            self.release(job_name, run_id)

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Callable, Iterable, Optional, Tuple
import logging

from collaboration_graph.config import CollaborationSettings
from collaboration_graph.data_access.models.collaboration import utc_now
from collaboration_graph.domain.errors import InvalidInputError, WorkNotFoundError
from collaboration_graph.domain.models.collaboration import ApplyResult, RebuildResult
from .aggregate_store import AggregateStore
from .credit_extractor import CreditExtractor
from .edge_builder import EdgeBuilder
from .job_guard import JobGuard, REBUILD_JOB

logger = logging.getLogger(__name__)


class PopulationService:
    def __init__(self, db_engine, settings: CollaborationSettings, clock: Callable[[], datetime] = utc_now):
        """Initialize the PopulationService with its extract, build and store components."""
        self.extractor = CreditExtractor(db_engine)
        self.edge_builder = EdgeBuilder.from_settings(settings)
        self.store = AggregateStore(db_engine, clock=clock)
        self.job_guard = JobGuard(db_engine, stale_after=settings.job_stale_after, clock=clock)
        self.workers = settings.apply_workers

    def apply_incremental(self, work_id: int) -> ApplyResult:
        """Run one work's credits through the edge builder and apply them."""
        work = self.extractor.load_work(work_id)
        if work is None:
            raise WorkNotFoundError(work_id)
        if work.release_year is None:
            raise InvalidInputError(f"Work {work_id} has no release year")

        credits = self.extractor.load_credits(work_id)
        candidates = self.edge_builder.build(credits)
        logger.debug(f"Work {work_id}: {len(credits)} credits -> {len(candidates)} candidate pairs")
        return self.store.apply(work, candidates)

    def rebuild_all(self, run_id: Optional[str] = None) -> RebuildResult:
        """Drop every pair and detail and regenerate them from the whole catalog.

        Only one rebuild may run at a time; a concurrent call raises
        AlreadyRunningError. Incremental applies may keep running meanwhile.
        """
        with self.job_guard.hold(REBUILD_JOB, run_id=run_id):
            logger.info("Starting full collaboration rebuild")
            self.store.clear()
            work_ids = self.extractor.list_work_ids()
            processed, failed = self.apply_many(work_ids)
            pairs, details = self.store.counts()

        logger.info(f"Rebuild completed: {processed} works, {failed} failed, {pairs} pairs, {details} details")
        return RebuildResult(works_processed=processed, works_failed=failed, pairs=pairs, details=details)

    def apply_many(self, work_ids: Iterable[int]) -> Tuple[int, int]:
        """Apply works on a thread pool; return (processed, failed)."""
        processed = 0
        failed = 0
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = {pool.submit(self.apply_incremental, work_id): work_id for work_id in work_ids}
            for future in as_completed(futures):
                work_id = futures[future]
                try:
                    future.result()
                    processed += 1
                except InvalidInputError as e:
                    failed += 1
                    logger.warning(f"Skipped work {work_id}: {str(e)}")
                except Exception as e:
                    failed += 1
                    logger.error(f"Failed to apply work {work_id}: {str(e)}")
        return processed, failed

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
import logging

from collaboration_graph.data_access.database import dialect_insert, retry_on_transient
from collaboration_graph.data_access.models.collaboration import (
    CollaborationDetail, CollaborationPair, PathCacheEntry, utc_now
)
from collaboration_graph.domain.errors import InvalidInputError, PersonNotFoundError
from collaboration_graph.domain.models.collaboration import PathHop, PathResult, PathStatus, canonical_pair
from .credit_extractor import CreditExtractor

logger = logging.getLogger(__name__)

# Scheduler for the cache write, called as defer(func, *args). FastAPI's
# BackgroundTasks.add_task has this shape.
Defer = Callable[..., None]


def _run_now(func, *args) -> None:
    func(*args)


class PathCache:
    """TTL-bounded store of shortest paths keyed by canonical person pair.

    Paths are stored oriented from the low id to the high id. Entries are
    never invalidated when edges change; they simply expire.
    """

    def __init__(self, db_engine, ttl: timedelta = timedelta(days=7), clock: Callable[[], datetime] = utc_now):
        self.db_engine = db_engine
        self.ttl = ttl
        self.clock = clock

    def get(self, person_low_id: int, person_high_id: int) -> Optional[List[int]]:
        """Return the cached low-to-high path, or None on a miss, expiry or read failure."""
        try:
            with Session(self.db_engine) as session:
                entry = session.exec(
                    select(PathCacheEntry)
                    .where(PathCacheEntry.person_low_id == person_low_id)
                    .where(PathCacheEntry.person_high_id == person_high_id)
                    .where(PathCacheEntry.expires_at > self.clock())
                ).first()
                return list(entry.path) if entry else None
        except SQLAlchemyError as e:
            logger.warning(f"Path cache read failed for ({person_low_id}, {person_high_id}): {str(e)}")
            return None

    def put(self, path: List[int]) -> None:
        """Store a path between its two endpoints; failures are logged and dropped."""
        low, high = canonical_pair(path[0], path[-1])
        oriented = list(path) if path[0] == low else list(reversed(path))
        now = self.clock()
        try:
            with Session(self.db_engine) as session:
                stmt = dialect_insert(session, PathCacheEntry).values(
                    person_low_id=low,
                    person_high_id=high,
                    path=oriented,
                    path_length=len(oriented) - 1,
                    computed_at=now,
                    expires_at=now + self.ttl,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["person_low_id", "person_high_id"],
                    set_={
                        "path": stmt.excluded.path,
                        "path_length": stmt.excluded.path_length,
                        "computed_at": stmt.excluded.computed_at,
                        "expires_at": stmt.excluded.expires_at,
                    },
                )
                session.execute(stmt)
                session.commit()
            logger.debug(f"Cached path ({low}, {high}) of length {len(oriented) - 1}")
        except SQLAlchemyError as e:
            logger.warning(f"Path cache write failed for ({low}, {high}): {str(e)}")


class PathFinder:
    """Bounded breadth-first search over the collaboration pair adjacency."""

    def __init__(self, db_engine, cache: PathCache, extractor: CreditExtractor, frontier_chunk: int = 500):
        self.db_engine = db_engine
        self.cache = cache
        self.extractor = extractor
        self.frontier_chunk = frontier_chunk
        # Number of searches actually run, i.e. cache misses
        self.computations = 0

    def shortest_path(self, person_a: int, person_b: int, max_depth: int,
                      defer: Optional[Defer] = None) -> PathResult:
        """Find a shortest path from person_a to person_b of at most max_depth hops.

        Raises InvalidInputError for a non-positive depth and
        PersonNotFoundError for an unknown id. Exhausting the depth is a
        normal result with status ``no_path``.
        """
        if max_depth is None or max_depth <= 0:
            raise InvalidInputError(f"max_depth must be positive, got {max_depth}")

        known = self.extractor.known_people([person_a, person_b])
        for person_id in (person_a, person_b):
            if person_id not in known:
                raise PersonNotFoundError(person_id)

        if person_a == person_b:
            return PathResult(source_id=person_a, target_id=person_b, status=PathStatus.FOUND,
                              path=[person_a], length=0)

        low, high = canonical_pair(person_a, person_b)
        cached = self.cache.get(low, high)
        if cached is not None:
            path = cached if person_a == low else list(reversed(cached))
            if len(path) - 1 > max_depth:
                return PathResult(source_id=person_a, target_id=person_b, status=PathStatus.NO_PATH, cached=True)
            return PathResult(source_id=person_a, target_id=person_b, status=PathStatus.FOUND,
                              path=path, length=len(path) - 1, cached=True)

        self.computations += 1
        path = self._search(person_a, person_b, max_depth)
        if path is None:
            logger.info(f"No path between {person_a} and {person_b} within {max_depth} hops")
            return PathResult(source_id=person_a, target_id=person_b, status=PathStatus.NO_PATH)

        try:
            (defer or _run_now)(self.cache.put, path)
        except Exception as e:
            logger.warning(f"Could not schedule path cache write: {str(e)}")

        return PathResult(source_id=person_a, target_id=person_b, status=PathStatus.FOUND,
                          path=path, length=len(path) - 1)

    @retry_on_transient
    def path_connections(self, path: List[int]) -> List[PathHop]:
        """For each hop of a path, pick the most recent work the two people share."""
        hops = []
        with Session(self.db_engine) as session:
            for a, b in zip(path, path[1:]):
                low, high = canonical_pair(a, b)
                work_id = session.exec(
                    select(CollaborationDetail.work_id)
                    .where(CollaborationDetail.person_low_id == low)
                    .where(CollaborationDetail.person_high_id == high)
                    .order_by(CollaborationDetail.release_year.desc(), CollaborationDetail.work_id)
                    .limit(1)
                ).first()
                hops.append(PathHop(from_person_id=a, to_person_id=b, work_id=work_id))
        return hops

    @retry_on_transient
    def _search(self, source: int, target: int, max_depth: int) -> Optional[List[int]]:
        parents: Dict[int, Optional[int]] = {source: None}
        frontier = [source]

        with Session(self.db_engine) as session:
            for depth in range(1, max_depth + 1):
                adjacency = self._neighbors(session, frontier)
                next_frontier = []
                for node in frontier:
                    for neighbor in sorted(adjacency.get(node, ())):
                        if neighbor in parents:
                            continue
                        parents[neighbor] = node
                        if neighbor == target:
                            logger.debug(f"Found {source} -> {target} at depth {depth}")
                            return self._reconstruct(parents, target)
                        next_frontier.append(neighbor)
                if not next_frontier:
                    break
                frontier = next_frontier
        return None

    def _neighbors(self, session: Session, frontier: Iterable[int]) -> Dict[int, Set[int]]:
        """Load the adjacency of every frontier node with batched queries."""
        frontier_ids = sorted(set(frontier))
        frontier_set = set(frontier_ids)
        adjacency: Dict[int, Set[int]] = defaultdict(set)

        for start in range(0, len(frontier_ids), self.frontier_chunk):
            chunk = frontier_ids[start:start + self.frontier_chunk]
            rows = session.exec(
                select(CollaborationPair.person_low_id, CollaborationPair.person_high_id).where(
                    or_(CollaborationPair.person_low_id.in_(chunk), CollaborationPair.person_high_id.in_(chunk))
                )
            ).all()
            for low, high in rows:
                if low in frontier_set:
                    adjacency[low].add(high)
                if high in frontier_set:
                    adjacency[high].add(low)
        return adjacency

    @staticmethod
    def _reconstruct(parents: Dict[int, Optional[int]], target: int) -> List[int]:
        path = [target]
        while parents[path[-1]] is not None:
            path.append(parents[path[-1]])
        path.reverse()
        return path

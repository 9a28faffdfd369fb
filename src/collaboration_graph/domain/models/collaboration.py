from enum import Enum
from typing import List, NamedTuple, Optional, Tuple
from pydantic import BaseModel

from collaboration_graph.domain.models.credit import RoleCategory


class CollaborationType(str, Enum):
    PERFORMER_PERFORMER = "performer-performer"
    PERFORMER_DIRECTOR = "performer-director"
    DIRECTOR_DIRECTOR = "director-director"
    DIRECTOR_CREW = "director-crew"
    CREW_CREW = "crew-crew"


# When one pair qualifies under several rules on the same work, the earliest
# entry wins.
TYPE_PRECEDENCE = (
    CollaborationType.DIRECTOR_DIRECTOR,
    CollaborationType.PERFORMER_DIRECTOR,
    CollaborationType.DIRECTOR_CREW,
    CollaborationType.PERFORMER_PERFORMER,
    CollaborationType.CREW_CREW,
)


def canonical_pair(person_a: int, person_b: int) -> Tuple[int, int]:
    """Order two distinct person ids low id first."""
    if person_a == person_b:
        raise ValueError(f"A pair needs two distinct people, got {person_a} twice")
    return (person_a, person_b) if person_a < person_b else (person_b, person_a)


class CandidatePair(NamedTuple):
    person_low_id: int
    person_high_id: int
    collaboration_type: CollaborationType
    low_role: RoleCategory
    high_role: RoleCategory


class RoleFilter(BaseModel):
    """Restrict collaborator rankings to one collaboration type.

    ``as_role`` further requires the queried person to have played that side
    of the edge, e.g. ``director`` for a director's most frequent performers.
    """
    collaboration_type: CollaborationType
    as_role: Optional[RoleCategory] = None


class PairStats(BaseModel):
    person_low_id: int
    person_high_id: int
    collaboration_count: int
    first_year: Optional[int] = None
    last_year: Optional[int] = None
    avg_rating: Optional[float] = None
    total_revenue: Optional[int] = None
    types: List[str] = []
    years_active: List[int] = []
    peak_year: Optional[int] = None
    genre_diversity_score: Optional[float] = None
    role_diversity_score: Optional[float] = None


class Collaborator(BaseModel):
    person_id: int
    collaboration_count: int


class SharedWork(BaseModel):
    work_id: int
    release_year: int
    collaboration_type: str
    rating: Optional[float] = None
    revenue: Optional[int] = None


class PathStatus(str, Enum):
    FOUND = "found"
    NO_PATH = "no_path"


class PathHop(BaseModel):
    from_person_id: int
    to_person_id: int
    work_id: Optional[int] = None


class PathResult(BaseModel):
    source_id: int
    target_id: int
    status: PathStatus
    path: List[int] = []
    length: Optional[int] = None
    cached: bool = False
    connections: Optional[List[PathHop]] = None

    @property
    def found(self) -> bool:
        return self.status == PathStatus.FOUND


class TrendingPair(BaseModel):
    person_low_id: int
    person_high_id: int
    trend_score: float
    recent_count: int
    baseline_count: int
    last_year: int


class PersonYearActivity(BaseModel):
    year: int
    unique_collaborators: int
    new_collaborators: int
    total_works: int
    avg_rating: Optional[float] = None
    total_revenue: Optional[int] = None


class ApplyResult(BaseModel):
    work_id: int
    candidate_pairs: int
    details_written: int
    pairs_recomputed: int


class RebuildResult(BaseModel):
    works_processed: int
    works_failed: int
    pairs: int
    details: int


class DiversityStats(BaseModel):
    """Genre and role diversity across all scored pairs; "high" means above 0.7."""
    total: int
    avg_genre_diversity: Optional[float] = None
    avg_role_diversity: Optional[float] = None
    high_genre_diversity: int
    high_role_diversity: int

from itertools import combinations
from typing import Dict, Iterable, List, Set, Tuple
import logging

from collaboration_graph.config import CollaborationSettings
from collaboration_graph.domain.models.credit import CreditRecord, RoleCategory
from collaboration_graph.domain.models.collaboration import (
    CandidatePair, CollaborationType, TYPE_PRECEDENCE
)

logger = logging.getLogger(__name__)

PERFORMER = "performer"
DIRECTOR = "director"

_RANK = {collaboration_type: rank for rank, collaboration_type in enumerate(TYPE_PRECEDENCE)}


class EdgeBuilder:
    """Turn one work's credit list into canonical collaboration candidates.

    Only billed performers, directors and an allow-list of key crew roles take
    part, which keeps the candidate count bounded by the caps rather than
    growing with the square of the full credit list.
    """

    def __init__(self, performer_performer_cap: int, performer_director_cap: int, key_crew_roles: Iterable[str]):
        self.performer_performer_cap = performer_performer_cap
        self.performer_director_cap = performer_director_cap
        self.key_crew_roles = frozenset(role.strip().lower() for role in key_crew_roles)

    @classmethod
    def from_settings(cls, settings: CollaborationSettings) -> "EdgeBuilder":
        return cls(
            settings.performer_performer_cap,
            settings.performer_director_cap,
            settings.key_crew_roles,
        )

    def build(self, credits: Iterable[CreditRecord]) -> List[CandidatePair]:
        """Return the candidate pairs for a single work, sorted by pair key."""
        ordinals, directors, crew = self._classify(credits)

        billed_pp = sorted(p for p, o in ordinals.items() if o <= self.performer_performer_cap)
        billed_pd = sorted(p for p, o in ordinals.items() if o <= self.performer_director_cap)
        directors_sorted = sorted(directors)
        crew_sorted = sorted(crew)

        candidates: Dict[Tuple[int, int], CandidatePair] = {}

        for a, b in combinations(billed_pp, 2):
            self._offer(candidates, a, RoleCategory.PERFORMER, b, RoleCategory.PERFORMER,
                        CollaborationType.PERFORMER_PERFORMER)

        for performer in billed_pd:
            for director in directors_sorted:
                self._offer(candidates, performer, RoleCategory.PERFORMER, director, RoleCategory.DIRECTOR,
                            CollaborationType.PERFORMER_DIRECTOR)

        for a, b in combinations(directors_sorted, 2):
            self._offer(candidates, a, RoleCategory.DIRECTOR, b, RoleCategory.DIRECTOR,
                        CollaborationType.DIRECTOR_DIRECTOR)

        for director in directors_sorted:
            for member in crew_sorted:
                self._offer(candidates, director, RoleCategory.DIRECTOR, member, RoleCategory.CREW,
                            CollaborationType.DIRECTOR_CREW)

        for a, b in combinations(crew_sorted, 2):
            self._offer(candidates, a, RoleCategory.CREW, b, RoleCategory.CREW, CollaborationType.CREW_CREW)

        return [candidates[key] for key in sorted(candidates)]

    def candidate_bound(self, credits: Iterable[CreditRecord]) -> int:
        """Upper bound on ``len(build(credits))`` implied by the filtering caps."""
        ordinals, directors, crew = self._classify(credits)
        pp = sum(1 for o in ordinals.values() if o <= self.performer_performer_cap)
        pd_ = sum(1 for o in ordinals.values() if o <= self.performer_director_cap)
        d, k = len(directors), len(crew)
        return pp * (pp - 1) // 2 + pd_ * d + d * (d - 1) // 2 + d * k + k * (k - 1) // 2

    def _classify(self, credits: Iterable[CreditRecord]) -> Tuple[Dict[int, int], Set[int], Set[int]]:
        """Split credits into billed performers (best ordinal), directors and key crew."""
        ordinals: Dict[int, int] = {}
        directors: Set[int] = set()
        crew: Set[int] = set()

        for credit in credits:
            if credit.person_id is None:
                logger.warning(f"Skipping credit without person_id: {credit}")
                continue
            role = (credit.role_kind or "").strip().lower()
            if not role:
                logger.warning(f"Skipping credit without role kind for person {credit.person_id}")
                continue

            if role == PERFORMER:
                if credit.billing_ordinal is None:
                    logger.warning(f"Skipping performer credit without billing ordinal for person {credit.person_id}")
                    continue
                best = ordinals.get(credit.person_id)
                if best is None or credit.billing_ordinal < best:
                    ordinals[credit.person_id] = credit.billing_ordinal
            elif role == DIRECTOR:
                directors.add(credit.person_id)
            elif role in self.key_crew_roles:
                crew.add(credit.person_id)

        return ordinals, directors, crew

    @staticmethod
    def _offer(candidates: Dict[Tuple[int, int], CandidatePair], a: int, a_role: RoleCategory,
               b: int, b_role: RoleCategory, collaboration_type: CollaborationType) -> None:
        if a == b:
            # Same person credited under two roles on one work
            logger.debug(f"Rejected self pair for person {a} ({collaboration_type.value})")
            return

        if a < b:
            candidate = CandidatePair(a, b, collaboration_type, a_role, b_role)
        else:
            candidate = CandidatePair(b, a, collaboration_type, b_role, a_role)

        key = (candidate.person_low_id, candidate.person_high_id)
        existing = candidates.get(key)
        if existing is None or _RANK[collaboration_type] < _RANK[existing.collaboration_type]:
            candidates[key] = candidate

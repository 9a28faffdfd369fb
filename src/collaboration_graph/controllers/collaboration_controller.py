from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional
import logging

from collaboration_graph.controllers.dependencies import get_collaboration_service, to_http_error
from collaboration_graph.domain.errors import CollaborationGraphError
from collaboration_graph.domain.models.collaboration import (
    CollaborationType, Collaborator, DiversityStats, PairStats, PersonYearActivity, RoleFilter, SharedWork
)
from collaboration_graph.domain.models.credit import RoleCategory
from collaboration_graph.services.collaboration_service import CollaborationService

logger = logging.getLogger(__name__)


class CollaborationController:
    def __init__(self):
        """Initialize the CollaborationController with a router."""
        self.router = APIRouter()
        self._register_routes()

    def _register_routes(self):
        """Register pair and person collaboration routes."""

        @self.router.get("/pairs/{person_a}/{person_b}", response_model=PairStats)
        def get_pair_stats(
            person_a: int,
            person_b: int,
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> PairStats:
            """Aggregated collaboration stats for two people."""
            stats = service.pair_stats(person_a, person_b)
            if stats is None:
                raise HTTPException(status_code=404, detail=f"No collaboration between {person_a} and {person_b}")
            return stats

        @self.router.get("/pairs/{person_a}/{person_b}/works", response_model=List[SharedWork])
        def get_works_together(
            person_a: int,
            person_b: int,
            collaboration_type: Optional[CollaborationType] = None,
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> List[SharedWork]:
            """Works two people share, newest first."""
            return service.works_together(person_a, person_b, collaboration_type)

        @self.router.get("/pairs/{person_a}/{person_b}/similar", response_model=List[PairStats])
        def get_similar_collaborations(
            person_a: int,
            person_b: int,
            limit: int = Query(10, description="Number of pairs to return"),
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> List[PairStats]:
            """Recurring performer-director pairs ranked by likeness to this pair."""
            try:
                return service.similar_collaborations(person_a, person_b, limit)
            except CollaborationGraphError as e:
                raise to_http_error(e)

        @self.router.get("/diversity", response_model=DiversityStats)
        def get_diversity_stats(
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> DiversityStats:
            return service.diversity_stats()

        @self.router.get("/people/{person_id}/top", response_model=List[Collaborator])
        def get_top_collaborators(
            person_id: int,
            collaboration_type: Optional[CollaborationType] = Query(None, description="Only count this collaboration type"),
            as_role: Optional[RoleCategory] = Query(None, description="Side the person played; needs collaboration_type"),
            limit: int = Query(10, description="Number of collaborators to return"),
            min_shared: int = Query(1, description="Minimum number of counted shared works"),
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> List[Collaborator]:
            """Rank a person's collaborators by shared works."""
            if as_role is not None and collaboration_type is None:
                raise HTTPException(status_code=400, detail="as_role requires collaboration_type")
            role_filter = None
            if collaboration_type is not None:
                role_filter = RoleFilter(collaboration_type=collaboration_type, as_role=as_role)
            try:
                return service.top_collaborators(person_id, role_filter, limit, min_shared)
            except CollaborationGraphError as e:
                raise to_http_error(e)

        @self.router.get("/people/{person_id}/activity", response_model=List[PersonYearActivity])
        def get_person_activity(
            person_id: int,
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> List[PersonYearActivity]:
            """Year-by-year collaboration activity for one person."""
            return service.person_activity(person_id)

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from typing import Optional
import logging

from collaboration_graph.controllers.dependencies import get_collaboration_service, to_http_error
from collaboration_graph.domain.errors import CollaborationGraphError
from collaboration_graph.domain.models.collaboration import PathResult
from collaboration_graph.services.collaboration_service import CollaborationService

logger = logging.getLogger(__name__)


class PathController:
    def __init__(self):
        self.router = APIRouter()
        self._register_routes()

    def _register_routes(self):
        @self.router.get("/{person_a}/{person_b}", response_model=PathResult)
        def get_shortest_path(
            person_a: int,
            person_b: int,
            background_tasks: BackgroundTasks,
            max_depth: Optional[int] = Query(None, description="Maximum hops; defaults to MAX_PATH_DEPTH"),
            with_works: bool = Query(False, description="Include the connecting work for each hop"),
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> PathResult:
            """
            Find the shortest collaboration path between two people.

            The cache write after a fresh search runs as a background task, so
            the response never waits on it.

            Returns:
                PathResult: status ``found`` with the path, or ``no_path``.
            """
            try:
                return service.shortest_path(
                    person_a, person_b, max_depth, with_works=with_works, defer=background_tasks.add_task
                )
            except CollaborationGraphError as e:
                raise to_http_error(e)

from fastapi import APIRouter, BackgroundTasks, Depends
from typing import Dict
import logging

from collaboration_graph.controllers.dependencies import get_collaboration_service, to_http_error
from collaboration_graph.domain.errors import CollaborationGraphError
from collaboration_graph.domain.models.collaboration import ApplyResult
from collaboration_graph.services.collaboration_service import CollaborationService

logger = logging.getLogger(__name__)


class GraphController:
    def __init__(self):
        """Initialize the GraphController for population endpoints."""
        self.router = APIRouter()
        self._register_routes()

    def _register_routes(self):
        """Register routes that write collaboration pairs."""

        @self.router.post("/works/{work_id}", response_model=ApplyResult)
        def apply_work(
            work_id: int,
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> ApplyResult:
            """Apply one work's credits to the collaboration graph."""
            try:
                return service.apply_incremental(work_id)
            except CollaborationGraphError as e:
                raise to_http_error(e)

        @self.router.post("/rebuild", response_model=Dict[str, str], status_code=202)
        def rebuild_graph(
            background_tasks: BackgroundTasks,
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> Dict[str, str]:
            """Regenerate every pair from the catalog in the background."""
            try:
                run_id = service.reserve_rebuild()
            except CollaborationGraphError as e:
                raise to_http_error(e)
            background_tasks.add_task(_run_rebuild, service, run_id)
            return {"message": "Collaboration rebuild started"}


def _run_rebuild(service: CollaborationService, run_id: str) -> None:
    try:
        result = service.rebuild_all(run_id=run_id)
        logger.info(f"Background rebuild finished: {result.pairs} pairs from {result.works_processed} works")
    except Exception as e:
        logger.error(f"Background rebuild failed: {str(e)}")

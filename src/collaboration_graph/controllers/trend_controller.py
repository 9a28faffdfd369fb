from fastapi import APIRouter, BackgroundTasks, Depends, Query
from typing import Dict, List
import logging

from collaboration_graph.controllers.dependencies import get_collaboration_service, to_http_error
from collaboration_graph.domain.errors import CollaborationGraphError
from collaboration_graph.domain.models.collaboration import TrendingPair
from collaboration_graph.services.collaboration_service import CollaborationService

logger = logging.getLogger(__name__)


class TrendController:
    def __init__(self):
        self.router = APIRouter()
        self._register_routes()

    def _register_routes(self):
        @self.router.get("/", response_model=List[TrendingPair])
        def get_top_trending(
            limit: int = Query(20, description="Number of pairs to return"),
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> List[TrendingPair]:
            """Pairs ranked by the latest trend snapshot."""
            try:
                return service.top_trending(limit)
            except CollaborationGraphError as e:
                raise to_http_error(e)

        @self.router.post("/refresh", response_model=Dict[str, str], status_code=202)
        def refresh_trends(
            background_tasks: BackgroundTasks,
            service: CollaborationService = Depends(get_collaboration_service)
        ) -> Dict[str, str]:
            """Start a trend snapshot refresh in the background."""
            try:
                run_id = service.reserve_trend_refresh()
            except CollaborationGraphError as e:
                raise to_http_error(e)
            background_tasks.add_task(_run_refresh, service, run_id)
            return {"message": "Trend refresh started"}


def _run_refresh(service: CollaborationService, run_id: str) -> None:
    try:
        count = service.refresh_trends(run_id=run_id)
        logger.info(f"Background trend refresh wrote {count} pairs")
    except Exception as e:
        logger.error(f"Background trend refresh failed: {str(e)}")

from fastapi import Depends, HTTPException
import logging

from collaboration_graph.config import CollaborationSettings, get_settings
from collaboration_graph.data_access.database import get_db_engine
from collaboration_graph.domain.errors import (
    AlreadyRunningError, CollaborationGraphError, InvalidInputError, PersonNotFoundError, WorkNotFoundError
)
from collaboration_graph.services.collaboration_service import CollaborationService

logger = logging.getLogger(__name__)


def get_collaboration_service(
    db_engine=Depends(get_db_engine),
    settings: CollaborationSettings = Depends(get_settings),
) -> CollaborationService:
    return CollaborationService(db_engine, settings)


def to_http_error(error: CollaborationGraphError) -> HTTPException:
    """Map a domain error onto the HTTP status the API reports for it."""
    if isinstance(error, (PersonNotFoundError, WorkNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, AlreadyRunningError):
        return HTTPException(status_code=409, detail=str(error))
    logger.error(f"Unmapped collaboration graph error: {str(error)}")
    return HTTPException(status_code=500, detail=str(error))

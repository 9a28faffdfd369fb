from fastapi import APIRouter
from collaboration_graph.controllers.collaboration_controller import CollaborationController

router = APIRouter(prefix="/collaborations", tags=["collaborations"])
collaboration_controller = CollaborationController()
router.include_router(collaboration_controller.router)

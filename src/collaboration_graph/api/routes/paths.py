from fastapi import APIRouter
from collaboration_graph.controllers.path_controller import PathController

router = APIRouter(prefix="/paths", tags=["paths"])
path_controller = PathController()
router.include_router(path_controller.router)

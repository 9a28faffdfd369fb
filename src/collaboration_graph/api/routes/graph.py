from fastapi import APIRouter
from collaboration_graph.controllers.graph_controller import GraphController

router = APIRouter(prefix="/graph", tags=["graph"])
graph_controller = GraphController()
router.include_router(graph_controller.router)

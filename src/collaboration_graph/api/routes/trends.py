from fastapi import APIRouter
from collaboration_graph.controllers.trend_controller import TrendController

router = APIRouter(prefix="/trends", tags=["trends"])
trend_controller = TrendController()
router.include_router(trend_controller.router)

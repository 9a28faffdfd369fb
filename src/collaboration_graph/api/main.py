from fastapi import FastAPI
from collaboration_graph.api.routes import collaborations, graph, paths, trends
from collaboration_graph.data_access.database import init_db
from collaboration_graph.config import get_settings
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)
# Suppress overly verbose SQLAlchemy logs if not needed
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

app = FastAPI(title="Collaboration Graph")


app.include_router(collaborations.router, prefix="", tags=["collaborations"])
app.include_router(paths.router, prefix="", tags=["paths"])
app.include_router(trends.router, prefix="", tags=["trends"])
app.include_router(graph.router, prefix="", tags=["graph"])

@app.on_event("startup")
async def startup_event():
    """Validate settings and create tables on startup."""
    logger.info("Starting application initialization")
    get_settings()
    init_db()
    logger.info("Application initialized successfully")

"""
FastAPI Main Application
Fashion catalog ingestion and product resolution engine
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime
import uvicorn
import logging

from config.settings import settings
from context import create_engine_context
from routers import scraping, progress, tracking, images, products
from utils.logging import setup_logging
from websocket.connection_manager import ConnectionManager

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for the FastAPI application."""
    # Startup
    logger.info(f"🚀 Starting {settings.APP_NAME}...")
    owns_engine = getattr(app.state, "engine", None) is None
    if owns_engine:
        app.state.engine = await create_engine_context(settings)
    engine = app.state.engine
    app.state.connection_manager = ConnectionManager(
        engine.tracker, close_delay=engine.settings.PROGRESS_STREAM_CLOSE_DELAY
    )
    logger.info("✅ Engine and progress streams ready")

    yield

    # Shutdown
    logger.info(f"🛑 Shutting down {settings.APP_NAME}...")
    try:
        await engine.close()
    except Exception as e:
        logger.error(f"❌ Engine shutdown failed: {e}")
    if owns_engine:
        app.state.engine = None


# Create FastAPI app with lifespan
app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Multi-source fashion catalog ingestion, product resolution and tracking",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(scraping.router, prefix="/api/scraping", tags=["scraping"])
app.include_router(tracking.router, prefix="/api/tracking", tags=["tracking"])
app.include_router(products.router, prefix="/api/products", tags=["products"])
app.include_router(images.router, prefix="/api/images", tags=["images"])
app.include_router(progress.router, tags=["progress"])


# Root endpoints
@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": f"{settings.APP_NAME} API",
        "version": settings.VERSION,
        "status": "operational",
        "endpoints": {
            "docs": "/docs",
            "scraping_api": "/api/scraping",
            "tracking_api": "/api/tracking",
            "products_api": "/api/products",
            "image_relay": "/api/images",
        },
        "websockets": {
            "jobs": "/ws/jobs",
            "job": "/ws/jobs/{job_id}",
        },
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint"""
    engine = request.app.state.engine
    db_health = await engine.db.health_check()

    health_status = {
        "status": "healthy" if db_health.get("status") == "healthy" else "degraded",
        "timestamp": datetime.now().isoformat(),
        "services": {
            "database": db_health,
            "sources": engine.registry.source_ids,
            "active_runs": engine.orchestrator.active_runs(),
            "websockets": request.app.state.connection_manager.get_connection_count(),
        },
        "version": settings.VERSION,
    }
    return health_status


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development(),
        log_level=settings.LOG_LEVEL.lower()
    )

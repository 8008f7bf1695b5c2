"""
Main entry point for the garment design pipeline API server.
"""

import json
import logging
import shutil
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from design_pipeline import __version__
from design_pipeline.api.dependencies import get_projector, get_stage_catalog, get_store
from design_pipeline.api.routes import designs_router, stages_router
from design_pipeline.api.routes.designs import limiter
from design_pipeline.api.schemas import HealthCheckResponse, ReadinessCheckResponse
from design_pipeline.api.websocket import ProgressFeed
from design_pipeline.config import get_config
from design_pipeline.errors import DesignPipelineError, JobNotFoundError
from design_pipeline.progress import ProgressProjector
from design_pipeline.store import JobStore
from design_pipeline.worker.stage_loader import StageCatalog

config = get_config()

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """Structured JSON log lines for production."""

    def format(self, record):
        return json.dumps({
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        })


if config.log_format == "json":
    for handler in logging.root.handlers:
        handler.setFormatter(JSONFormatter())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Garment Design Pipeline API...")

    config.ensure_directories()
    store = get_store()
    store.create_tables()
    logger.info(f"Worker mode: {config.worker_mode}, notifier: {config.notifier_backend}")

    yield

    store.close()
    logger.info("Shutting down Garment Design Pipeline API...")


# Create FastAPI application
app = FastAPI(
    title="Garment Design Pipeline API",
    description="Garment redesign jobs with multi-stage progress tracking",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Slowapi rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(DesignPipelineError)
async def design_pipeline_error_handler(request: Request, exc: DesignPipelineError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


# Include routers
app.include_router(designs_router)
app.include_router(stages_router)


@app.websocket("/ws/designs/{design_id}")
async def design_progress_websocket(
    websocket: WebSocket,
    design_id: str,
    projector: ProgressProjector = Depends(get_projector),
):
    """WebSocket feed of one design's progress, closed after the job finishes."""
    await websocket.accept()
    feed = ProgressFeed(websocket)
    try:
        subscription = projector.subscribe(
            design_id,
            on_update=feed.on_update,
            on_complete=feed.on_complete,
            on_error=feed.on_error,
        )
    except JobNotFoundError as e:
        await websocket.send_json({"event": "error", "data": {"error_message": e.message}})
        await websocket.close(code=4404)
        return

    with subscription:
        try:
            finished = await feed.run(subscription)
        except WebSocketDisconnect:
            logger.info(f"Progress feed client for design {design_id} disconnected")
            return
    if finished:
        await websocket.close()


@app.get("/health", response_model=HealthCheckResponse, tags=["General"])
async def health_check(store: JobStore = Depends(get_store)):
    """
    Health check endpoint.

    Checks database connectivity, the notification transport and disk space.
    """
    checks = {
        "api": True,
        "database": False,
        "notifier": False,
        "disk_space": False,
    }

    try:
        checks["database"] = store.check_database()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    checks["notifier"] = store.notifier.ping()

    # Require at least 1GB free for uploads
    try:
        stat = shutil.disk_usage(".")
        checks["disk_space"] = stat.free / (1024 ** 3) > 1.0
    except OSError as e:
        logger.error(f"Disk space check failed: {e}")

    overall_status = "healthy" if all(checks.values()) else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        service=config.app_name,
        checks=checks,
        timestamp=datetime.now(),
    )


@app.get("/ready", response_model=ReadinessCheckResponse, tags=["General"])
async def readiness_check(
    store: JobStore = Depends(get_store),
    catalog: StageCatalog = Depends(get_stage_catalog),
):
    """
    Readiness check endpoint.

    Ready when the stage catalogue is loaded and notifications can be delivered.
    """
    checks = {
        "api": True,
        "stages": len(catalog.all()) == 6,
        "notifier": store.notifier.ping(),
    }
    return ReadinessCheckResponse(
        ready=all(checks.values()),
        checks=checks,
        worker_mode=config.worker_mode,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "design_pipeline.main:app",
        host=config.api_host,
        port=config.api_port,
        reload=config.debug,
    )

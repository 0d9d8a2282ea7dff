"""
Snapshot Engine service entry point.

Logging and metrics are configured at import time so that everything logged
while the app is being built is already JSON. The lifespan owns the
snapshot session registry and closes every decoder on shutdown.

Run with: uvicorn main:app
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from snapshot_engine.core.config import settings
from snapshot_engine.core.logging_config import setup_logging, get_logger
from snapshot_engine.core.metrics import init_metrics, get_metrics, get_content_type
from snapshot_engine.middleware.logging_middleware import RequestLoggingMiddleware
from snapshot_engine.api.v1.snapshots import router as snapshots_router
from snapshot_engine.services.session_registry import SnapshotSessionRegistry

APP_VERSION = "1.0.0"

setup_logging(app_version=APP_VERSION)
logger = get_logger(__name__)
init_metrics(version=APP_VERSION)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the snapshot session registry; on shutdown cancel and release every context."""
    logger.info(
        "Application starting",
        extra={
            "event_type": "app_startup",
            "version": APP_VERSION,
            "log_level": settings.LOG_LEVEL,
            "debug_mode": settings.DEBUG,
            "candidate_timestamps": settings.candidate_timestamps,
            "upload_endpoint": settings.UPLOAD_ENDPOINT_URL,
        }
    )
    registry = SnapshotSessionRegistry()
    app.state.snapshot_registry = registry

    yield

    open_contexts = len(registry)
    await registry.close_all()
    logger.info(
        f"Application stopped, released {open_contexts} snapshot contexts",
        extra={
            "event_type": "app_shutdown_complete",
            "version": APP_VERSION,
            "context_count": open_contexts,
        }
    )


app = FastAPI(
    title="Snapshot Engine API",
    description="API for deriving camera snapshots from uploaded or streamed video",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# HTTPException responses skip CORSMiddleware; the handler below covers them
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def cors_http_exception_handler(request: Request, exc: HTTPException):
    """Render HTTPException as {"detail": ...}, adding CORS headers for allowed origins."""
    origin = request.headers.get("origin", "")
    allowed = settings.cors_origins_list
    headers = {}
    if origin and ("*" in allowed or origin in allowed):
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


app.add_middleware(RequestLoggingMiddleware)
app.include_router(snapshots_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
async def root():
    return {"name": "Snapshot Engine API", "version": APP_VERSION, "status": "running"}


@app.get("/health")
async def health_check(request: Request):
    """Liveness probe; also reports how many snapshot contexts are open."""
    registry = getattr(request.app.state, "snapshot_registry", None)
    return {
        "status": "healthy",
        "active_contexts": len(registry) if registry is not None else 0
    }


@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )

"""
FastAPI Application
IoT DevSim Core: device simulation, transmission scheduling and history
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from devsim.api.v1.router import api_router
from devsim.core.config import settings
from devsim.core.database import check_database_health, close_database, init_database
from devsim.core.exceptions import DevSimError
from devsim.core.logging import setup_logging
from devsim.middleware.logging import LoggingMiddleware
from devsim.services.device_transmission import device_transmission
from devsim.services.scheduler import transmission_scheduler

# Setup structured logging
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting IoT DevSim Core", version=settings.VERSION, environment=settings.ENVIRONMENT)

    if settings.CREATE_TABLES_ON_STARTUP:
        await init_database()

    if settings.SCHEDULER_ENABLED:
        try:
            await transmission_scheduler.start(device_transmission.run_scheduled_tick)
        except Exception as e:
            logger.error("Transmission scheduler failed to start", error=str(e))

    yield

    logger.info("Shutting down IoT DevSim Core")
    await transmission_scheduler.stop()
    await close_database()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="IoT device simulation: datasets, transmission control and history",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
    lifespan=lifespan
)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

app.add_middleware(LoggingMiddleware)

app.include_router(api_router, prefix=settings.API_V1_STR)


# ==================== Error Mapping ====================


@app.exception_handler(DevSimError)
async def devsim_exception_handler(request: Request, exc: DevSimError):
    if exc.status_code >= 500:
        logger.error("Service error", path=request.url.path, error=exc.message, error_type=type(exc).__name__)
    else:
        logger.info("Request rejected", path=request.url.path, error=exc.message, error_type=type(exc).__name__)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(loc) for loc in error.get("loc", ()) if loc != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(status_code=422, content={"error": "; ".join(messages) or "Invalid request"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ==================== Service Endpoints ====================


@app.get("/health")
async def health_check():
    """Health check endpoint for Docker and load balancers"""
    db_healthy = await check_database_health()
    scheduler_running = transmission_scheduler.running or not settings.SCHEDULER_ENABLED

    content = {
        "status": "healthy" if db_healthy and scheduler_running else "unhealthy",
        "service": "iot-devsim-core",
        "version": settings.VERSION,
        "timestamp": time.time(),
        "database": "connected" if db_healthy else "disconnected",
        "scheduler": "running" if transmission_scheduler.running else "stopped",
        "scheduled_devices": len(transmission_scheduler.active_devices),
    }
    if db_healthy and scheduler_running:
        return content
    return JSONResponse(status_code=503, content=content)


@app.get("/metrics")
async def metrics():
    """Prometheus scrape endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    return {
        "message": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": "/docs" if settings.ENVIRONMENT == "development" else "disabled",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "devsim.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower()
    )

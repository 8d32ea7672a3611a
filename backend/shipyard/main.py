"""
FastAPI main application entry point.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shipyard.api.v1.router import api_router
from shipyard.core.config import settings
from shipyard.core.database import engine
from shipyard.core.exception_handlers import register_exception_handlers
from shipyard.services.deployment.deployment_service import deployment_service
from shipyard.services.persistence_gateway import persistence_gateway

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Create scheduler
scheduler = AsyncIOScheduler()
PRUNE_JOB_ID = "prune_images"

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Minimal PaaS controller: build, run and tear down apps from a repository URL",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/openapi.json",
)

# Register domain exception handlers
register_exception_handlers(app)

cors_origins = settings.get_cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Origin", "X-Requested-With"],
    max_age=600,  # Cache preflight requests for 10 minutes
)


@app.on_event("startup")
async def startup_event():
    """
    Startup event handler.

    Loads the registry and reconciles abandoned deployments before any
    request is served.
    """
    reconciled = await deployment_service.startup()
    logger.info(
        f"Registry ready with {len(deployment_service.list_deployments())} app(s), "
        f"{len(reconciled)} reconciled"
    )

    scheduler.add_job(
        deployment_service.prune_images,
        'interval',
        hours=settings.PRUNE_INTERVAL_HOURS,
        id=PRUNE_JOB_ID,
        replace_existing=True,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info(f"Scheduler started with image prune every {settings.PRUNE_INTERVAL_HOURS}h")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Shutdown event handler.
    """
    if scheduler.running:
        scheduler.shutdown()
    cancelled = await deployment_service.shutdown()
    if cancelled:
        logger.warning(f"Shutdown cancelled {len(cancelled)} deployment(s)")
    await engine.dispose()
    logger.info("Application shutdown complete")


@app.get("/api/health", status_code=status.HTTP_200_OK)
async def health_check():
    """
    Health check endpoint.

    Returns:
        Health status and component checks
    """
    db_healthy = await persistence_gateway.ping()
    overall_status = "healthy" if db_healthy else "unhealthy"

    return JSONResponse(
        status_code=status.HTTP_200_OK if db_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": overall_status,
            "components": {
                "database": "healthy" if db_healthy else "unhealthy",
            },
            "apps": len(deployment_service.list_deployments()),
            "version": settings.APP_VERSION,
        }
    )


# Include API v1 router
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/", status_code=status.HTTP_200_OK)
async def root():
    """
    Root endpoint.

    Returns:
        Welcome message with API documentation link
    """
    return {
        "message": "Shipyard API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/api/health",
    }

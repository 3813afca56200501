from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from stockflow.config import settings
from stockflow.api.v1.router import api_router
from stockflow.core.exceptions import (
    StockflowError,
    ValidationError,
    InsufficientStock,
    InvalidState,
    NotFound,
    ConcurrencyConflict,
)
from stockflow.database import async_session_factory
from stockflow.jobs.scheduler import start_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)


ERROR_STATUS_CODES = {
    ValidationError: 400,
    InsufficientStock: 409,
    InvalidState: 409,
    NotFound: 404,
    ConcurrencyConflict: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Start the background scheduler when auto-reorder is enabled

    Tables are created by the alembic migrations, not at startup.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if settings.AUTO_REORDER_ENABLED:
        start_scheduler()

    yield

    shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Inventory", "description": "Ledger records, stock movements, adjustments and transfers"},
    {"name": "Orders", "description": "Allocation, pick lists, shipments, returns and backorders"},
    {"name": "Planning", "description": "Demand forecasting, reorder analysis and automated procurement"},
]

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(StockflowError)
async def stockflow_exception_handler(request: Request, exc: StockflowError):
    """Translate domain errors into HTTP status codes."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 400)
    if status_code == 409:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "error": exc.message,
            "type": type(exc).__name__,
            "details": exc.details,
            "path": str(request.url.path),
        }),
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status

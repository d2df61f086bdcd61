"""
Main FastAPI Application
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import time

from medsafety.core.config import settings
from medsafety.core.logging import setup_logging, get_logger
from medsafety.core.cache import cache_manager
from medsafety.api.routes import interaction_router, drug_router, reference_data_router
from medsafety.schemas.schemas import HealthCheck
from medsafety.services.drug_resolver_service import drug_resolver_service
from medsafety.services.evaluation_service import InvalidInputError
from medsafety.services.reference_data_service import reference_data_registry, RuleStoreLoadError
from medsafety.utils.correlation import CORRELATION_HEADER, get_correlation_id

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("application_startup", version=settings.APP_VERSION)

    try:
        reference_data_registry.load()
    except RuleStoreLoadError as e:
        logger.error("startup_error", error=str(e))
        raise

    if settings.RESOLVER_SHARED_CACHE_ENABLED:
        try:
            await cache_manager.connect()
        except Exception as e:
            # The process-level cache still works without Redis.
            logger.error("shared_cache_unavailable", error=str(e))

    logger.info("services_initialized", reference_data_version=reference_data_registry.current.version)

    yield

    # Shutdown
    logger.info("application_shutdown")
    try:
        await cache_manager.disconnect()
    except Exception as e:
        logger.error("shutdown_error", error=str(e))


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with correlation ID and timing."""
    correlation_id = get_correlation_id(request)
    request.state.correlation_id = correlation_id
    start_time = time.time()

    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        correlation_id=correlation_id,
    )

    try:
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id

        duration_ms = (time.time() - start_time) * 1000

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            correlation_id=correlation_id,
        )

        return response
    except Exception as e:
        logger.error("request_failed", error=str(e), correlation_id=correlation_id)
        raise


def _error_response(status_code: int, error: str, detail: str, correlation_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "detail": detail,
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    correlation_id = get_correlation_id(request)

    logger.warning("validation_error", errors=str(exc.errors()), correlation_id=correlation_id)

    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation Error",
        str(exc.errors()),
        correlation_id,
    )


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    """Handle evaluation requests rejected by the engine."""
    correlation_id = get_correlation_id(request)
    logger.warning("invalid_input", error=str(exc), correlation_id=correlation_id)
    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY, "Invalid Input", str(exc), correlation_id
    )


@app.exception_handler(RuleStoreLoadError)
async def reference_data_error_handler(request: Request, exc: RuleStoreLoadError):
    """Handle missing or unusable reference data."""
    correlation_id = get_correlation_id(request)
    logger.error("reference_data_unavailable", error=str(exc), correlation_id=correlation_id)
    return _error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Reference Data Unavailable",
        "Reference data is unavailable",
        correlation_id,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    correlation_id = get_correlation_id(request)

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        correlation_id=correlation_id,
    )

    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        str(exc) if settings.DEBUG else "An unexpected error occurred",
        correlation_id,
    )


# Include routers
app.include_router(interaction_router, prefix=settings.API_PREFIX)
app.include_router(drug_router, prefix=settings.API_PREFIX)
app.include_router(reference_data_router, prefix=settings.API_PREFIX)


@app.get("/health", response_model=HealthCheck)
async def health_check():
    """Check application health status."""
    reference_version = (
        reference_data_registry.current.version if reference_data_registry.loaded else None
    )

    if not settings.RESOLVER_SHARED_CACHE_ENABLED:
        redis_status = "disabled"
    else:
        redis_status = "healthy"
        try:
            await cache_manager.redis_client.ping()
        except Exception as e:
            redis_status = f"unhealthy: {str(e)}"

    overall_status = "healthy"
    if reference_version is None:
        overall_status = "unhealthy"
    elif redis_status not in ("healthy", "disabled"):
        overall_status = "degraded"

    return HealthCheck(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=settings.APP_VERSION,
        reference_data_version=reference_version,
        redis=redis_status,
        resolver=drug_resolver_service.stats(),
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("medsafety.main:app", host=settings.API_HOST, port=settings.API_PORT)

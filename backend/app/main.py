"""
Lengolf VIP Identity - customer-identity reconciliation service

FastAPI application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.core.config import get_settings
from backend.app.core.logging import setup_logging, get_logger
from backend.app.api import crm, health, vip
from backend.app.middleware.trace import TracingMiddleware
from backend.app.services.crm_adapter import ExternalFetchError
from backend.app.services.customer_matching import CustomerAlreadyLinked
from backend.app.services.mapping_store import StoreError
from backend.app.services.profile_repository import ProfileNotFound
from backend.app.services.vip_status import StatusCache

settings = get_settings()

# Initialize logging
setup_logging(level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    yield
    logger.info(f"Shutting down {settings.app_name}")

    from backend.app.core.database import crm_engine, engine
    await engine.dispose()
    await crm_engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Links booking-site profiles to CRM customers and reports VIP status",
    version=settings.app_version,
    lifespan=lifespan,
)

# Per-instance VIP status cache
app.state.status_cache = StatusCache(ttl_seconds=settings.vip_status_cache_ttl_seconds)

# Add Middleware
app.add_middleware(TracingMiddleware)

# CORS middleware for the booking frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
)


@app.exception_handler(ProfileNotFound)
async def profile_not_found_handler(request: Request, exc: ProfileNotFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(CustomerAlreadyLinked)
async def customer_already_linked_handler(request: Request, exc: CustomerAlreadyLinked):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": {
            "code": "already_linked_elsewhere",
            "message": "This customer record is already linked to another account",
        }},
    )


@app.exception_handler(ExternalFetchError)
async def external_fetch_error_handler(request: Request, exc: ExternalFetchError):
    logger.error(f"CRM unavailable: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": "Customer records are temporarily unavailable"},
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Temporary storage problem, please try again"},
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(
    vip.router,
    prefix=f"{settings.api_prefix}/vip",
    tags=["VIP"],
)
app.include_router(
    crm.router,
    prefix=f"{settings.api_prefix}/crm",
    tags=["CRM"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }

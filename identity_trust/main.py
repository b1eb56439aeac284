"""Main FastAPI application for the identity verification and trust score service."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from identity_trust.config import settings
from identity_trust.api.admin import router as admin_router
from identity_trust.api.guard import router as guard_router
from identity_trust.api.verifications import router as verifications_router
from identity_trust.api.verifier_callback import router as verifier_callback_router
from identity_trust.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    MetricsMiddleware,
    get_metrics
)
from identity_trust.models.api_models import HealthResponse
from identity_trust.observability import (
    setup_observability,
    instrument_fastapi_app,
    TracingContextMiddleware
)
from identity_trust.services.container import get_services


# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "Starting identity trust service",
        port=settings.port,
        host=settings.host,
        storage_backend=settings.storage_backend
    )

    setup_observability(
        service_name="identity-trust-service",
        service_version="1.0.0",
        otlp_endpoint=settings.otlp_endpoint
    )
    instrument_fastapi_app(app)

    services = get_services()
    if await services.db.health_check():
        logger.info("Storage backend reachable")
    else:
        logger.warning("Storage backend health check failed at startup")

    yield

    logger.info("Shutting down identity trust service")


app = FastAPI(
    title="Identity Trust Service",
    description="Identity verification state, trust scoring, admin review and sensitive-access audit",
    version="1.0.0",
    lifespan=lifespan
)

# Add middleware (order matters - last added is executed first)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(TracingContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(verifications_router)
app.include_router(guard_router)
app.include_router(verifier_callback_router)
app.include_router(admin_router)


@app.get("/healthz", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint. Reports degraded when storage is unreachable."""
    healthy = await get_services().db.health_check()
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(timezone.utc)
    )


@app.get("/metrics")
async def metrics_endpoint():
    """Application metrics endpoint."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "metrics": get_metrics()
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "identity_trust.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False
    )

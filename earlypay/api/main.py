"""FastAPI application factory"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from earlypay.api.middleware import RequestIDMiddleware, MetricsMiddleware
from earlypay.api.v1 import options, early_payments, simulate
from earlypay.domain.cache import TTLCache
from earlypay.domain.settlement import TransactionLocks
from earlypay.infrastructure.database.session import init_db
from earlypay.infrastructure.observability.logging import setup_logging
from earlypay.config import settings

# Setup structured logging
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        init_db()
    yield


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Early Payment Engine",
        description="Early payment discount quoting and settlement service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Shared across requests: commits serialize per transaction, config reads are cached
    app.state.transaction_locks = TransactionLocks()
    app.state.config_cache = TTLCache(
        max_entries=settings.config_cache_max_entries,
        ttl_seconds=settings.config_cache_ttl_seconds,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(options.router, prefix="/v1", tags=["options"])
    app.include_router(early_payments.router, prefix="/v1", tags=["early-payments"])
    app.include_router(simulate.router, prefix="/v1", tags=["simulation"])

    return app


app = create_app()

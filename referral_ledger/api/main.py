"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from referral_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from referral_ledger.api.v1 import agents, ingestion, payments, referrals, reports
from referral_ledger.infrastructure.observability.logging import setup_logging
from referral_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Referral Ledger",
        description="Clinic report reconciliation and agent commission ledger",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
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
    app.include_router(ingestion.router, prefix="/v1", tags=["ingestion"])
    app.include_router(reports.router, prefix="/v1", tags=["reports"])
    app.include_router(referrals.router, prefix="/v1", tags=["referrals"])
    app.include_router(agents.router, prefix="/v1", tags=["agents"])
    app.include_router(payments.router, prefix="/v1", tags=["payments"])

    return app


app = create_app()

"""Main FastAPI application module."""

from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from provenance.api.v1.router import router as v1_router
from provenance.core.config import Settings
from provenance.core.events import create_lifespan
from provenance.core.logging import configure_logging
from provenance.middleware.correlation import CorrelationMiddleware
from provenance.middleware.errors import register_error_handlers
from provenance.middleware.metrics import MetricsMiddleware


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API application."""
    settings = settings or Settings()
    configure_logging(testing=not settings.JSON_LOGS, level=settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.app_name,
        description="Content provenance verification against on-chain registries",
        version=settings.version,
        default_response_class=JSONResponse,
        lifespan=create_lifespan(settings),
    )

    # Middleware added last runs first: CORS, then correlation, then metrics
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(CorrelationMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )
    register_error_handlers(app)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Expose Prometheus metrics."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    def health_check(request: Request) -> dict[str, Any]:
        pipeline = request.app.state.pipeline
        return {
            "status": "healthy",
            "version": settings.version,
            "mode": "async" if pipeline.is_available else "sync",
            "cache": pipeline.service.cache.is_available(),
            "correlation_id": request.state.correlation_id,
        }

    app.include_router(v1_router, prefix=settings.api_prefix)
    return app


app = create_app()

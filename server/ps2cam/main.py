# FastAPI application factory with lifespan management.
# Entrypoint: uvicorn ps2cam.main:create_app --factory --host 0.0.0.0 --port 8080

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from ps2cam.config import get_settings
from ps2cam.exceptions import register_exception_handlers
from ps2cam.logging_config import configure_logging
from ps2cam.middleware import RequestContextMiddleware
from ps2cam.models.registry import ModelConfigRegistry
from ps2cam.models.replicate import build_prediction_backend
from ps2cam.rate_limit import limiter
from ps2cam.routes import debug, generate, health
from ps2cam.routes import prometheus as prometheus_routes
from ps2cam.services.generation import GenerationOrchestrator
from ps2cam.services.metrics import GenerationMetrics
from ps2cam.services.quota import UploadQuota

logger = structlog.get_logger(__name__)

BURST_LIMIT_WINDOW_SECONDS = "60"


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return a structured JSON 429 consistent with Ps2camError responses."""
    logger.warning(
        "burst_limit_exceeded",
        path=request.url.path,
        method=request.method,
        detail=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={"error": f"Rate limit exceeded: {exc.detail}"},
        headers={"Retry-After": BURST_LIMIT_WINDOW_SECONDS},
    )


if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider


def _configure_otel(exporter_type: str) -> "TracerProvider | None":
    """Configure OpenTelemetry tracing. Only the console exporter ships."""
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    if exporter_type != "console":
        logger.warning("unknown_otel_exporter", exporter=exporter_type)
        return None

    from opentelemetry.sdk.trace.export import ConsoleSpanExporter

    provider = TracerProvider()
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    from opentelemetry import trace

    trace.set_tracer_provider(provider)
    logger.info("otel_configured", exporter=exporter_type)
    return provider


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the registry, quota, backend and orchestrator; close their connections on shutdown."""
    settings = get_settings()

    otel_provider = None
    otel_exporter = os.environ.get("OTEL_EXPORTER", "")
    if otel_exporter:
        otel_provider = _configure_otel(otel_exporter)

    registry = ModelConfigRegistry(default_model_name=settings.current_model or None)
    quota = UploadQuota.from_settings(settings)
    backend = build_prediction_backend(settings)
    metrics = GenerationMetrics()
    orchestrator = GenerationOrchestrator(registry, quota, backend, settings, metrics=metrics)

    app.state.model_registry = registry
    app.state.quota = quota
    app.state.prediction_backend = backend
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.orchestrator = orchestrator

    if not settings.api_token:
        logger.warning("replicate_api_token_missing", hint="Set REPLICATE_API_TOKEN")
    logger.info(
        "startup_complete",
        model=registry.get_default_model_name(),
        prediction_strategy=backend.strategy,
        upload_quota=settings.upload_quota if quota.enabled else None,
        budget_seconds=settings.generation_budget_seconds(),
    )

    yield

    if otel_provider is not None:
        otel_provider.shutdown()

    await backend.aclose()
    await quota.aclose()


def _parse_origins(allowed_origins: str) -> list[str]:
    """Parse comma-separated CORS origins. Empty string → deny all."""
    if not allowed_origins.strip():
        logger.warning(
            "cors_no_origins_configured",
            hint="Set ALLOWED_ORIGINS env var. Cross-origin requests will be rejected.",
        )
        return []
    return [origin.strip() for origin in allowed_origins.split(",") if origin.strip()]


def create_app() -> FastAPI:
    """Application factory. Invoked by: uvicorn ps2cam.main:create_app --factory"""
    settings = get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title="PS2 Camera",
        description="Restyles uploaded photos as PS2-era game renders",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

    # Middleware order (Starlette applies in reverse): CORS → RequestContext
    app.add_middleware(RequestContextMiddleware)

    origins = _parse_origins(settings.allowed_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type", "X-Result-Shape", "X-Request-ID"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After", "X-Request-ID"],
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(generate.router, tags=["generate"])
    app.include_router(prometheus_routes.router, tags=["prometheus"])
    if settings.enable_debug_routes:
        app.include_router(debug.router, prefix="/debug", tags=["debug"])

    return app

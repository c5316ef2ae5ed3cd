# ─────────────────────────────────────────────────────────────────────────────
# Health Check Routes — liveness, readiness, and metrics
# ─────────────────────────────────────────────────────────────────────────────
#   /health        → Liveness probe. "Is the process alive?" Near-zero cost.
#
#   /health/ready  → Readiness probe. "Can it serve generations?"
#                    Needs a provider API token and a resolvable model.
#                    The rate-limit store is reported but never gates
#                    readiness: the quota fails open when the store is down.
#
#   /metrics       → Generation outcome counts and latency.
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ps2cam.config import Settings
from ps2cam.dependencies import get_metrics, get_model_registry, get_quota, get_settings_dep
from ps2cam.models.registry import ModelConfigRegistry
from ps2cam.schemas import LivenessResponse, ReadinessResponse
from ps2cam.services.metrics import GenerationMetrics
from ps2cam.services.quota import UploadQuota

router = APIRouter()


@router.get("/health", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe — no deps, no I/O."""
    return LivenessResponse(status="ok")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(
    registry: ModelConfigRegistry = Depends(get_model_registry),
    quota: UploadQuota = Depends(get_quota),
    settings: Settings = Depends(get_settings_dep),
) -> JSONResponse:
    """Readiness probe — 503 until the instance can actually generate."""
    api_key_configured = bool(settings.api_token)
    model = registry.get_default_model_name()
    model_available = registry.has(model)

    if not quota.enabled:
        rate_limiter = "disabled"
    elif await quota.is_healthy():
        rate_limiter = "enabled"
    else:
        rate_limiter = "unavailable"

    ready = api_key_configured and model_available
    response = ReadinessResponse(
        status="ready" if ready else "not_ready",
        api_key_configured=api_key_configured,
        model=model,
        model_available=model_available,
        rate_limiter=rate_limiter,
        prediction_strategy=settings.prediction_strategy,
    )
    return JSONResponse(
        status_code=200 if ready else 503,
        content=response.model_dump(),
    )


@router.get("/metrics")
async def metrics_endpoint(
    metrics: GenerationMetrics = Depends(get_metrics),
) -> dict[str, Any]:
    """Generation metrics: outcome counts, polls and latency."""
    return metrics.to_dict()

# ─────────────────────────────────────────────────────────────────────────────
# Debug Routes — registry, effective config, and input preview
# ─────────────────────────────────────────────────────────────────────────────
# Only mounted when settings.enable_debug_routes is True.
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

from fastapi import APIRouter, Depends

from ps2cam.config import Settings
from ps2cam.dependencies import get_model_registry, get_quota, get_settings_dep
from ps2cam.models.registry import ModelConfigRegistry
from ps2cam.pipeline.prompt_templates import build_model_input
from ps2cam.schemas import GenerateRequest
from ps2cam.services.quota import UploadQuota

router = APIRouter()


@router.get("/models")
async def list_models(
    registry: ModelConfigRegistry = Depends(get_model_registry),
) -> dict[str, Any]:
    """List registered models with their pinned versions."""
    return {
        "default": registry.get_default_model_name(),
        "models": [
            {
                "name": name,
                "version": registry.get_model_config(name).version,
                "parameters": sorted(registry.get_model_config(name).default_input),
            }
            for name in registry.names
        ],
    }


@router.get("/config")
async def effective_config(
    settings: Settings = Depends(get_settings_dep),
    quota: UploadQuota = Depends(get_quota),
) -> dict[str, Any]:
    """Effective waiting budget and quota. Never includes the API token."""
    return {
        "prediction_strategy": settings.prediction_strategy,
        "request_timeout_seconds": settings.request_timeout_seconds,
        "poll_interval_seconds": settings.poll_interval_seconds,
        "poll_max_attempts": settings.poll_max_attempts,
        "generation_budget_seconds": settings.generation_budget_seconds(),
        "max_request_seconds": settings.max_request_seconds,
        "upload_quota": settings.upload_quota if quota.enabled else None,
        "api_key_configured": bool(settings.api_token),
    }


@router.post("/input")
async def preview_input(
    body: GenerateRequest,
    registry: ModelConfigRegistry = Depends(get_model_registry),
) -> dict[str, Any]:
    """Show the exact provider input a request would produce. Nothing is submitted."""
    descriptor = registry.get_model_config(registry.get_default_model_name())
    return {
        "model": descriptor.name,
        "version": descriptor.version,
        "input": build_model_input(descriptor, body),
    }

# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection — FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: lifespan creates → app.state stores → Depends() injects.
# No global variables. Every dependency is explicit in endpoint signatures.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import Request

from ps2cam.config import Settings
from ps2cam.models.registry import ModelConfigRegistry
from ps2cam.services.generation import GenerationOrchestrator
from ps2cam.services.metrics import GenerationMetrics
from ps2cam.services.quota import UploadQuota


def get_model_registry(request: Request) -> ModelConfigRegistry:
    """Inject ModelConfigRegistry into endpoints via Depends()."""
    return request.app.state.model_registry  # type: ignore[no-any-return]


def get_quota(request: Request) -> UploadQuota:
    """Inject UploadQuota into endpoints via Depends()."""
    return request.app.state.quota  # type: ignore[no-any-return]


def get_settings_dep(request: Request) -> Settings:
    """Inject Settings into endpoints via Depends()."""
    return request.app.state.settings  # type: ignore[no-any-return]


def get_metrics(request: Request) -> GenerationMetrics:
    """Inject GenerationMetrics into endpoints via Depends()."""
    return request.app.state.metrics  # type: ignore[no-any-return]


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """Inject GenerationOrchestrator into endpoints via Depends()."""
    return request.app.state.orchestrator  # type: ignore[no-any-return]

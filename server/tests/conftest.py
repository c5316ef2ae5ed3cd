# ─────────────────────────────────────────────────────────────────────────────
# Test Fixtures — shared across all tests
# ─────────────────────────────────────────────────────────────────────────────

import os
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from ps2cam.config import Settings
from ps2cam.main import create_app
from ps2cam.models.job import PredictionJob, PredictionState
from ps2cam.models.registry import ModelConfigRegistry
from ps2cam.models.replicate import ReplicateClient
from ps2cam.rate_limit import limiter
from ps2cam.services.generation import GenerationOrchestrator
from ps2cam.services.metrics import GenerationMetrics
from ps2cam.services.quota import RateLimitDecision, UploadQuota

API_URL = "https://api.replicate.com"
RESULT_URL = "https://replicate.delivery/pbxt/abc123/out-0.png"
POLL_URL = f"{API_URL}/v1/predictions/abc123"


@pytest.fixture(autouse=True)
def _reset_burst_limiter():
    """slowapi keeps its counters in module state; start every test clean."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing: token set, no waiting between polls."""
    return Settings(
        replicate_api_token="r8_test_token",
        request_timeout_seconds=10,
        poll_interval_seconds=0,
        poll_max_attempts=5,
        rate_limit_storage_uri="",
        enable_debug_routes=True,
        log_json=False,
        log_level="DEBUG",
    )


@pytest.fixture
def registry() -> ModelConfigRegistry:
    return ModelConfigRegistry()


@pytest.fixture
def pending_job() -> PredictionJob:
    return PredictionJob(poll_url=POLL_URL, id="abc123")


@pytest.fixture
def succeeded_job(pending_job: PredictionJob) -> PredictionJob:
    return pending_job.advance(
        state=PredictionState.succeeded,
        output=[RESULT_URL],
        raw_status="succeeded",
        polls=2,
    )


@pytest.fixture
def mock_backend(pending_job: PredictionJob, succeeded_job: PredictionJob) -> MagicMock:
    """PredictionBackend double: submit → pending job, await_terminal → succeeded."""
    backend = MagicMock(spec=ReplicateClient)
    backend.strategy = "poll"
    backend.submit = AsyncMock(return_value=pending_job)
    backend.await_terminal = AsyncMock(return_value=succeeded_job)
    backend.aclose = AsyncMock()
    return backend


@pytest.fixture
def mock_quota() -> MagicMock:
    """UploadQuota double that allows everything without enforcing."""
    quota = MagicMock(spec=UploadQuota)
    quota.enabled = False
    quota.limit = 3
    quota.check_and_consume = AsyncMock(return_value=RateLimitDecision.bypass())
    quota.is_healthy = AsyncMock(return_value=True)
    return quota


@pytest.fixture
def metrics() -> GenerationMetrics:
    return GenerationMetrics()


@pytest.fixture
def client(
    test_settings: Settings,
    registry: ModelConfigRegistry,
    mock_quota: MagicMock,
    mock_backend: MagicMock,
    metrics: GenerationMetrics,
) -> TestClient:
    """FastAPI TestClient with mocked provider and quota.

    We clear the settings cache and set env vars so create_app() registers
    the debug routes and permissive CORS. The lifespan does not run (no
    context manager), so app.state is populated here directly.
    """
    from ps2cam.config import get_settings

    get_settings.cache_clear()

    env_overrides = {
        "LOG_JSON": "false",
        "LOG_LEVEL": "DEBUG",
        "ENABLE_DEBUG_ROUTES": "true",
        "ALLOWED_ORIGINS": "*",  # Tests need permissive CORS (prod defaults to deny-all)
    }
    for k, v in env_overrides.items():
        os.environ[k] = v

    try:
        app = create_app()
        client = TestClient(app)

        app.state.model_registry = registry
        app.state.quota = mock_quota
        app.state.prediction_backend = mock_backend
        app.state.settings = test_settings
        app.state.metrics = metrics
        app.state.orchestrator = GenerationOrchestrator(
            registry, mock_quota, mock_backend, test_settings, metrics=metrics
        )

        return client
    finally:
        for k in env_overrides:
            os.environ.pop(k, None)
        get_settings.cache_clear()

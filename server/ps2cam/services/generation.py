# Core generation orchestrator: validate → quota → input → submit → wait → result.
# Never raises: every path ends in a GenerationOutcome the route can render.


import time
from dataclasses import dataclass, field
from enum import StrEnum

import structlog
from opentelemetry import trace

from ps2cam.config import Settings
from ps2cam.exceptions import (
    ConfigurationError,
    GenerationFailedError,
    GenerationTimeoutError,
    Ps2camError,
    RateLimitedError,
)
from ps2cam.models.job import PredictionJob
from ps2cam.models.protocol import PredictionBackend
from ps2cam.models.registry import ModelConfigRegistry, ModelDescriptor
from ps2cam.pipeline.output import select_output_url
from ps2cam.pipeline.prompt_templates import build_model_input
from ps2cam.schemas import GenerateRequest
from ps2cam.services.metrics import SUCCESS, GenerationMetrics
from ps2cam.services.quota import RateLimitDecision, UploadQuota

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class GenerationStage(StrEnum):
    """Orchestrator state. The last three are terminal."""

    idle = "idle"
    validating = "validating"
    rate_limiting = "rate_limiting"
    building_input = "building_input"
    submitting = "submitting"
    polling = "polling"
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timed_out"


@dataclass(frozen=True)
class GenerationOutcome:
    """Result of one generate() call: an image URI or a typed error, never both."""

    stage: GenerationStage
    image_url: str | None = None
    error: Ps2camError | None = None
    rate_limit: RateLimitDecision = field(default_factory=RateLimitDecision.bypass)
    model: str | None = None
    failed_during: GenerationStage | None = None
    polls: int = 0
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.image_url is not None

    def headers(self) -> dict[str, str]:
        """Rate-limit telemetry plus any error-specific headers (Retry-After)."""
        headers = self.rate_limit.headers()
        if self.error is not None:
            headers.update(self.error.headers())
        return headers


class GenerationOrchestrator:
    """Turns one GenerateRequest into one stylized image URI.

    Collaborators are injected once at startup (lifespan) and shared by all
    requests; no per-request state lives on the instance. Retries happen
    only inside the PredictionBackend.
    """

    def __init__(
        self,
        registry: ModelConfigRegistry,
        quota: UploadQuota,
        backend: PredictionBackend,
        settings: Settings,
        metrics: GenerationMetrics | None = None,
    ) -> None:
        self._registry = registry
        self._quota = quota
        self._backend = backend
        self._settings = settings
        self._metrics = metrics

    async def generate(
        self, request: GenerateRequest, client_identity: str | None = None
    ) -> GenerationOutcome:
        """Full generation: validate → rate limit → build input → submit → poll."""
        with tracer.start_as_current_span("generate") as span:
            span.set_attribute("prediction_strategy", self._backend.strategy)
            outcome = await self._generate_traced(request, client_identity)
            span.set_attribute("stage", outcome.stage.value)
            if outcome.model:
                span.set_attribute("model", outcome.model)
            if outcome.error is not None:
                span.set_attribute("error_type", outcome.error.kind)

        if self._metrics:
            self._metrics.record_outcome(
                SUCCESS if outcome.ok else outcome.error.kind,  # type: ignore[union-attr]
                outcome.elapsed_ms,
                polls=outcome.polls,
            )
        return outcome

    async def _generate_traced(
        self, request: GenerateRequest, client_identity: str | None
    ) -> GenerationOutcome:
        start = time.perf_counter()
        stage = GenerationStage.validating
        descriptor: ModelDescriptor | None = None
        decision = RateLimitDecision.bypass()
        job: PredictionJob | None = None

        try:
            descriptor = self._validate()

            stage = GenerationStage.rate_limiting
            decision = await self._quota.check_and_consume(client_identity)
            if not decision.allowed:
                raise RateLimitedError(decision.limit, decision.remaining, decision.reset_at)

            stage = GenerationStage.building_input
            model_input = build_model_input(descriptor, request)

            stage = GenerationStage.submitting
            with tracer.start_as_current_span("submit"):
                job = await self._backend.submit(descriptor, model_input)

            stage = GenerationStage.polling
            with tracer.start_as_current_span("await_terminal"):
                job = await self._backend.await_terminal(job)

            image_url = select_output_url(job.output)
        except Ps2camError as e:
            return self._failed(e, stage, descriptor, decision, job, start)
        except Exception as e:
            logger.exception(
                "generation_unexpected_error",
                stage=stage.value,
                model=descriptor.name if descriptor else None,
            )
            wrapped = GenerationFailedError(
                str(e) or type(e).__name__,
                model=descriptor.name if descriptor else "",
                version=descriptor.version if descriptor else "",
            )
            return self._failed(wrapped, stage, descriptor, decision, job, start, logged=True)

        elapsed = _elapsed_ms(start)
        logger.info(
            "generated",
            model=descriptor.name,
            prediction_id=job.id,
            polls=job.polls,
            time_ms=elapsed,
            remaining=decision.remaining if decision.enforced else None,
        )
        return GenerationOutcome(
            stage=GenerationStage.succeeded,
            image_url=image_url,
            rate_limit=decision,
            model=descriptor.name,
            polls=job.polls,
            elapsed_ms=elapsed,
        )

    def _validate(self) -> ModelDescriptor:
        if not self._settings.api_token:
            raise ConfigurationError()
        return self._registry.get_model_config(self._registry.get_default_model_name())

    def _failed(
        self,
        error: Ps2camError,
        stage: GenerationStage,
        descriptor: ModelDescriptor | None,
        decision: RateLimitDecision,
        job: PredictionJob | None,
        start: float,
        logged: bool = False,
    ) -> GenerationOutcome:
        elapsed = _elapsed_ms(start)
        polls = error.polls or (job.polls if job else 0)
        fields = {
            "error": error.message,
            "error_type": error.kind,
            "stage": stage.value,
            "model": descriptor.name if descriptor else None,
            "version": descriptor.version if descriptor else None,
            "prediction_id": job.id if job else None,
            "attempts": polls,
            "time_ms": elapsed,
        }

        if error.expected:
            logger.info("generation_rejected", **fields)
        elif not logged:
            logger.error("generation_failed", details=error.details, **fields)

        terminal = (
            GenerationStage.timed_out
            if isinstance(error, GenerationTimeoutError)
            else GenerationStage.failed
        )
        return GenerationOutcome(
            stage=terminal,
            error=error,
            rate_limit=decision,
            model=descriptor.name if descriptor else None,
            failed_during=stage,
            polls=polls,
            elapsed_ms=elapsed,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)

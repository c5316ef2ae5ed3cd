# ─────────────────────────────────────────────────────────────────────────────
# Replicate Prediction Client — submit, poll, and run-and-wait with retry
# ─────────────────────────────────────────────────────────────────────────────
# Two waiting strategies behind one PredictionBackend contract:
#
#   ReplicateClient          POST /v1/predictions, then GET urls.get until
#                            succeeded / failed / attempt budget exhausted.
#
#   BlockingReplicateClient  POST with "Prefer: wait" (provider holds the
#                            connection until done), each attempt raced
#                            against a timeout, exponential backoff between
#                            attempts, polling fallback if the wait lapses.
#
# Transient poll trouble (5xx, 429, connection errors) costs one attempt and
# polling continues. Everything else surfaces as a Ps2camError subclass.
# ─────────────────────────────────────────────────────────────────────────────

import asyncio
import re
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx
import structlog

from ps2cam.config import Settings
from ps2cam.exceptions import (
    AuthenticationError,
    GenerationFailedError,
    GenerationTimeoutError,
    MalformedResponseError,
    NoSubjectDetectedError,
    Ps2camError,
    RetriesExhaustedError,
    SubmissionError,
)
from ps2cam.models.job import PredictionJob, PredictionState
from ps2cam.models.protocol import PredictionBackend
from ps2cam.models.registry import ModelDescriptor

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.replicate.com"

# Provider wording varies by model ("No face detected in image",
# "no faces were detected", "No subject detected").
NO_SUBJECT_PATTERN = re.compile(r"\bno\s+(?:face|subject|person|people)s?\b.*\bdetected\b", re.IGNORECASE)

_CANCELED_STATUSES = frozenset({"canceled", "cancelled", "aborted"})
_KNOWN_STATES = {state.value: state for state in PredictionState}

Sleep = Callable[[float], Awaitable[None]]


def classify_failure(message: str) -> Ps2camError:
    """Map a provider failure message onto NoSubjectDetected or GenerationFailed."""
    if NO_SUBJECT_PATTERN.search(message):
        return NoSubjectDetectedError(message)
    return GenerationFailedError(message)


class ReplicateClient:
    """Async client for the provider's raw submit/poll prediction protocol.

    Holds one httpx.AsyncClient for the process lifetime; close it with
    ``aclose()`` at shutdown.
    """

    strategy = "poll"

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_API_URL,
        *,
        timeout_s: float = 10.0,
        cancel_timeout_s: float | None = None,
        poll_interval_s: float = 5.0,
        max_poll_attempts: int = 12,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout_s)
        self._cancel_timeout_s = timeout_s if cancel_timeout_s is None else cancel_timeout_s
        self._poll_interval_s = poll_interval_s
        self._max_poll_attempts = max_poll_attempts
        self._sleep = sleep

    @property
    def poll_budget(self) -> tuple[float, int]:
        """(interval seconds, max attempts) used by ``await_terminal``."""
        return self._poll_interval_s, self._max_poll_attempts

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── PredictionBackend ────────────────────────────────────────────────────

    async def submit(
        self, descriptor: ModelDescriptor, model_input: Mapping[str, Any]
    ) -> PredictionJob:
        """Create a prediction. One outbound call, no retry."""
        return await self._create_prediction(descriptor, model_input)

    async def await_terminal(self, job: PredictionJob) -> PredictionJob:
        return await self.run_until_terminal(job)

    # ── Protocol primitives ──────────────────────────────────────────────────

    async def poll(self, job: PredictionJob) -> PredictionJob:
        """One status check. A failed prediction comes back with state failed and its error."""
        if job.is_terminal:
            return job

        polled = job.advance(polls=job.polls + 1)
        try:
            response = await self._http.get(job.poll_url, headers=self._headers)
        except httpx.RequestError as e:
            logger.warning(
                "prediction_poll_transient",
                prediction_id=job.id,
                error=str(e) or type(e).__name__,
            )
            return polled

        if response.status_code == 401:
            logger.error("prediction_auth_rejected", phase="poll", prediction_id=job.id)
            raise AuthenticationError()
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(
                "prediction_poll_transient",
                prediction_id=job.id,
                status=response.status_code,
            )
            return polled
        if not response.is_success:
            raise MalformedResponseError(
                f"status check returned HTTP {response.status_code}",
                details=response.text,
            )

        return self._apply_status(polled, self._json(response, "poll"))

    async def run_until_terminal(
        self,
        job: PredictionJob,
        interval_s: float | None = None,
        max_attempts: int | None = None,
    ) -> PredictionJob:
        """Poll until succeeded, failed, or ``max_attempts`` polls are spent.

        Sleeps ``interval_s`` after each non-terminal poll. Exhausting the
        budget raises GenerationTimeoutError; zero attempts raises it
        without touching the network.

        A failed prediction raises its classified error carrying the number
        of polls spent.
        """
        interval = self._poll_interval_s if interval_s is None else interval_s
        attempts = self._max_poll_attempts if max_attempts is None else max_attempts

        if job.is_terminal:
            return self._settle(job)

        for attempt in range(1, attempts + 1):
            job = await self.poll(job)
            if job.is_terminal:
                return self._settle(job)
            logger.debug(
                "prediction_pending",
                prediction_id=job.id,
                status=job.raw_status,
                attempt=attempt,
                max_attempts=attempts,
            )
            if attempt < attempts:
                await self._sleep(interval)

        logger.warning(
            "prediction_poll_budget_exhausted",
            prediction_id=job.id,
            attempts=attempts,
            interval_s=interval,
            last_status=job.raw_status,
        )
        raise GenerationTimeoutError(attempts, interval)

    async def cancel(self, job: PredictionJob) -> None:
        """Ask the provider to stop a prediction nobody waits for any more. Best effort."""
        if job.cancel_url is None or job.is_terminal:
            return
        try:
            response = await self._http.post(
                job.cancel_url, headers=self._headers, timeout=self._cancel_timeout_s
            )
        except httpx.RequestError as e:
            logger.warning(
                "prediction_cancel_failed",
                prediction_id=job.id,
                error=str(e) or type(e).__name__,
            )
            return
        if not response.is_success:
            logger.warning(
                "prediction_cancel_failed", prediction_id=job.id, status=response.status_code
            )
            return
        logger.info("prediction_canceled", prediction_id=job.id)

    # ── Internals ────────────────────────────────────────────────────────────

    async def _create_prediction(
        self,
        descriptor: ModelDescriptor,
        model_input: Mapping[str, Any],
        extra_headers: Mapping[str, str] | None = None,
    ) -> PredictionJob:
        payload = {"version": descriptor.version, "input": dict(model_input)}
        logger.info("prediction_submitting", model=descriptor.name, version=descriptor.version)

        try:
            response = await self._http.post(
                "/v1/predictions",
                json=payload,
                headers={**self._headers, **(extra_headers or {})},
            )
        except httpx.RequestError as e:
            raise SubmissionError(
                None, str(e) or type(e).__name__, descriptor.name, descriptor.version
            ) from e

        if response.status_code == 401:
            logger.error("prediction_auth_rejected", phase="submit", model=descriptor.name)
            raise AuthenticationError()
        if not response.is_success:
            raise SubmissionError(
                response.status_code, response.text, descriptor.name, descriptor.version
            )

        data = self._json(response, "submit")
        urls = data.get("urls")
        poll_url = urls.get("get") if isinstance(urls, dict) else None
        if not isinstance(poll_url, str) or not poll_url:
            raise MalformedResponseError(
                f"no polling URL for model {descriptor.name} (version {descriptor.version})",
                details=response.text,
            )

        cancel_url = urls.get("cancel")
        job = PredictionJob(
            poll_url=poll_url,
            id=data.get("id"),
            cancel_url=cancel_url if isinstance(cancel_url, str) and cancel_url else None,
        )
        logger.info("prediction_submitted", prediction_id=job.id, model=descriptor.name)
        return self._apply_status(job, data)

    @staticmethod
    def _json(response: httpx.Response, phase: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"unparseable JSON during {phase}", details=response.text[:500]
            ) from e
        if not isinstance(data, dict):
            raise MalformedResponseError(f"expected a JSON object during {phase}", details=response.text[:500])
        return data

    @staticmethod
    def _settle(job: PredictionJob) -> PredictionJob:
        if job.state is PredictionState.failed:
            error = classify_failure(job.error or "Unknown error occurred")
            error.polls = job.polls
            raise error
        logger.info("prediction_succeeded", prediction_id=job.id, polls=job.polls)
        return job

    @staticmethod
    def _apply_status(job: PredictionJob, data: Mapping[str, Any]) -> PredictionJob:
        raw = data.get("status")
        raw_status = None if raw is None else str(raw)
        state = _KNOWN_STATES.get(raw_status or "")

        if state is PredictionState.succeeded:
            return job.advance(state=state, output=data.get("output"), raw_status=raw_status)

        message: str | None = None
        if state is PredictionState.failed:
            message = str(data.get("error") or "Unknown error occurred")
        elif raw_status in _CANCELED_STATUSES:
            message = f"Prediction was {raw_status}"
        if message is not None:
            logger.info(
                "prediction_failed",
                prediction_id=job.id,
                status=raw_status,
                error=message,
                polls=job.polls,
            )
            return job.advance(state=PredictionState.failed, error=message, raw_status=raw_status)

        if state is None:
            logger.warning("prediction_unexpected_status", prediction_id=job.id, status=raw_status)
            return job.advance(raw_status=raw_status)

        return job.advance(state=state, raw_status=raw_status)


class BlockingReplicateClient(ReplicateClient):
    """Run-and-wait strategy: each attempt is a blocking create raced against a timeout.

    ``submit`` already returns a terminal job, so ``await_terminal`` is a
    pass-through (it only polls if handed a job that is still running).
    Retries cover timeouts, transport errors, 5xx/429 rejections and
    malformed responses. Auth failures, 4xx rejections and provider-side
    generation failures are final.
    A prediction created by an abandoned attempt is canceled before the next one.
    """

    strategy = "blocking"

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_API_URL,
        *,
        max_retries: int = 3,
        attempt_timeout_s: float = 60.0,
        backoff_base_s: float = 1.0,
        wait_s: int = 60,
        **kwargs: Any,
    ) -> None:
        super().__init__(api_token, base_url, **kwargs)
        self._max_retries = max_retries
        self._attempt_timeout_s = attempt_timeout_s
        self._backoff_base_s = backoff_base_s
        self._wait_s = wait_s

    async def submit(
        self, descriptor: ModelDescriptor, model_input: Mapping[str, Any]
    ) -> PredictionJob:
        return await self.run_with_retry(descriptor, model_input)

    async def run_with_retry(
        self,
        descriptor: ModelDescriptor,
        model_input: Mapping[str, Any],
        max_retries: int | None = None,
        attempt_timeout_s: float | None = None,
    ) -> PredictionJob:
        """Up to ``max_retries`` attempts, sleeping base * 2**attempt between them."""
        retries = self._max_retries if max_retries is None else max_retries
        timeout = self._attempt_timeout_s if attempt_timeout_s is None else attempt_timeout_s
        last_error: BaseException | None = None

        for attempt in range(retries):
            created: list[PredictionJob] = []
            try:
                return await asyncio.wait_for(
                    self._run_once(descriptor, model_input, created),
                    timeout=timeout,
                )
            except TimeoutError as e:
                last_error = e
            except SubmissionError as e:
                if not e.retryable:
                    raise
                last_error = e
            except (MalformedResponseError, GenerationTimeoutError) as e:
                last_error = e

            logger.warning(
                "prediction_attempt_failed",
                model=descriptor.name,
                attempt=attempt + 1,
                max_retries=retries,
                error_type=type(last_error).__name__,
                error=str(last_error),
            )
            # The provider keeps running an abandoned prediction until told otherwise.
            if created:
                await self.cancel(created[-1])
            if attempt < retries - 1:
                await self._sleep(self._backoff_base_s * 2**attempt)

        logger.error(
            "prediction_retries_exhausted",
            model=descriptor.name,
            version=descriptor.version,
            attempts=retries,
        )
        raise RetriesExhaustedError(retries, last_error)

    async def _run_once(
        self,
        descriptor: ModelDescriptor,
        model_input: Mapping[str, Any],
        created: list[PredictionJob],
    ) -> PredictionJob:
        job = await self._create_prediction(
            descriptor,
            model_input,
            extra_headers={"Prefer": f"wait={self._wait_s}"},
        )
        created.append(job)
        # The provider may release the connection before the prediction ends.
        return await self.run_until_terminal(job)


def build_prediction_backend(settings: Settings) -> PredictionBackend:
    """Pick the waiting strategy named by ``settings.prediction_strategy``."""
    common: dict[str, Any] = {
        "timeout_s": settings.request_timeout_seconds,
        "poll_interval_s": settings.poll_interval_seconds,
        "max_poll_attempts": settings.poll_max_attempts,
    }
    if settings.prediction_strategy == "blocking":
        # Blocking calls hold the connection for up to wait_s.
        common["timeout_s"] = max(settings.request_timeout_seconds, settings.blocking_wait_seconds + 5)
        common["cancel_timeout_s"] = settings.request_timeout_seconds
        return BlockingReplicateClient(
            settings.api_token,
            settings.replicate_api_url,
            max_retries=settings.blocking_max_retries,
            attempt_timeout_s=settings.blocking_attempt_timeout_seconds,
            backoff_base_s=settings.blocking_backoff_base_seconds,
            wait_s=settings.blocking_wait_seconds,
            **common,
        )
    return ReplicateClient(settings.api_token, settings.replicate_api_url, **common)

# ─────────────────────────────────────────────────────────────────────────────
# Custom Exceptions + FastAPI Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────


import math
import time
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


# ── Exception hierarchy ──────────────────────────────────────────────────────


class Ps2camError(Exception):
    """Base exception for every generation outcome that is not a success.

    ``expected`` marks user-facing outcomes (quota reached, no face in the
    photo) that are logged at info rather than as incidents.
    """

    expected: bool = False
    # Status checks spent on the prediction before this outcome, when known.
    polls: int = 0

    def __init__(self, message: str, status_code: int = 500, details: str | None = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_body(self) -> dict[str, str]:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def headers(self) -> dict[str, str]:
        return {}


class ConfigurationError(Ps2camError):
    """Raised when the server cannot reach the provider at all (no API token)."""

    def __init__(self, reason: str = "API key is missing"):
        super().__init__(f"Server configuration error: {reason}", status_code=500)


class UnknownModelError(Ps2camError):
    """Raised when a model name has no registry entry."""

    def __init__(self, model_name: str, available: list[str] | None = None):
        self.model_name = model_name
        details = f"Available: {', '.join(available)}" if available else None
        super().__init__(
            f"Invalid model configuration for model: {model_name}",
            status_code=500,
            details=details,
        )


class RateLimitedError(Ps2camError):
    """Raised when a client has used up its upload quota for the window."""

    expected = True

    def __init__(self, limit: int, remaining: int = 0, reset_at: float | None = None):
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        super().__init__(
            "Too many uploads in 1 day. Please try again after 24 hours.",
            status_code=429,
        )

    @property
    def retry_after_seconds(self) -> int:
        if self.reset_at is None:
            return 24 * 60 * 60
        return max(1, math.ceil(self.reset_at - time.time()))

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after_seconds)}


class AuthenticationError(Ps2camError):
    """Raised when the provider rejects our credential."""

    def __init__(self) -> None:
        super().__init__("Authentication failed. Please check your API key.", status_code=401)


class SubmissionError(Ps2camError):
    """Raised when the provider refuses a prediction request.

    ``provider_status`` is None when the request never got a response
    (connection refused, DNS, read timeout).
    """

    def __init__(self, provider_status: int | None, body: str, model: str = "", version: str = ""):
        self.provider_status = provider_status
        self.body = body
        target = f" for model {model} (version {version})" if model else ""
        status_text = f"with status {provider_status}" if provider_status else "without a response"
        super().__init__(
            f"API request failed{target} {status_text}",
            status_code=provider_status if provider_status and provider_status >= 400 else 502,
            details=body,
        )

    @property
    def retryable(self) -> bool:
        return self.provider_status is None or self.provider_status == 429 or self.provider_status >= 500


class MalformedResponseError(Ps2camError):
    """Raised when a provider response breaks the expected contract."""

    def __init__(self, reason: str, details: str | None = None):
        super().__init__(f"Invalid response from prediction API: {reason}", status_code=502, details=details)


class NoSubjectDetectedError(Ps2camError):
    """Raised when the provider could not find a face/subject in the photo."""

    expected = True

    def __init__(self, provider_message: str = ""):
        self.provider_message = provider_message
        super().__init__(
            "No face detected in the uploaded image. "
            "Please try a different image with a clear face.",
            status_code=400,
        )


class GenerationFailedError(Ps2camError):
    """Raised when the provider reports a failed prediction."""

    def __init__(self, reason: str, model: str = "", version: str = ""):
        target = f" for model {model} (version {version})" if model else ""
        super().__init__(f"Image generation failed{target}", status_code=500, details=reason)


class GenerationTimeoutError(Ps2camError):
    """Raised when the polling budget runs out before a terminal state."""

    def __init__(self, attempts: int, interval_s: float):
        self.attempts = attempts
        self.polls = attempts
        self.interval_s = interval_s
        super().__init__(
            "Image generation timed out. Please try again later.",
            status_code=504,
            details=f"No terminal state after {attempts} polls at {interval_s}s",
        )


class RetriesExhaustedError(Ps2camError):
    """Raised by the run-and-wait client after its last backoff attempt."""

    def __init__(self, attempts: int, last_error: BaseException | None = None):
        self.attempts = attempts
        self.last_error = last_error
        reason = None
        if last_error is not None:
            reason = str(last_error) or type(last_error).__name__
        super().__init__(
            f"Image generation failed after {attempts} attempts. Please try again later.",
            status_code=503,
            details=reason,
        )


# ── Handler registration ────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app.

    Every error body has the same shape: {"error": str, "details"?: str}.
    """

    @app.exception_handler(Ps2camError)
    async def ps2cam_error_handler(request: Request, exc: Ps2camError) -> JSONResponse:
        log = logger.info if exc.expected else logger.error
        log("ps2cam_error", error=exc.message, error_type=exc.kind, status=exc.status_code)
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_body(),
            headers=exc.headers(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = "; ".join(_format_validation_error(err) for err in exc.errors())
        logger.info("request_validation_failed", path=request.url.path, details=details)
        return JSONResponse(
            status_code=422,
            content={"error": "Invalid request body", "details": details},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "An unexpected error occurred. Please try again later.",
                "details": str(exc),
            },
        )


def _format_validation_error(err: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
    return f"{location}: {err.get('msg', 'invalid')}" if location else str(err.get("msg", "invalid"))

# ─────────────────────────────────────────────────────────────────────────────
# POST /api/generate — photo stylization endpoint (THIN)
# ─────────────────────────────────────────────────────────────────────────────


from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ps2cam.config import Settings
from ps2cam.dependencies import get_orchestrator, get_settings_dep
from ps2cam.rate_limit import client_identity, limiter
from ps2cam.schemas import ErrorResponse, GenerateRequest, GenerateResponse, ResultShape
from ps2cam.services.generation import GenerationOrchestrator, GenerationOutcome

router = APIRouter()

RESULT_SHAPE_HEADER = "x-result-shape"


@router.post(
    "/api/generate",
    response_model=GenerateResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No face detected in the photo"},
        429: {"model": ErrorResponse, "description": "Daily upload quota used up"},
        500: {"model": ErrorResponse},
        504: {"model": ErrorResponse, "description": "Provider did not finish in time"},
    },
)
# Burst guard only. The daily quota is enforced inside the orchestrator.
@limiter.limit("30/minute")
async def generate(
    request: Request,
    body: GenerateRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings_dep),
) -> JSONResponse:
    """Stylize one uploaded photo into a PS2-era render.

    Validation is Pydantic. The orchestrator never raises; this endpoint
    only picks the client identity and renders the outcome.
    """
    identity = client_identity(request, trust_forwarded=settings.trust_forwarded_for)
    outcome = await orchestrator.generate(body, client_identity=identity)
    return render_outcome(outcome, negotiate_result_shape(request))


def negotiate_result_shape(request: Request) -> ResultShape:
    """Read X-Result-Shape; unknown or missing values get the canonical shape."""
    requested = request.headers.get(RESULT_SHAPE_HEADER, "").strip().lower()
    try:
        return ResultShape(requested)
    except ValueError:
        return ResultShape.wrapped


def render_outcome(outcome: GenerationOutcome, shape: ResultShape = ResultShape.wrapped) -> JSONResponse:
    """GenerationOutcome → HTTP response with X-RateLimit-* headers."""
    headers = outcome.headers()
    if outcome.error is not None:
        return JSONResponse(
            status_code=outcome.error.status_code,
            content=outcome.error.to_body(),
            headers=headers,
        )

    content: Any
    if shape is ResultShape.bare:
        content = outcome.image_url
    elif shape is ResultShape.listed:
        content = {"result": [outcome.image_url]}
    else:
        content = GenerateResponse(result=outcome.image_url or "").model_dump()
    return JSONResponse(content=content, headers=headers)

# ─────────────────────────────────────────────────────────────────────────────
# Pydantic v2 Request / Response Schemas
# ─────────────────────────────────────────────────────────────────────────────


from enum import StrEnum
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


def is_http_url(value: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ResultShape(StrEnum):
    """Success body shape, chosen per request via the X-Result-Shape header."""

    wrapped = "object"  # {"result": "<uri>"}
    listed = "list"  # {"result": ["<uri>"]}, what the legacy front-end indexes
    bare = "bare"  # "<uri>"


class GenerateRequest(BaseModel):
    """Incoming request to stylize one uploaded photo.

    Field names follow the wire format the front-end sends; ``imageUrl`` is
    the only camelCase one and is exposed as ``image_url``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    image_url: str = Field(..., alias="imageUrl", min_length=1, max_length=2048)
    prompt: str | None = Field(None, max_length=500, description="Extra text before the style suffix")
    style: str = Field("Video game", min_length=1, max_length=64)
    prompt_strength: float = Field(4.5, ge=0, le=20)
    denoising_strength: float = Field(0.65, ge=0, le=1)
    instant_id_strength: float = Field(0.8, ge=0, le=1)
    negative_prompt: str | None = Field(None, max_length=500)

    @field_validator("image_url")
    @classmethod
    def image_url_must_be_http(cls, v: str) -> str:
        v = v.strip()
        if not is_http_url(v):
            raise ValueError("imageUrl must be an absolute http(s) URL")
        return v


class GenerateResponse(BaseModel):
    """Canonical success body."""

    result: str = Field(..., description="URI of the stylized image")


class ErrorResponse(BaseModel):
    """Every non-success body."""

    error: str
    details: str | None = None


class LivenessResponse(BaseModel):
    """Liveness probe — minimal, near-zero cost."""

    status: str = "ok"


class ReadinessResponse(BaseModel):
    """Readiness probe — can the instance serve generations?"""

    status: str  # "ready" or "not_ready"
    api_key_configured: bool
    model: str
    model_available: bool
    rate_limiter: str  # "enabled", "disabled", or "unavailable"
    prediction_strategy: str

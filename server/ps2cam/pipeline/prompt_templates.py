# ─────────────────────────────────────────────────────────────────────────────
# Prompt Templates — PS2-era style prompts and model input assembly
# ─────────────────────────────────────────────────────────────────────────────


from typing import Any

from ps2cam.models.registry import ModelDescriptor
from ps2cam.schemas import GenerateRequest

# ── Fixed style descriptors ──────────────────────────────────────────────────
# Appended after the user's text. Always present, so an empty user prompt
# still yields a usable prompt.

PS2_PROMPT_SUFFIX = (
    "PS2 era video game character, low-poly 3D model, 480p resolution, "
    "early 2000s video game graphics, jagged edges, limited texture detail, "
    "flat shading, pixelated textures, visible polygons, matte finish, "
    "simple lighting, basic shadow rendering"
)

PS2_NEGATIVE_PROMPT_SUFFIX = (
    "high resolution, smooth textures, modern graphics, ray tracing, 4K, HDR, "
    "photorealistic, detailed textures, normal mapping, specular highlights, "
    "ambient occlusion, anti-aliasing, motion blur, depth of field, "
    "volumetric lighting"
)

# Request field → model parameter, overlaid only where the model declares it.
_TUNABLE_PARAMETERS = ("style", "prompt_strength", "denoising_strength", "instant_id_strength")


def augment_prompt(user_prompt: str | None) -> str:
    """User text followed by the PS2 style descriptors."""
    return _join(user_prompt, PS2_PROMPT_SUFFIX)


def augment_negative_prompt(user_negative_prompt: str | None) -> str:
    """User negative text followed by the modern-graphics exclusions."""
    return _join(user_negative_prompt, PS2_NEGATIVE_PROMPT_SUFFIX)


def build_model_input(descriptor: ModelDescriptor, request: GenerateRequest) -> dict[str, Any]:
    """Overlay a request onto the model's default input.

    The returned dict is fresh per call; the descriptor's defaults are never
    mutated. Parameters the model does not declare (e.g. prompts for a
    restoration model) are left out rather than sent and rejected.
    """
    model_input: dict[str, Any] = dict(descriptor.default_input)
    model_input[descriptor.image_input_key] = request.image_url

    for name in _TUNABLE_PARAMETERS:
        if descriptor.accepts(name):
            model_input[name] = getattr(request, name)

    if descriptor.accepts("prompt"):
        model_input["prompt"] = augment_prompt(request.prompt)
    if descriptor.accepts("negative_prompt"):
        model_input["negative_prompt"] = augment_negative_prompt(request.negative_prompt)

    return model_input


def _join(user_text: str | None, suffix: str) -> str:
    return f"{(user_text or '').strip()} {suffix}".strip()

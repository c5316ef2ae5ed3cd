# ─────────────────────────────────────────────────────────────────────────────
# Inline Snapshot Tests — inline-snapshot
# ─────────────────────────────────────────────────────────────────────────────
# Regression guards for the text and payloads we send to the provider.
#
# Usage:
#   pytest --inline-snapshot=create    → fills in snapshot() values
#   pytest --inline-snapshot=update    → updates changed snapshots
#   pytest                             → compares against stored snapshots
# ─────────────────────────────────────────────────────────────────────────────

from inline_snapshot import snapshot

from ps2cam.exceptions import GenerationTimeoutError, RateLimitedError, SubmissionError
from ps2cam.models.registry import BUILTIN_MODELS
from ps2cam.pipeline.prompt_templates import augment_negative_prompt, augment_prompt, build_model_input
from ps2cam.schemas import GenerateRequest


class TestPromptSnapshots:
    def test_prompt_with_user_text(self):
        assert augment_prompt("a knight in armor") == snapshot(
            "a knight in armor PS2 era video game character, low-poly 3D model, 480p resolution,"
            " early 2000s video game graphics, jagged edges, limited texture detail, flat shading,"
            " pixelated textures, visible polygons, matte finish, simple lighting, basic shadow rendering"
        )

    def test_negative_prompt_without_user_text(self):
        assert augment_negative_prompt(None) == snapshot(
            "high resolution, smooth textures, modern graphics, ray tracing, 4K, HDR, photorealistic,"
            " detailed textures, normal mapping, specular highlights, ambient occlusion, anti-aliasing,"
            " motion blur, depth of field, volumetric lighting"
        )


class TestPayloadSnapshots:
    def test_restoration_payload(self):
        request = GenerateRequest(imageUrl="https://uploads.example.com/selfie.jpg")
        assert build_model_input(BUILTIN_MODELS["gfpgan"], request) == snapshot(
            {"img": "https://uploads.example.com/selfie.jpg", "version": "v1.4", "scale": 2}
        )


class TestErrorBodySnapshots:
    def test_rate_limited(self):
        assert RateLimitedError(limit=3).to_body() == snapshot(
            {"error": "Too many uploads in 1 day. Please try again after 24 hours."}
        )

    def test_timeout(self):
        assert GenerationTimeoutError(60, 5.0).to_body() == snapshot(
            {
                "error": "Image generation timed out. Please try again later.",
                "details": "No terminal state after 60 polls at 5.0s",
            }
        )

    def test_submission(self):
        assert SubmissionError(422, "bad input", "face-to-many", "a07f").to_body() == snapshot(
            {
                "error": "API request failed for model face-to-many (version a07f) with status 422",
                "details": "bad input",
            }
        )

"""Tests for prompt augmentation, model input assembly, and output selection."""

import pytest

from ps2cam.exceptions import MalformedResponseError
from ps2cam.models.registry import BUILTIN_MODELS
from ps2cam.pipeline.output import select_output_url
from ps2cam.pipeline.prompt_templates import (
    PS2_NEGATIVE_PROMPT_SUFFIX,
    PS2_PROMPT_SUFFIX,
    augment_negative_prompt,
    augment_prompt,
    build_model_input,
)
from ps2cam.schemas import GenerateRequest

PHOTO_URL = "https://uploads.example.com/selfie.jpg"


class TestAugmentPrompt:
    def test_user_text_comes_first(self):
        assert augment_prompt("a knight") == f"a knight {PS2_PROMPT_SUFFIX}"

    @pytest.mark.parametrize("empty", [None, "", "   "])
    def test_empty_user_text_is_suffix_only(self, empty):
        assert augment_prompt(empty) == PS2_PROMPT_SUFFIX

    def test_user_text_is_trimmed(self):
        assert augment_prompt("  a knight  ") == f"a knight {PS2_PROMPT_SUFFIX}"

    def test_suffix_mentions_era(self):
        assert "PS2 era" in PS2_PROMPT_SUFFIX
        assert "low-poly" in PS2_PROMPT_SUFFIX


class TestAugmentNegativePrompt:
    def test_user_text_comes_first(self):
        assert augment_negative_prompt("hats") == f"hats {PS2_NEGATIVE_PROMPT_SUFFIX}"

    def test_empty_is_suffix_only(self):
        assert augment_negative_prompt(None) == PS2_NEGATIVE_PROMPT_SUFFIX

    def test_excludes_modern_rendering(self):
        assert "photorealistic" in PS2_NEGATIVE_PROMPT_SUFFIX
        assert "ray tracing" in PS2_NEGATIVE_PROMPT_SUFFIX


class TestBuildModelInput:
    def test_face_to_many_defaults(self):
        model_input = build_model_input(BUILTIN_MODELS["face-to-many"], GenerateRequest(imageUrl=PHOTO_URL))

        assert model_input == {
            "image": PHOTO_URL,
            "prompt": PS2_PROMPT_SUFFIX,
            "style": "Video game",
            "prompt_strength": 4.5,
            "denoising_strength": 0.65,
            "instant_id_strength": 0.8,
            "negative_prompt": PS2_NEGATIVE_PROMPT_SUFFIX,
        }

    def test_request_overrides(self):
        request = GenerateRequest(
            imageUrl=PHOTO_URL,
            style="Toy",
            prompt_strength=2,
            denoising_strength=0.3,
            instant_id_strength=1.0,
        )

        model_input = build_model_input(BUILTIN_MODELS["face-to-many"], request)

        assert model_input["style"] == "Toy"
        assert model_input["prompt_strength"] == 2
        assert model_input["denoising_strength"] == 0.3
        assert model_input["instant_id_strength"] == 1.0

    def test_restoration_model_gets_only_declared_parameters(self):
        request = GenerateRequest(imageUrl=PHOTO_URL, prompt="ignored")

        model_input = build_model_input(BUILTIN_MODELS["gfpgan"], request)

        assert model_input == {"img": PHOTO_URL, "version": "v1.4", "scale": 2}

    def test_each_call_returns_a_fresh_dict(self):
        descriptor = BUILTIN_MODELS["face-to-many"]
        first = build_model_input(descriptor, GenerateRequest(imageUrl=PHOTO_URL))
        first["style"] = "mutated"

        second = build_model_input(descriptor, GenerateRequest(imageUrl=PHOTO_URL))

        assert second["style"] == "Video game"
        assert descriptor.default_input["image"] == ""


class TestSelectOutputUrl:
    def test_string(self):
        assert select_output_url("https://cdn.example.com/a.png") == "https://cdn.example.com/a.png"

    def test_list_takes_first(self):
        assert select_output_url(["https://cdn.example.com/a.png", "https://cdn.example.com/b.png"]) == (
            "https://cdn.example.com/a.png"
        )

    @pytest.mark.parametrize("output", [None, [], "", "data:image/png;base64,AAA", [42], {"url": "x"}])
    def test_malformed(self, output):
        with pytest.raises(MalformedResponseError):
            select_output_url(output)

# ─────────────────────────────────────────────────────────────────────────────
# Model Registry — static model name → {version, default input} lookup
# ─────────────────────────────────────────────────────────────────────────────


from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import structlog

from ps2cam.exceptions import UnknownModelError

logger = structlog.get_logger(__name__)

DEFAULT_MODEL_NAME = "face-to-many"


@dataclass(frozen=True)
class ModelDescriptor:
    """A provider model pinned to one version, with its default input."""

    name: str
    version: str
    default_input: Mapping[str, Any] = field(hash=False)
    image_input_key: str = "image"

    def accepts(self, parameter: str) -> bool:
        """Whether the model's input schema declares ``parameter``."""
        return parameter in self.default_input


def _descriptor(name: str, version_id: str, image_input_key: str, **defaults: Any) -> ModelDescriptor:
    return ModelDescriptor(
        name=name,
        version=version_id,
        default_input=MappingProxyType(dict(defaults)),
        image_input_key=image_input_key,
    )


BUILTIN_MODELS: Mapping[str, ModelDescriptor] = MappingProxyType(
    {
        "face-to-many": _descriptor(
            "face-to-many",
            "a07f252abbbd832009640b27f063ea52d87d7a23a185ca165bec23b5adc8deaf",
            "image",
            image="",
            prompt="",
            style="Video game",
            prompt_strength=4.5,
            denoising_strength=0.65,
            instant_id_strength=0.8,
            negative_prompt="",
        ),
        # Face restoration; no prompt, image goes under "img".
        "gfpgan": _descriptor(
            "gfpgan",
            "9283608cc6b7be6b65a8e44983db012355fde4132009bf99d976b2f0896856a3",
            "img",
            img="",
            version="v1.4",
            scale=2,
        ),
    }
)


class ModelConfigRegistry:
    """Read-only lookup of provider models.

    Lookups never substitute a default for a missing name; callers decide
    their own fallback. Built once in the lifespan, injected via Depends().
    """

    def __init__(
        self,
        models: Mapping[str, ModelDescriptor] | None = None,
        default_model_name: str | None = None,
    ) -> None:
        self._models = MappingProxyType(dict(BUILTIN_MODELS if models is None else models))
        self._default_model_name = default_model_name

    def get_model_config(self, name: str) -> ModelDescriptor:
        """Return the descriptor for ``name``. Raises UnknownModelError if absent."""
        try:
            return self._models[name]
        except KeyError:
            logger.warning("unknown_model", model=name, available=self.names)
            raise UnknownModelError(name, self.names) from None

    def get_default_model_name(self) -> str:
        """Configured model name, or DEFAULT_MODEL_NAME when unset."""
        configured = (self._default_model_name or "").strip()
        return configured or DEFAULT_MODEL_NAME

    def has(self, name: str) -> bool:
        return name in self._models

    @property
    def names(self) -> list[str]:
        """Registered model names, sorted."""
        return sorted(self._models)

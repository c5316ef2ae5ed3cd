"""Provider models: registry, prediction jobs, prediction clients."""

from ps2cam.models.job import PredictionJob, PredictionState
from ps2cam.models.protocol import PredictionBackend
from ps2cam.models.registry import DEFAULT_MODEL_NAME, ModelConfigRegistry, ModelDescriptor
from ps2cam.models.replicate import (
    BlockingReplicateClient,
    ReplicateClient,
    build_prediction_backend,
)

__all__ = [
    "DEFAULT_MODEL_NAME",
    "BlockingReplicateClient",
    "ModelConfigRegistry",
    "ModelDescriptor",
    "PredictionBackend",
    "PredictionJob",
    "PredictionState",
    "ReplicateClient",
    "build_prediction_backend",
]

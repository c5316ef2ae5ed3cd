# ─────────────────────────────────────────────────────────────────────────────
# Prediction Backend Protocol — one contract, two waiting strategies
# ─────────────────────────────────────────────────────────────────────────────
# ReplicateClient submits and polls. BlockingReplicateClient uses the
# provider's run-and-wait call with timeout + backoff retry. The
# orchestrator only sees this Protocol, so either can be swapped in by
# configuration (and tests can pass a fake).
# ─────────────────────────────────────────────────────────────────────────────

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ps2cam.models.job import PredictionJob
    from ps2cam.models.registry import ModelDescriptor


@runtime_checkable
class PredictionBackend(Protocol):
    """Submits a prediction and waits for it to reach a terminal state.

    ``await_terminal`` returns only succeeded jobs. Failure, timeout and
    retry exhaustion surface as Ps2camError subclasses.
    """

    @property
    def strategy(self) -> str: ...

    async def submit(
        self, descriptor: "ModelDescriptor", model_input: Mapping[str, Any]
    ) -> "PredictionJob": ...

    async def await_terminal(self, job: "PredictionJob") -> "PredictionJob": ...

    async def aclose(self) -> None: ...

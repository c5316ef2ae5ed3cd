"""Prediction job state as seen by one in-flight generation."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any


class PredictionState(StrEnum):
    """Provider-side lifecycle of a prediction."""

    starting = "starting"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PredictionState.succeeded, PredictionState.failed)


@dataclass(frozen=True)
class PredictionJob:
    """Snapshot of a submitted prediction.

    Created from the submit response; every poll yields a new snapshot via
    ``advance``. ``raw_status`` keeps whatever the provider last said, even
    when it was not part of the known vocabulary.
    """

    poll_url: str
    id: str | None = None
    cancel_url: str | None = None
    state: PredictionState = PredictionState.starting
    output: Any = None
    error: str | None = None
    raw_status: str | None = None
    polls: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def advance(self, **changes: Any) -> PredictionJob:
        return replace(self, **changes)

"""Provenance log of processing stages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterator

import pydantic

from .enums import ProcessingStage, StepStatus


class SampleRecord(pydantic.BaseModel):
    """Store the outcome of a processing stage for a single sample."""

    model_config = pydantic.ConfigDict(frozen=True)

    sample_id: str
    """The sample id"""

    status: StepStatus = StepStatus.OK
    """The stage outcome."""

    n_peaks: int = 0
    """The number of peaks created or modified in the sample."""

    message: str = ""
    """A description of the outcome, e.g. the reason of a failure."""


class ProcessingStep(pydantic.BaseModel):
    """Store the parameters and outcome of a processing stage."""

    model_config = pydantic.ConfigDict(frozen=True)

    stage: ProcessingStage
    """The processing stage"""

    parameters: dict[str, Any] = dict()
    """The parameters used, including the algorithm name."""

    samples: tuple[SampleRecord, ...] = tuple()
    """Per sample outcome of the stage."""

    messages: tuple[str, ...] = tuple()
    """Stage level notes, e.g. the number of features created."""

    timestamp: datetime = pydantic.Field(default_factory=lambda: datetime.now(timezone.utc))
    """The time when the step was completed."""

    def list_failed(self) -> list[str]:
        """List the ids of samples that were not processed successfully."""
        return [x.sample_id for x in self.samples if x.status is StepStatus.FAILED]

    def get_record(self, sample_id: str) -> SampleRecord:
        """Retrieve the record of a sample.

        :raises KeyError: if no record exists for the sample.

        """
        for record in self.samples:
            if record.sample_id == sample_id:
                return record
        raise KeyError(sample_id)


class ProcessingHistory:
    """An append-only log of processing steps.

    Instances are immutable: :py:meth:`append` creates a new history.

    """

    def __init__(self, steps: tuple[ProcessingStep, ...] = tuple()):
        self._steps = tuple(steps)

    def __iter__(self) -> Iterator[ProcessingStep]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, index: int) -> ProcessingStep:
        return self._steps[index]

    def __eq__(self, other) -> bool:
        return isinstance(other, ProcessingHistory) and self._steps == other._steps

    def append(self, step: ProcessingStep) -> ProcessingHistory:
        """Create a new history with a step added to the end."""
        return ProcessingHistory(self._steps + (step,))

    def list_steps(self, stage: ProcessingStage | None = None) -> list[ProcessingStep]:
        """List steps, optionally filtering by stage."""
        return [x for x in self._steps if stage is None or x.stage is stage]

    def last(self, stage: ProcessingStage | None = None) -> ProcessingStep | None:
        """Retrieve the last step of a stage. Returns ``None`` if no step is found."""
        steps = self.list_steps(stage)
        return steps[-1] if steps else None

    def to_list(self) -> list[dict[str, Any]]:
        """Serialize the history into a list of JSON compatible dictionaries."""
        return [x.model_dump(mode="json") for x in self._steps]

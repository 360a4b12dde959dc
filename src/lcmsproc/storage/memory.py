"""In memory assay data storage implementation."""

from __future__ import annotations

import pathlib
from collections import OrderedDict
from typing import Sequence

from ..core import exceptions
from ..core.dataflow import AssayProcessStatus
from ..core.models import Feature, RtAdjustment, Sample
from ..io.tabular import read_jsonl, write_jsonl
from .peak_table import PeakTable


class OnMemoryAssayStorage:
    """Store assay data in memory.

    Holds the assay samples, the peak table, the current feature definitions, the retention
    time corrections applied to each sample and the processing status.

    """

    def __init__(self, id: str) -> None:
        self.id = id
        self.peaks = PeakTable()
        self._samples: OrderedDict[str, Sample] = OrderedDict()
        self._features: list[Feature] = list()
        self._rt_adjustments: dict[str, RtAdjustment] = dict()
        self._status = AssayProcessStatus.unprocessed()

    def add_samples(self, *samples: Sample) -> None:
        """Add samples to the assay.

        :raises RepeatedIdError: if a sample with the same id already exists.

        """
        for sample in samples:
            if self.has_sample(sample.id):
                raise exceptions.RepeatedIdError(sample.id)
            self._samples[sample.id] = sample

    def fetch_sample(self, sample_id: str) -> Sample:
        """Fetch a sample using its id.

        :raises SampleNotFound: if the sample is not in the assay.

        """
        if not self.has_sample(sample_id):
            raise exceptions.SampleNotFound(sample_id)
        return self._samples[sample_id]

    def has_sample(self, sample_id: str) -> bool:
        """Check if the assay contains a sample with the provided id."""
        return sample_id in self._samples

    def list_samples(self) -> list[Sample]:
        """Fetch all samples in the assay, in insertion order."""
        return [x.model_copy(deep=True) for x in self._samples.values()]

    def get_process_status(self) -> AssayProcessStatus:
        """Retrieve the assay processing status. Operators update it in place."""
        return self._status

    def set_features(self, features: Sequence[Feature]) -> None:
        """Replace the current feature definitions."""
        self._features = list(features)

    def list_features(self) -> list[Feature]:
        """Fetch the current feature definitions, sorted by id."""
        return list(self._features)

    def fetch_feature(self, feature_id: int) -> Feature:
        """Fetch a feature using its id.

        :raises FeatureNotFound: if the feature does not exist.

        """
        for ft in self._features:
            if ft.id == feature_id:
                return ft
        raise exceptions.FeatureNotFound(feature_id)

    def set_rt_adjustments(self, adjustments: dict[str, RtAdjustment]) -> None:
        """Store the retention time corrections applied to samples."""
        self._rt_adjustments = dict(adjustments)

    def get_rt_adjustment(self, sample_id: str) -> RtAdjustment | None:
        """Retrieve the retention time correction of a sample. ``None`` if no correction was applied."""
        return self._rt_adjustments.get(sample_id)

    def clear_rt_adjustments(self) -> None:
        """Remove all retention time corrections."""
        self._rt_adjustments = dict()

    def save(self, path: pathlib.Path) -> None:
        """Store peaks and features as JSON lines files in a directory.

        Creates the files ``peaks.jsonl`` and ``features.jsonl``.

        """
        path.mkdir(parents=True, exist_ok=True)
        self.peaks.to_jsonl(path / "peaks.jsonl")
        write_jsonl(path / "features.jsonl", self._features)

    @staticmethod
    def load_features(path: pathlib.Path) -> list[Feature]:
        """Read features stored with :py:meth:`save`."""
        return read_jsonl(path / "features.jsonl", Feature)

"""Feature value matrix implementation."""

from __future__ import annotations

from typing import Sequence

import numpy

from . import exceptions
from .enums import MultiPeakPolicy
from .models import Feature, Peak
from ..utils.numpy import FloatArray, FloatArray1D


class FeatureValueMatrix:
    """Store feature values for each sample in an assay.

    :param feature_ids: the feature ids. Each feature is associated with a matrix row.
    :param sample_ids: the sample ids. Each sample is associated with a matrix column.
    :param data: A 2D numpy float array with matrix data. Missing values are represented with ``nan``.

    """

    def __init__(self, feature_ids: Sequence[int], sample_ids: Sequence[str], data: FloatArray):
        if data.shape != (len(feature_ids), len(sample_ids)):
            msg = f"Data shape must be ({len(feature_ids)}, {len(sample_ids)}). Got {data.shape}."
            raise ValueError(msg)
        self._feature_ids = list(feature_ids)
        self._sample_ids = list(sample_ids)
        self._data = data
        self._feature_index = {x: k for k, x in enumerate(self._feature_ids)}
        self._sample_index = {x: k for k, x in enumerate(self._sample_ids)}

    @property
    def shape(self) -> tuple[int, int]:
        """The matrix shape, (n_features, n_samples)."""
        return self._data.shape

    def get_data(self) -> FloatArray:
        """Retrieve a copy of the matrix data."""
        return self._data.copy()

    def list_feature_ids(self) -> list[int]:
        """List the feature ids, in row order."""
        return self._feature_ids.copy()

    def list_sample_ids(self) -> list[str]:
        """List the sample ids, in column order."""
        return self._sample_ids.copy()

    def get_column(self, sample_id: str) -> FloatArray1D:
        """Retrieve the feature values of a sample.

        :raises SampleNotFound: if the sample is not in the matrix.

        """
        if sample_id not in self._sample_index:
            raise exceptions.SampleNotFound(sample_id)
        return self._data[:, self._sample_index[sample_id]].copy()

    def get_row(self, feature_id: int) -> FloatArray1D:
        """Retrieve the values of a feature across samples.

        :raises FeatureNotFound: if the feature is not in the matrix.

        """
        if feature_id not in self._feature_index:
            raise exceptions.FeatureNotFound(feature_id)
        return self._data[self._feature_index[feature_id]].copy()

    def get_value(self, feature_id: int, sample_id: str) -> float:
        """Retrieve a single matrix value."""
        return float(self.get_column(sample_id)[self._feature_index[feature_id]])

    def has_missing(self) -> bool:
        """Check if the matrix contains missing values."""
        return bool(numpy.isnan(self._data).any())

    def count_missing(self) -> int:
        """Count the number of missing values in the matrix."""
        return int(numpy.isnan(self._data).sum())

    def to_dict(self) -> dict[str, list[float]]:
        """Convert the matrix into a dictionary that maps sample ids to feature values."""
        return {x: self._data[:, k].tolist() for k, x in enumerate(self._sample_ids)}

    @classmethod
    def from_features(
        cls,
        features: Sequence[Feature],
        peaks: Sequence[Peak],
        sample_ids: Sequence[str],
        value: str = "into",
        policy: MultiPeakPolicy = MultiPeakPolicy.MAX_INTENSITY,
    ) -> FeatureValueMatrix:
        """Create a new matrix using feature definitions and peak data.

        :param features: the features in the matrix rows.
        :param peaks: the peaks referenced by features. Peaks not found here are ignored.
        :param sample_ids: the samples in the matrix columns.
        :param value: the peak column used as the matrix value.
        :param policy: the policy used to select the value if a sample contributes multiple peaks
            to a feature.

        """
        if not isinstance(policy, MultiPeakPolicy):
            policy = MultiPeakPolicy(policy)

        peak_index = {x.id: x for x in peaks}
        sample_index = {x: k for k, x in enumerate(sample_ids)}
        data = numpy.full((len(features), len(sample_ids)), numpy.nan)
        for row, ft in enumerate(features):
            by_sample: dict[str, list[Peak]] = dict()
            for peak_id in ft.peak_ids:
                peak = peak_index.get(peak_id)
                if peak is not None and peak.sample_id in sample_index:
                    by_sample.setdefault(peak.sample_id, list()).append(peak)
            for sample_id, sample_peaks in by_sample.items():
                data[row, sample_index[sample_id]] = _select_value(ft, sample_peaks, value, policy)
        return cls([x.id for x in features], sample_ids, data)


def _select_value(feature: Feature, peaks: list[Peak], value: str, policy: MultiPeakPolicy) -> float:
    match policy:
        case MultiPeakPolicy.MAX_INTENSITY:
            return max(peaks, key=lambda x: x.maxo).get(value)
        case MultiPeakPolicy.MEDIAN_RT:
            return min(peaks, key=lambda x: abs(x.rt - feature.rt_med)).get(value)
        case MultiPeakPolicy.SUM:
            return float(sum(x.get(value) for x in peaks))

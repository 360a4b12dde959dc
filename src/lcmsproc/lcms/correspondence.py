"""Peak correspondence using retention time densities.

Peaks are grouped in overlapping m/z slices of width `bin_size`, placed every `bin_size / 2`.
In each slice, the retention time density of peaks is estimated with a Gaussian kernel. Each
local maximum of the density defines a group, bounded by the density minima between maxima.

Groups from all slices that meet the sample thresholds are candidates for features. A peak that
ends up in groups from neighboring slices is kept in the group with the closest m/z median. Groups
that no longer meet the thresholds after this step are discarded and their peaks are assigned to
the remaining groups that contain them, so no peak in a valid group is lost at slice boundaries.

"""

from __future__ import annotations

from logging import getLogger
from math import floor
from typing import Literal

import numpy
import pydantic
from typing_extensions import Self

from ..core.enums import MSInstrument, Polarity, SeparationMode
from ..core.models import Feature, Peak, Sample
from ..core.operators import PeakGrouper
from ..core.registry import operator_registry
from ..utils.numpy import FloatArray1D, find_range

logger = getLogger(__name__)

N_GRID_POINTS = 512


@operator_registry.register
class PeakDensity(PeakGrouper):
    """Group peaks across samples into features using retention time densities.

    A group is kept if, for at least one sample group, the fraction of samples with peaks in the
    feature is greater or equal than `min_fraction`, OR if the number of samples with peaks in
    the feature is greater or equal than `min_samples`.

    """

    method: Literal["density"] = "density"

    bin_size: pydantic.PositiveFloat = 0.25
    """The width of m/z slices."""

    bandwidth: pydantic.PositiveFloat = 30.0
    """The standard deviation of the Gaussian kernel used to estimate retention time densities."""

    min_fraction: float = pydantic.Field(default=0.5, ge=0.0, le=1.0)
    """The minimum fraction of samples from a sample group with peaks in a feature."""

    min_samples: pydantic.PositiveInt | None = None
    """If set, features with peaks from at least this number of samples are kept."""

    max_features: pydantic.PositiveInt = 50
    """The maximum number of features created in each m/z slice."""

    def group(self, peaks: list[Peak], samples: list[Sample]) -> list[Feature]:
        """Group peaks into features."""
        sample_group = {x.id: x.group for x in samples}
        group_size: dict[str, int] = dict()
        for group in sample_group.values():
            group_size[group] = group_size.get(group, 0) + 1

        peaks = sorted((x for x in peaks if x.sample_id in sample_group), key=lambda x: (x.mz, x.id))
        if not peaks:
            return list()

        mz = numpy.array([x.mz for x in peaks])
        rt = numpy.array([x.rt for x in peaks])
        sample_ids = [x.sample_id for x in peaks]

        # the central half of slice k is [origin + k * step, origin + (k + 1) * step)
        origin = float(mz[0])
        step = self.bin_size / 2
        slices = sorted({floor((x - origin) / step) for x in mz.tolist()})

        candidates: list[tuple[int, ...]] = list()
        seen: set[tuple[int, ...]] = set()
        for k in slices:
            lo = origin + k * step - self.bin_size / 4
            lo_index, hi_index = find_range(mz, lo, lo + self.bin_size)
            indices = numpy.arange(lo_index, hi_index)
            slice_groups = list()
            for group in self._split_by_density(rt[indices]):
                members = indices[group]
                if self._check_thresholds([sample_ids[x] for x in members], sample_group, group_size):
                    slice_groups.append(members)

            slice_groups.sort(key=lambda x: (-x.size, float(numpy.median(rt[x]))))
            for members in slice_groups[: self.max_features]:
                key = tuple(members.tolist())
                if key not in seen:
                    seen.add(key)
                    candidates.append(key)

        groups = self._resolve_shared_peaks(mz, rt, sample_ids, candidates, sample_group, group_size)
        features = [Feature.from_peaks([peaks[x] for x in group]) for group in groups]
        features.sort(key=lambda x: (x.mz_med, x.rt_med, x.peak_ids[0]))
        for k, ft in enumerate(features):
            ft.id = k
        logger.debug(f"Created {len(features)} features in {len(slices)} m/z slices.")
        return features

    def _split_by_density(self, rt: FloatArray1D) -> list[FloatArray1D]:
        """Split retention time values using the valleys of their density.

        :return: a list of index arrays, one for each group.

        """
        bw = self.bandwidth
        grid = numpy.linspace(rt.min() - 3 * bw, rt.max() + 3 * bw, N_GRID_POINTS)
        density = numpy.exp(-0.5 * ((grid[:, None] - rt[None, :]) / bw) ** 2).sum(axis=1)

        is_max = (density[1:-1] > density[:-2]) & (density[1:-1] >= density[2:])
        maxima = numpy.where(is_max)[0] + 1
        boundaries = list()
        for left, right in zip(maxima[:-1], maxima[1:]):
            valley = left + int(numpy.argmin(density[left : right + 1]))
            boundaries.append(grid[valley])

        labels = numpy.searchsorted(numpy.array(boundaries), rt, side="right")
        return [numpy.where(labels == k)[0] for k in range(len(boundaries) + 1) if (labels == k).any()]

    def _check_thresholds(
        self, sample_ids: list[str], sample_group: dict[str, str], group_size: dict[str, int]
    ) -> bool:
        unique_samples = set(sample_ids)
        if self.min_samples is not None and len(unique_samples) >= self.min_samples:
            return True

        n_present: dict[str, int] = dict()
        for sample_id in unique_samples:
            group = sample_group[sample_id]
            n_present[group] = n_present.get(group, 0) + 1
        return any(n / group_size[group] >= self.min_fraction for group, n in n_present.items())

    def _resolve_shared_peaks(
        self,
        mz: FloatArray1D,
        rt: FloatArray1D,
        sample_ids: list[str],
        candidates: list[tuple[int, ...]],
        sample_group: dict[str, str],
        group_size: dict[str, int],
    ) -> list[list[int]]:
        """Assign each peak to a single group.

        Groups from overlapping slices may share peaks. Groups contained in a larger group are
        discarded. A shared peak is assigned to the group with the closest m/z median, ties are solved
        in favor of the larger group. Groups that do not meet the thresholds after assignment are
        removed one at a time, starting from the smallest, and their peaks are assigned to the
        remaining groups that contain them. Adding peaks to a group never makes it fail the
        thresholds, so the remaining groups are kept.

        :return: the peak indices of each group.

        """
        containing: dict[int, list[set[int]]] = dict()
        for group in candidates:
            for index in group:
                containing.setdefault(index, list()).append(set(group))
        candidates = [
            x for x in candidates if not any(len(y) > len(x) and y.issuperset(x) for y in containing[x[0]])
        ]

        mz_med = {x: float(numpy.median(mz[list(x)])) for x in candidates}
        rt_med = {x: float(numpy.median(rt[list(x)])) for x in candidates}
        candidates = sorted(candidates, key=lambda x: (-len(x), mz_med[x], rt_med[x], x[0]))

        claims: dict[int, list[int]] = dict()
        for c, group in enumerate(candidates):
            for index in group:
                claims.setdefault(index, list()).append(c)

        active = [True] * len(candidates)

        def closest(index: int) -> int | None:
            options = [c for c in claims[index] if active[c]]
            if not options:
                return None
            return min(options, key=lambda c: (abs(mz[index] - mz_med[candidates[c]]), c))

        members: list[set[int]] = [set() for _ in candidates]
        for index in claims:
            members[closest(index)].add(index)  # type: ignore

        def passes(c: int) -> bool:
            return self._check_thresholds([sample_ids[x] for x in members[c]], sample_group, group_size)

        failing = {c for c in range(len(candidates)) if not passes(c)}
        while failing:
            removed = min(failing, key=lambda c: (len(members[c]), -c))
            failing.remove(removed)
            active[removed] = False
            for index in sorted(members[removed]):
                c = closest(index)
                if c is None:
                    continue
                members[c].add(index)
                if c in failing and passes(c):
                    failing.remove(c)
            members[removed] = set()

        return [sorted(members[c]) for c in range(len(candidates)) if active[c]]

    @classmethod
    def from_defaults(cls, instrument: MSInstrument, separation: SeparationMode, polarity: Polarity) -> Self:
        """Create a new instance with default parameters."""
        op = cls()
        match instrument:
            case MSInstrument.QTOF:
                op.bin_size = 0.015
            case MSInstrument.ORBITRAP:
                op.bin_size = 0.005

        match separation:
            case SeparationMode.HPLC:
                op.bandwidth = 30.0
            case SeparationMode.UPLC:
                op.bandwidth = 10.0
            case SeparationMode.DART:
                op.bandwidth = 5.0
        return op


# single algorithm available, new algorithms are added as a discriminated union on `method`
CorrespondenceParams = PeakDensity

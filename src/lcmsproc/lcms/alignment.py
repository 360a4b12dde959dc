"""Retention time correction using hook peaks.

Hook peaks are peaks from features detected in most samples. In each sample, the deviation between
the retention time of hook peaks and the feature median retention time is smoothed with a local
regression. The smoothed deviations define a piecewise linear, strictly increasing correction.

"""

from __future__ import annotations

from logging import getLogger
from math import ceil
from typing import TYPE_CHECKING, Literal

import numpy
import pydantic
from typing_extensions import Self

from ..core.enums import MSInstrument, Polarity, ProcessingStage, SeparationMode, StepStatus
from ..core.exceptions import InsufficientAnchors
from ..core.history import ProcessingStep, SampleRecord
from ..core.models import Feature, Peak, RtAdjustment, Sample
from ..core.operators import RtAligner
from ..core.registry import operator_registry
from ..utils.numpy import FloatArray1D
from .correspondence import PeakDensity

if TYPE_CHECKING:
    from ..io.access import SpectrumAccess
    from ..storage.memory import OnMemoryAssayStorage

logger = getLogger(__name__)

MIN_SLOPE = 1e-3
"""Minimum slope between consecutive knots of the correction."""


def fit_loess(x: FloatArray1D, y: FloatArray1D, span: float) -> FloatArray1D:
    """Smooth values using a local linear regression with tricube weights.

    :param x: sorted predictor values
    :param y: response values
    :param span: the fraction of points used in each local regression. Small values overfit the data,
        values close to 1 are similar to a global linear fit.
    :return: the smoothed values at each `x`.

    """
    n = x.size
    q = min(n, max(2, int(ceil(span * n))))
    y_smooth = numpy.zeros(n, dtype=float)
    for i in range(n):
        d = numpy.abs(x - x[i])
        r = numpy.sort(d)[q - 1]
        if r <= 0.0:
            y_smooth[i] = y[i]
            continue
        w = numpy.clip(1.0 - (d / (r * 1.000001)) ** 3, 0.0, 1.0) ** 3
        b00 = numpy.sum(w)
        b01 = numpy.sum(w * x)
        b11 = numpy.sum(w * x * x)
        a0 = numpy.sum(w * y)
        a1 = numpy.sum(w * x * y)
        det = b00 * b11 - b01 * b01
        if abs(det) < 1e-12:
            y_smooth[i] = a0 / b00
        else:
            beta0 = (b11 * a0 - b01 * a1) / det
            beta1 = (b00 * a1 - b01 * a0) / det
            y_smooth[i] = beta0 + beta1 * x[i]
    return y_smooth


def fit_linear(x: FloatArray1D, y: FloatArray1D) -> FloatArray1D:
    """Smooth values using a least squares line."""
    slope, intercept = numpy.polyfit(x, y, 1)
    return slope * x + intercept


@operator_registry.register
class PeakGroups(RtAligner):
    """Correct retention times using hook peaks.

    Hook features are created by grouping peaks with the `grouping` operator, replacing its
    `min_fraction` with the value defined in this operator. In each sample, features with exactly one
    peak in the sample are used as anchors. The deviation between the anchor retention time and the
    feature median is smoothed and used to correct all peaks in the sample. Outside the anchor range
    the deviation is held constant. Samples with fewer than two anchors are not corrected.

    """

    method: Literal["peakGroups"] = "peakGroups"

    min_fraction: float = pydantic.Field(default=1.0, gt=0.0, le=1.0)
    """The minimum fraction of samples with peaks in hook features."""

    extra_peaks: pydantic.NonNegativeInt = 1
    """The maximum number of peaks in hook features in excess of the number of samples."""

    span: float = pydantic.Field(default=0.2, gt=0.0, le=1.0)
    """The fraction of anchors used in each local regression."""

    smooth: Literal["loess", "linear"] = "loess"
    """The smoothing method used to fit the retention time deviation."""

    grouping: PeakDensity = PeakDensity()
    """The correspondence operator used to find hook features."""

    def find_hook_features(self, peaks: list[Peak], samples: list[Sample]) -> list[Feature]:
        """Create hook features used as anchors."""
        grouping = self.grouping.model_copy(update={"min_fraction": self.min_fraction, "min_samples": None})
        features = grouping.group(peaks, samples)
        max_peaks = len(samples) + self.extra_peaks
        return [x for x in features if x.n_peaks <= max_peaks]

    def fit(self, sample_id: str, peaks: list[Peak], hooks: list[Feature]) -> RtAdjustment:
        """Fit the retention time correction of a sample.

        :param sample_id: the sample to correct
        :param peaks: the sample peaks
        :param hooks: the hook features
        :raises InsufficientAnchors: if the sample has fewer than two anchors.

        """
        peak_index = {x.id: x for x in peaks}
        raw = list()
        reference = list()
        for ft in hooks:
            sample_peaks = [peak_index[x] for x in ft.peak_ids if x in peak_index]
            if len(sample_peaks) == 1:
                raw.append(sample_peaks[0].rt)
                reference.append(ft.rt_med)

        unique_raw, inverse = numpy.unique(numpy.array(raw, dtype=float), return_inverse=True)
        if unique_raw.size < 2:
            msg = f"Sample `{sample_id}` has {unique_raw.size} anchors. At least two anchors are required."
            raise InsufficientAnchors(msg)

        deviation = numpy.array(reference) - numpy.array(raw)
        deviation = numpy.bincount(inverse, weights=deviation) / numpy.bincount(inverse)

        if self.smooth == "loess":
            fitted = fit_loess(unique_raw, deviation, self.span)
        else:
            fitted = fit_linear(unique_raw, deviation)

        rt_lo = min(x.rt_min for x in peaks)
        rt_hi = max(x.rt_max for x in peaks)
        knots = unique_raw
        if rt_lo < knots[0]:
            knots = numpy.hstack((rt_lo, knots))
            fitted = numpy.hstack((fitted[0], fitted))
        if rt_hi > knots[-1]:
            knots = numpy.hstack((knots, rt_hi))
            fitted = numpy.hstack((fitted, fitted[-1]))

        adjusted = knots + fitted
        for k in range(1, adjusted.size):
            min_value = adjusted[k - 1] + MIN_SLOPE * (knots[k] - knots[k - 1])
            adjusted[k] = max(adjusted[k], min_value)
        return RtAdjustment(sample_id=sample_id, raw=knots, adjusted=adjusted)

    def _apply_operator(self, data: OnMemoryAssayStorage, access: SpectrumAccess | None) -> ProcessingStep:
        samples = data.list_samples()
        all_peaks = data.peaks.list_peaks(sample_ids=[x.id for x in samples], filled=False)
        hooks = self.find_hook_features(all_peaks, samples)
        logger.info(f"Found {len(hooks)} hook features.")

        adjustments = dict()
        records = list()
        for sample in samples:
            peaks = data.peaks.list_peaks(sample_ids=[sample.id])
            if not peaks:
                records.append(SampleRecord(sample_id=sample.id, status=StepStatus.NO_SIGNAL, message="no peaks"))
                continue
            try:
                adjustment = self.fit(sample.id, peaks, hooks)
            except InsufficientAnchors as e:
                logger.warning(f"Retention time correction skipped: {e}")
                records.append(
                    SampleRecord(sample_id=sample.id, status=StepStatus.INSUFFICIENT_ANCHORS, message=str(e))
                )
                continue
            data.peaks.adjust_rt(sample.id, adjustment.adjust)
            adjustments[sample.id] = adjustment
            records.append(SampleRecord(sample_id=sample.id, n_peaks=len(peaks)))

        data.set_rt_adjustments(adjustments)
        data.set_features(list())
        return ProcessingStep(
            stage=ProcessingStage.ALIGNMENT,
            parameters=self.get_parameters(),
            samples=tuple(records),
            messages=(f"{len(hooks)} hook features used as anchors.",),
        )

    @classmethod
    def from_defaults(cls, instrument: MSInstrument, separation: SeparationMode, polarity: Polarity) -> Self:
        """Create a new instance with default parameters."""
        grouping = PeakDensity.from_defaults(instrument, separation, polarity)
        return cls(grouping=grouping)


# single algorithm available, new algorithms are added as a discriminated union on `method`
AlignmentParams = PeakGroups

"""Peak detection in ROIs using the continuous wavelet transform (CWT).

The ROI intensity is transformed with a Mexican hat wavelet at a ladder of scales derived from
the expected peak width. Local maxima in consecutive scales are connected into ridge lines,
starting from the largest scale. Ridge lines present in at least half of the scales define
candidate peaks.

"""

from __future__ import annotations

from logging import getLogger
from math import ceil

import numpy
import pydantic
from scipy.integrate import trapezoid
from scipy.signal import convolve
from typing_extensions import Self

from ..core.models import Peak, Roi
from ..utils.numpy import FloatArray1D

logger = getLogger(__name__)


def ricker(points: int, a: float) -> FloatArray1D:
    r"""Create a Mexican hat wavelet.

    .. math::

        A \left (1 - \frac{x^{2}}{a^{2}} \right) \exp \left(-\frac{x^{2}}{2 a^{2}} \right)

    where :math:`A = \frac{2}{\sqrt{3a}\pi^{1/4}}`.

    :param points: the number of points in the wavelet, centered at zero.
    :param a: the wavelet width parameter.

    """
    A = 2 / (numpy.sqrt(3 * a) * (numpy.pi**0.25))
    x = numpy.arange(points) - (points - 1.0) / 2
    xsq = x**2
    return A * (1 - xsq / a**2) * numpy.exp(-xsq / (2 * a**2))


def cwt(signal: FloatArray1D, scales: FloatArray1D) -> FloatArray1D:
    """Compute the CWT of a signal using the Mexican hat wavelet.

    The signal is zero padded to reduce border effects.

    :param signal: the 1D signal
    :param scales: the wavelet width parameters, in number of points.
    :return: a 2D array with shape ``(scales.size, signal.size)``.

    """
    pad = int(ceil(5 * scales.max())) if scales.size else 0
    padded = numpy.pad(signal, pad)
    coefficients = numpy.zeros((scales.size, signal.size))
    for k, a in enumerate(scales):
        n = min(int(10 * a) | 1, padded.size | 1)
        wavelet = ricker(n, a)
        coefficients[k] = convolve(padded, wavelet, mode="same")[pad : pad + signal.size]
    return coefficients


def find_ridge_lines(coefficients: FloatArray1D, scales: FloatArray1D) -> list[list[tuple[int, int]]]:
    """Connect local maxima across scales into ridge lines.

    Ridge lines are built from the largest scale down. A maximum extends a ridge if it is closer
    than half the current scale to the last ridge position. A ridge is terminated after missing
    more than one scale.

    :return: a list of ridge lines. Each ridge is a list of ``(scale_index, position)`` pairs.

    """
    n_scales = scales.size
    ridges: list[list[tuple[int, int]]] = list()
    active: list[tuple[list[tuple[int, int]], int]] = list()  # ridge, gap

    for row in range(n_scales - 1, -1, -1):
        maxima = _local_maxima(coefficients[row])
        max_dist = max(1, int(ceil(scales[row] / 2)))
        available = set(maxima.tolist())
        next_active = list()

        # ridges with smaller distance to a maximum take it first
        candidates = list()
        for ridge_index, (ridge, _) in enumerate(active):
            position = ridge[-1][1]
            for m in maxima:
                dist = abs(int(m) - position)
                if dist <= max_dist:
                    candidates.append((dist, ridge_index, int(m)))
        candidates.sort()
        assigned: dict[int, int] = dict()
        for _, ridge_index, m in candidates:
            if ridge_index in assigned or m not in available:
                continue
            assigned[ridge_index] = m
            available.remove(m)

        for ridge_index, (ridge, gap) in enumerate(active):
            if ridge_index in assigned:
                ridge.append((row, assigned[ridge_index]))
                next_active.append((ridge, 0))
            elif gap + 1 > 1:
                ridges.append(ridge)
            else:
                next_active.append((ridge, gap + 1))

        for m in sorted(available):
            next_active.append(([(row, m)], 0))
        active = next_active

    ridges.extend(ridge for ridge, _ in active)
    return ridges


def _local_maxima(x: FloatArray1D) -> FloatArray1D:
    """Find positive local maxima. The first point of plateaus is used."""
    if x.size < 3:
        return numpy.array([], dtype=int)
    is_max = (x[1:-1] > x[:-2]) & (x[1:-1] >= x[2:]) & (x[1:-1] > 0.0)
    return numpy.where(is_max)[0] + 1


class CWTPeakFinder(pydantic.BaseModel):
    """Detect peaks in an ROI using the CWT."""

    min_width: pydantic.PositiveFloat = 10.0
    """The minimum peak width, in time units."""

    max_width: pydantic.PositiveFloat = 60.0
    """The maximum peak width, in time units."""

    snr_threshold: pydantic.NonNegativeFloat = 10.0
    """Peaks with signal-to-noise ratio lower than this value are discarded."""

    boundary_fraction: float = pydantic.Field(default=0.05, ge=0.0, lt=1.0)
    """Peak boundaries are set where the signal falls below this fraction of the apex intensity."""

    @pydantic.model_validator(mode="after")
    def check_widths(self) -> Self:
        """Check that the width range is valid."""
        if self.min_width > self.max_width:
            raise ValueError("`min_width` must be lower or equal than `max_width`.")
        return self

    def get_scales(self, dt: float) -> FloatArray1D:
        """Compute the wavelet scales, in number of points, using the time spacing between scans."""
        min_points = self.min_width / dt
        max_points = self.max_width / dt
        widths = numpy.arange(min_points, max_points + 1e-9, 2.0)
        if widths.size == 0:
            widths = numpy.array([min_points])
        return numpy.maximum(widths / 2, 1.0)

    def find(self, roi: Roi) -> list[Peak]:
        """Detect peaks in an ROI.

        Intensity values in gaps must be filled before detection.

        :return: the list of peaks, sorted by retention time. An empty list is returned if no peak is found.

        """
        if roi.time.size < 3:
            return list()

        signal = numpy.nan_to_num(roi.spint, nan=0.0)
        dt = float(numpy.median(numpy.diff(roi.time)))
        scales = self.get_scales(dt)
        coefficients = cwt(signal, scales)
        min_ridge_length = max(1, int(ceil(scales.size / 2)))

        candidates = list()
        for ridge in find_ridge_lines(coefficients, scales):
            if len(ridge) < min_ridge_length:
                continue
            best_row, best_position = max(ridge, key=lambda x: coefficients[x])
            peak = self._create_peak(roi, signal, best_position, float(scales[best_row]), dt)
            if peak is not None and peak.sn >= self.snr_threshold:
                candidates.append(peak)

        peaks = _remove_overlapping(candidates)
        return sorted(peaks, key=lambda x: x.rt)

    def _create_peak(self, roi: Roi, signal: FloatArray1D, position: int, scale: float, dt: float) -> Peak | None:
        # refine apex using raw signal
        half = max(1, int(round(scale)))
        lo = max(0, position - half)
        hi = min(signal.size, position + half + 1)
        apex = lo + int(numpy.argmax(signal[lo:hi]))
        apex_int = signal[apex]
        if apex_int <= 0.0:
            return None

        threshold = self.boundary_fraction * apex_int
        start = apex
        while start > 0 and signal[start] > threshold and signal[start - 1] <= signal[start]:
            start -= 1
        end = apex
        while end < signal.size - 1 and signal[end] > threshold and signal[end + 1] <= signal[end]:
            end += 1

        time = roi.time
        while time[end] - time[start] > self.max_width:
            if start < apex and (end == apex or signal[start] <= signal[end]):
                start += 1
            elif end > apex:
                end -= 1
            else:
                break

        if time[end] - time[start] < self.min_width - dt:
            return None

        region = slice(start, end + 1)
        observed = roi.get_observed_mask()[region]
        if not observed.any():
            return None
        mz_region = roi.mz[region][observed]
        int_region = signal[region][observed]
        weights = int_region if int_region.sum() > 0 else None
        mz = float(numpy.average(mz_region, weights=weights))

        maxo = float(signal[region].max())
        noise = _estimate_noise(signal, start, end)
        sn = maxo / noise if noise > 0.0 else numpy.inf
        return Peak(
            sample_id=roi.sample_id,
            mz=min(max(mz, float(mz_region.min())), float(mz_region.max())),
            mz_min=float(mz_region.min()),
            mz_max=float(mz_region.max()),
            rt=float(time[apex]),
            rt_min=float(time[start]),
            rt_max=float(time[end]),
            into=float(trapezoid(signal[region], time[region])),
            maxo=maxo,
            sn=float(sn),
        )


def _estimate_noise(signal: FloatArray1D, start: int, end: int) -> float:
    """Estimate the noise level using the median of positive values outside the peak region.

    Uses flanking regions as wide as the peak on each side. If no positive values are found, the
    lowest positive value in the signal is used.

    """
    width = end - start + 1
    left = signal[max(0, start - width) : start]
    right = signal[end + 1 : end + 1 + width]
    flanks = numpy.concatenate((left, right))
    flanks = flanks[flanks > 0.0]
    if flanks.size:
        return float(numpy.median(flanks))
    positive = signal[signal > 0.0]
    return float(positive.min()) if positive.size else 0.0


def _remove_overlapping(peaks: list[Peak]) -> list[Peak]:
    """Keep the most intense peak when peaks overlap in time."""
    kept: list[Peak] = list()
    for peak in sorted(peaks, key=lambda x: (-x.maxo, x.rt)):
        if all(peak.rt_max <= x.rt_min or peak.rt_min >= x.rt_max for x in kept):
            kept.append(peak)
    return kept

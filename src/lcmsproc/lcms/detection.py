"""Peak detection operators for LC-MS data."""

from __future__ import annotations

from logging import getLogger
from math import ceil
from typing import Annotated, Any, Literal

import numpy
import pydantic
from scipy.integrate import trapezoid
from scipy.ndimage import gaussian_filter1d
from scipy.signal import find_peaks, peak_widths
from typing_extensions import Self

from ..core.enums import MSInstrument, Polarity, SeparationMode
from ..core.exceptions import ConfigError
from ..core.models import Peak, Scan
from ..core.operators import PeakDetector
from ..core.registry import operator_registry
from .cwt import CWTPeakFinder
from .roi import ROIDetector, check_scans

logger = getLogger(__name__)


@operator_registry.register
class CentWave(PeakDetector):
    """Detect peaks using ROI extraction followed by CWT based peak detection.

    ROIs are extracted by connecting m/z values in consecutive scans. Intensity values in ROI gaps
    are filled using linear interpolation and then peaks are detected in each ROI using the CWT.

    """

    method: Literal["centWave"] = "centWave"

    ppm: pydantic.PositiveFloat = 25.0
    """The m/z tolerance to build ROIs, in parts per million."""

    peakwidth: tuple[pydantic.PositiveFloat, pydantic.PositiveFloat] = (20.0, 50.0)
    """The minimum and maximum peak width, in seconds."""

    snr_threshold: pydantic.NonNegativeFloat = 10.0
    """Peaks with a signal-to-noise ratio lower than this value are discarded."""

    prefilter: tuple[pydantic.PositiveInt, pydantic.NonNegativeFloat] = (3, 100.0)
    """``(k, I)``: ROIs must contain at least `k` points with intensity greater or equal than `I`."""

    noise: pydantic.NonNegativeFloat = 0.0
    """Points with intensity lower or equal than this value are not used to build ROIs."""

    max_missing: pydantic.NonNegativeInt = 1
    """The maximum number of consecutive scans missing in an ROI."""

    min_length: pydantic.PositiveInt = 3
    """The minimum ROI length, in number of scans."""

    mz_range: tuple[pydantic.NonNegativeFloat, pydantic.PositiveFloat] | None = None
    """If provided, only detect peaks inside this m/z window."""

    boundary_fraction: float = pydantic.Field(default=0.05, ge=0.0, lt=1.0)
    """Peak boundaries are set where the signal falls below this fraction of the apex intensity."""

    @pydantic.model_validator(mode="after")
    def check_ranges(self) -> Self:
        """Check that the peak width and m/z ranges are sorted."""
        if self.peakwidth[0] > self.peakwidth[1]:
            raise ValueError("`peakwidth` minimum must be lower or equal than the maximum.")
        if self.mz_range is not None and self.mz_range[0] >= self.mz_range[1]:
            raise ValueError("`mz_range` minimum must be lower than the maximum.")
        return self

    def get_roi_detector(self) -> ROIDetector:
        """Create the ROI detector using the operator parameters."""
        return ROIDetector(
            ppm=self.ppm,
            noise=self.noise,
            max_missing=self.max_missing,
            min_length=self.min_length,
            prefilter_k=self.prefilter[0],
            prefilter_int=self.prefilter[1],
            mz_range=self.mz_range,
        )

    def get_peak_finder(self) -> CWTPeakFinder:
        """Create the CWT peak finder using the operator parameters."""
        return CWTPeakFinder(
            min_width=self.peakwidth[0],
            max_width=self.peakwidth[1],
            snr_threshold=self.snr_threshold,
            boundary_fraction=self.boundary_fraction,
        )

    def detect(self, scans: list[Scan], sample_id: str) -> list[Peak]:
        """Detect peaks in the scans of a sample."""
        rois = self.get_roi_detector().detect(scans, sample_id)
        finder = self.get_peak_finder()
        peaks = list()
        for roi in rois:
            roi.fill_nan()
            peaks.extend(finder.find(roi))
        logger.debug(f"Found {len(peaks)} peaks in {len(rois)} ROIs from sample `{sample_id}`.")
        return peaks

    @classmethod
    def from_defaults(cls, instrument: MSInstrument, separation: SeparationMode, polarity: Polarity) -> Self:
        """Create a new instance with default parameters."""
        op = cls()
        match instrument:
            case MSInstrument.QTOF:
                op.ppm = 25.0
            case MSInstrument.ORBITRAP:
                op.ppm = 5.0

        match separation:
            case SeparationMode.HPLC:
                op.peakwidth = (10.0, 90.0)
            case SeparationMode.UPLC:
                op.peakwidth = (5.0, 30.0)
            case SeparationMode.DART:
                op.peakwidth = (2.0, 20.0)
        return op


@operator_registry.register
class MatchedFilter(PeakDetector):
    """Detect peaks in extracted ion chromatograms of fixed width m/z bins.

    Scans are binned along the m/z axis. The chromatogram of each bin is smoothed with a
    Gaussian filter matching the expected peak shape and local maxima of the filtered signal
    are used as peak candidates.

    """

    method: Literal["matchedFilter"] = "matchedFilter"

    bin_size: pydantic.PositiveFloat = 0.1
    """The m/z bin width."""

    fwhm: pydantic.PositiveFloat = 30.0
    """The expected peak full width at half maximum, in seconds."""

    snr_threshold: pydantic.NonNegativeFloat = 10.0
    """Peaks with a signal-to-noise ratio lower than this value are discarded."""

    max_peaks: pydantic.PositiveInt = 10
    """The maximum number of peaks in each m/z bin."""

    mz_range: tuple[pydantic.NonNegativeFloat, pydantic.PositiveFloat] | None = None
    """If provided, only detect peaks inside this m/z window."""

    @pydantic.model_validator(mode="after")
    def check_mz_range(self) -> Self:
        """Check that the m/z range is sorted."""
        if self.mz_range is not None and self.mz_range[0] >= self.mz_range[1]:
            raise ValueError("`mz_range` minimum must be lower than the maximum.")
        return self

    def detect(self, scans: list[Scan], sample_id: str) -> list[Peak]:
        """Detect peaks in the scans of a sample."""
        check_scans(scans)
        if len(scans) < 3:
            return list()

        time = numpy.array([x.time for x in scans])
        mz_min, mz_max = self._get_mz_bounds(scans)
        if mz_min is None or mz_max is None:
            return list()

        n_bins = int(ceil((mz_max - mz_min) / self.bin_size)) + 1
        spint = numpy.zeros((n_bins, time.size))
        mz_sum = numpy.zeros((n_bins, time.size))
        mz_lo = numpy.full((n_bins, time.size), numpy.inf)
        mz_hi = numpy.full((n_bins, time.size), -numpy.inf)
        weights = numpy.zeros((n_bins, time.size))
        for k, scan in enumerate(scans):
            mask = (scan.mz >= mz_min) & (scan.mz <= mz_max) & (scan.int > 0.0)
            mz, sp = scan.mz[mask], scan.int[mask]
            bins = ((mz - mz_min) / self.bin_size).astype(int)
            numpy.maximum.at(spint[:, k], bins, sp)
            numpy.add.at(mz_sum[:, k], bins, mz * sp)
            numpy.minimum.at(mz_lo[:, k], bins, mz)
            numpy.maximum.at(mz_hi[:, k], bins, mz)
            numpy.add.at(weights[:, k], bins, sp)

        dt = float(numpy.median(numpy.diff(time)))
        sigma = self.fwhm / (2 * numpy.sqrt(2 * numpy.log(2))) / dt

        candidates = list()
        for b in numpy.where(spint.max(axis=1) > 0.0)[0]:
            bin_data = spint[b], mz_sum[b], weights[b], mz_lo[b], mz_hi[b]
            candidates.extend(self._detect_bin(sample_id, time, *bin_data, sigma))

        peaks = self._remove_duplicates(candidates)
        logger.debug(f"Found {len(peaks)} peaks in sample `{sample_id}`.")
        return peaks

    def _get_mz_bounds(self, scans: list[Scan]) -> tuple[float | None, float | None]:
        if self.mz_range is not None:
            return self.mz_range
        mz_min = min((float(x.mz[0]) for x in scans if x.mz.size), default=None)
        mz_max = max((float(x.mz[-1]) for x in scans if x.mz.size), default=None)
        return mz_min, mz_max

    def _detect_bin(
        self,
        sample_id: str,
        time: numpy.ndarray,
        spint: numpy.ndarray,
        mz_sum: numpy.ndarray,
        weights: numpy.ndarray,
        mz_lo: numpy.ndarray,
        mz_hi: numpy.ndarray,
        sigma: float,
    ) -> list[Peak]:
        filtered = gaussian_filter1d(spint, sigma, mode="constant")
        apexes, _ = find_peaks(filtered, height=0.0)
        if apexes.size == 0:
            return list()

        apexes = apexes[numpy.argsort(filtered[apexes])[::-1][: self.max_peaks]]
        _, _, left, right = peak_widths(filtered, apexes, rel_height=0.95)

        noise_mask = numpy.ones(spint.size, dtype=bool)
        bounds = list()
        for lo, hi in zip(left, right):
            start = max(0, int(numpy.floor(lo)))
            end = min(spint.size - 1, int(numpy.ceil(hi)))
            noise_mask[start : end + 1] = False
            bounds.append((start, end))

        noise_values = spint[noise_mask & (spint > 0.0)]
        if noise_values.size:
            noise = float(numpy.median(noise_values))
        else:
            noise = float(spint[spint > 0.0].min())

        peaks = list()
        for start, end in bounds:
            region = slice(start, end + 1)
            if weights[region].sum() <= 0.0:
                continue
            apex = start + int(numpy.argmax(spint[region]))
            maxo = float(spint[apex])
            sn = maxo / noise if noise > 0.0 else numpy.inf
            if sn < self.snr_threshold:
                continue
            observed = weights[region] > 0.0
            peak_mz_min = float(mz_lo[region][observed].min())
            peak_mz_max = float(mz_hi[region][observed].max())
            mz = float(mz_sum[region].sum() / weights[region].sum())
            peak = Peak(
                sample_id=sample_id,
                mz=min(max(mz, peak_mz_min), peak_mz_max),
                mz_min=peak_mz_min,
                mz_max=peak_mz_max,
                rt=float(time[apex]),
                rt_min=float(time[start]),
                rt_max=float(time[end]),
                into=float(trapezoid(spint[region], time[region])),
                maxo=maxo,
                sn=float(sn),
            )
            peaks.append(peak)
        return peaks

    def _remove_duplicates(self, peaks: list[Peak]) -> list[Peak]:
        """Remove peaks split across neighboring bins, keeping the most intense."""
        kept: list[Peak] = list()
        for peak in sorted(peaks, key=lambda x: (-x.maxo, x.mz, x.rt)):
            is_duplicate = any(
                abs(peak.mz - x.mz) <= self.bin_size and peak.rt_min < x.rt_max and x.rt_min < peak.rt_max
                for x in kept
            )
            if not is_duplicate:
                kept.append(peak)
        return sorted(kept, key=lambda x: (x.rt, x.mz))

    @classmethod
    def from_defaults(cls, instrument: MSInstrument, separation: SeparationMode, polarity: Polarity) -> Self:
        """Create a new instance with default parameters."""
        op = cls()
        match instrument:
            case MSInstrument.QTOF:
                op.bin_size = 0.05
            case MSInstrument.ORBITRAP:
                op.bin_size = 0.01

        match separation:
            case SeparationMode.HPLC:
                op.fwhm = 30.0
            case SeparationMode.UPLC:
                op.fwhm = 10.0
            case SeparationMode.DART:
                op.fwhm = 5.0
        return op


PeakDetectionParams = Annotated[CentWave | MatchedFilter, pydantic.Field(discriminator="method")]

_peak_detection_adapter: pydantic.TypeAdapter[CentWave | MatchedFilter] = pydantic.TypeAdapter(PeakDetectionParams)


def parse_peak_detection_params(params: dict[str, Any]) -> CentWave | MatchedFilter:
    """Create a peak detection operator from a dictionary, using the `method` field to select the algorithm.

    :raises ConfigError: if the method is not valid or the parameters are not valid.

    """
    try:
        return _peak_detection_adapter.validate_python(params)
    except pydantic.ValidationError as e:
        raise ConfigError(f"Invalid peak detection parameters: {e}") from e

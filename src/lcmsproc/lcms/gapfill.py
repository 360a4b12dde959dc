"""Fill missing feature values by integrating raw data."""

from __future__ import annotations

import concurrent.futures
from logging import getLogger
from typing import TYPE_CHECKING, Literal

import numpy
import pydantic
from typing_extensions import Self

from ..core.enums import MSInstrument, Polarity, ProcessingStage, SeparationMode, StepStatus
from ..core.history import ProcessingStep, SampleRecord
from ..core.models import Feature, Peak, RtAdjustment
from ..core.operators import PeakFiller
from ..core.registry import operator_registry

if TYPE_CHECKING:
    from ..io.access import SpectrumAccess
    from ..storage.memory import OnMemoryAssayStorage

logger = getLogger(__name__)


class FillWindow(pydantic.BaseModel):
    """The m/z and retention time window integrated to fill a missing value."""

    feature_id: int
    sample_id: str
    mz_range: tuple[float, float]
    rt_range: tuple[float, float]
    """Window in adjusted retention time."""


@operator_registry.register
class FillChromPeaks(PeakFiller):
    """Create peaks for features without peaks in a sample by integrating raw data.

    The integration window is built from the union of the feature range and the median boundaries
    of its peaks. The window is expanded on each side by ``expand * width / 2``, and, in the m/z
    domain, additionally by ``mz_med * ppm * 1e-6``. Intensity in each scan is summed and the area
    is computed with a rectangular integration. If no signal is found a peak with zero area is
    created, so every feature has a value in every sample.

    """

    method: Literal["fillChromPeaks"] = "fillChromPeaks"

    expand_mz: pydantic.NonNegativeFloat = 0.0
    """Fraction of the m/z window width added on each side."""

    expand_rt: pydantic.NonNegativeFloat = 0.0
    """Fraction of the retention time window width added on each side."""

    ppm: pydantic.NonNegativeFloat = 0.0
    """m/z expansion on each side, in parts per million of the feature m/z."""

    max_workers: pydantic.PositiveInt = 1
    """The number of threads used to read raw data."""

    def create_window(self, feature: Feature, sample_id: str) -> FillWindow:
        """Create the integration window of a feature."""
        mz_lo = min(feature.mz_min, feature.peak_mz_min)
        mz_hi = max(feature.mz_max, feature.peak_mz_max)
        w_mz = self.expand_mz * (mz_hi - mz_lo) / 2 + feature.mz_med * self.ppm * 1e-6

        rt_lo = min(feature.rt_min, feature.peak_rt_min)
        rt_hi = max(feature.rt_max, feature.peak_rt_max)
        w_rt = self.expand_rt * (rt_hi - rt_lo) / 2
        return FillWindow(
            feature_id=feature.id,
            sample_id=sample_id,
            mz_range=(mz_lo - w_mz, mz_hi + w_mz),
            rt_range=(rt_lo - w_rt, rt_hi + w_rt),
        )

    def integrate(self, access: SpectrumAccess, window: FillWindow, adjustment: RtAdjustment | None) -> Peak:
        """Integrate raw data in a window.

        :param access: the raw data source
        :param window: the integration window, with retention time in adjusted values
        :param adjustment: the sample retention time correction, used to map the window to raw
            retention time. If ``None`` the window is used as is.
        :return: a filled peak, with retention time values in adjusted time.
        :raises OSError: if raw data cannot be read.

        """
        rt_lo, rt_hi = window.rt_range
        if adjustment is not None:
            raw_lo, raw_hi = (float(x) for x in adjustment.revert(numpy.array(window.rt_range)))
        else:
            raw_lo, raw_hi = rt_lo, rt_hi

        scans = access.get_scans(window.sample_id, mz_range=window.mz_range, rt_range=(raw_lo, raw_hi))
        scan_int = numpy.array([x.int.sum() for x in scans], dtype=float)
        mz_min, mz_max = window.mz_range

        if scan_int.size == 0 or scan_int.max() <= 0.0:
            mz_med = (mz_min + mz_max) / 2
            return Peak(
                sample_id=window.sample_id,
                mz=mz_med,
                mz_min=mz_min,
                mz_max=mz_max,
                rt=(rt_lo + rt_hi) / 2,
                rt_min=rt_lo,
                rt_max=rt_hi,
                into=0.0,
                maxo=0.0,
                filled=True,
            )

        mz = numpy.hstack([x.mz for x in scans])
        spint = numpy.hstack([x.int for x in scans])
        apex = int(numpy.argmax(scan_int))
        apex_rt = scans[apex].time
        if adjustment is not None:
            apex_rt = float(adjustment.adjust(apex_rt))

        into = float(scan_int.sum() * (raw_hi - raw_lo) / max(scan_int.size - 1, 1))
        maxo = float(max(x.int.max() for x in scans if x.int.size))
        return Peak(
            sample_id=window.sample_id,
            mz=float(numpy.clip(numpy.average(mz, weights=spint), mz_min, mz_max)),
            mz_min=mz_min,
            mz_max=mz_max,
            rt=float(numpy.clip(apex_rt, rt_lo, rt_hi)),
            rt_min=rt_lo,
            rt_max=rt_hi,
            into=into,
            maxo=maxo,
            filled=True,
        )

    def _apply_operator(self, data: OnMemoryAssayStorage, access: SpectrumAccess | None) -> ProcessingStep:
        if access is None:
            raise ValueError("Gap filling requires access to raw data.")

        samples = data.list_samples()
        features = data.list_features()
        windows = list()
        for ft in features:
            present = {data.peaks.get_peak(x).sample_id for x in ft.peak_ids}
            windows.extend(self.create_window(ft, x.id) for x in samples if x.id not in present)

        logger.info(f"Filling {len(windows)} missing values in {len(features)} features.")

        def worker(window: FillWindow) -> Peak | str:
            try:
                return self.integrate(access, window, data.get_rt_adjustment(window.sample_id))
            except OSError as e:
                logger.warning(f"Failed to fill feature {window.feature_id} in sample `{window.sample_id}`: {e}")
                return str(e)

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            results = list(executor.map(worker, windows))

        filled: list[Peak] = list()
        owners: list[int] = list()
        errors: dict[str, str] = dict()
        for window, result in zip(windows, results):
            if isinstance(result, Peak):
                filled.append(result)
                owners.append(window.feature_id)
            else:
                errors.setdefault(window.sample_id, result)

        new_ids: dict[int, list[int]] = dict()
        for feature_id, peak_id in zip(owners, data.peaks.add_peaks(filled)):
            new_ids.setdefault(feature_id, list()).append(peak_id)
        updated = list()
        for ft in features:
            peak_ids = sorted(ft.peak_ids + new_ids.get(ft.id, list()))
            updated.append(ft.model_copy(update={"peak_ids": peak_ids}))
        data.set_features(updated)

        n_filled: dict[str, int] = dict()
        for peak in filled:
            n_filled[peak.sample_id] = n_filled.get(peak.sample_id, 0) + 1
        records = list()
        for sample in samples:
            if sample.id in errors:
                record = SampleRecord(sample_id=sample.id, status=StepStatus.FAILED, message=errors[sample.id])
            else:
                record = SampleRecord(sample_id=sample.id, n_peaks=n_filled.get(sample.id, 0))
            records.append(record)

        return ProcessingStep(
            stage=ProcessingStage.GAP_FILLING,
            parameters=self.get_parameters(),
            samples=tuple(records),
            messages=(f"{len(filled)} peaks filled.",),
        )

    @classmethod
    def from_defaults(cls, instrument: MSInstrument, separation: SeparationMode, polarity: Polarity) -> Self:
        """Create a new instance with default parameters."""
        op = cls()
        match instrument:
            case MSInstrument.QTOF:
                op.ppm = 10.0
            case MSInstrument.ORBITRAP:
                op.ppm = 5.0
        return op


# single algorithm available, new algorithms are added as a discriminated union on `method`
GapFillParams = FillChromPeaks

"""Chromatogram extraction from raw scans."""

from __future__ import annotations

from typing import Sequence

import numpy
import pydantic

from ..core.enums import AggregationMethod
from ..core.models import Chromatogram, Scan
from ..io.access import SpectrumAccess
from ..utils.numpy import find_range


def extract_chromatogram(
    scans: Sequence[Scan],
    mz_range: tuple[float, float] | None = None,
    aggregation: AggregationMethod = AggregationMethod.SUM,
) -> Chromatogram:
    """Aggregate scan intensities into a chromatogram.

    :param scans: the scans of a sample, sorted by time.
    :param mz_range: the m/z window to aggregate in each scan. If ``None``, all m/z values are used.
    :param aggregation: the aggregation function. Scans without values in the window are set to ``0.0``.
    :return: a chromatogram with one point per scan.

    """
    time = numpy.array([x.time for x in scans], dtype=float)
    spint = numpy.zeros(time.size, dtype=float)
    for k, scan in enumerate(scans):
        if mz_range is None:
            start, end = 0, scan.mz.size
        else:
            start, end = find_range(scan.mz, *mz_range)
        if end > start:
            values = scan.int[start:end]
            spint[k] = values.sum() if aggregation is AggregationMethod.SUM else values.max()
    sample_id = scans[0].sample_id if scans else ""
    return Chromatogram(sample_id=sample_id, time=time, int=spint, mz_range=mz_range, aggregation=aggregation)


class ChromatogramExtractor(pydantic.BaseModel):
    """Extract chromatograms from a sample.

    Total ion chromatograms are created using ``sum`` aggregation without an m/z window, base peak
    chromatograms using ``max`` aggregation and extracted ion chromatograms using an m/z window.

    """

    aggregation: AggregationMethod = AggregationMethod.SUM
    """The method used to aggregate intensity in each scan"""

    def extract(
        self,
        access: SpectrumAccess,
        sample_id: str,
        mz_range: tuple[float, float] | None = None,
        rt_range: tuple[float, float] | None = None,
    ) -> Chromatogram:
        """Extract a chromatogram from a sample.

        :param access: the raw data source
        :param sample_id: the sample to read
        :param mz_range: the m/z window. If ``None``, all m/z values are used.
        :param rt_range: the time window. If ``None``, all scans are used.

        """
        scans = access.get_scans(sample_id, mz_range=mz_range, rt_range=rt_range)
        chromatogram = extract_chromatogram(scans, mz_range=mz_range, aggregation=self.aggregation)
        chromatogram.sample_id = sample_id
        return chromatogram

    def extract_many(
        self, access: SpectrumAccess, sample_id: str, mz_ranges: Sequence[tuple[float, float]]
    ) -> list[Chromatogram]:
        """Extract multiple extracted ion chromatograms, reading raw data once."""
        scans = access.get_scans(sample_id)
        result = list()
        for mz_range in mz_ranges:
            chromatogram = extract_chromatogram(scans, mz_range=mz_range, aggregation=self.aggregation)
            chromatogram.sample_id = sample_id
            result.append(chromatogram)
        return result

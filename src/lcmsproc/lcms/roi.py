"""Region of interest (ROI) extraction.

ROIs are m/z traces built by connecting close m/z values in consecutive scans. Each trace
tracks a representative m/z, computed as the running mean of the m/z values attached to it.
In each scan, points are assigned to traces using a greedy global matching: candidate pairs
within the ppm tolerance are sorted by ppm error and assigned in that order, using the trace
m/z and then the point m/z to break ties. A point is attached to at most one trace, and a
trace takes at most one point per scan. Points that are not attached start new traces.

"""

from __future__ import annotations

from logging import getLogger
from typing import Sequence

import numpy
import pydantic

from ..core.exceptions import MalformedDataError
from ..core.models import Roi, Scan

logger = getLogger(__name__)


class _Trace:
    """An active m/z trace."""

    __slots__ = ("mz_sum", "n", "first", "last", "points")

    def __init__(self, position: int, mz: float, spint: float):
        self.mz_sum = mz
        self.n = 1
        self.first = position
        self.last = position
        self.points: list[tuple[int, float, float]] = [(position, mz, spint)]

    @property
    def mz(self) -> float:
        return self.mz_sum / self.n

    def append(self, position: int, mz: float, spint: float) -> None:
        self.mz_sum += mz
        self.n += 1
        self.last = position
        self.points.append((position, mz, spint))


class ROIDetector(pydantic.BaseModel):
    """Extract ROIs from the scans of a sample."""

    ppm: pydantic.PositiveFloat = 25.0
    """The m/z tolerance to connect points, in parts per million."""

    noise: pydantic.NonNegativeFloat = 0.0
    """Points with intensity lower or equal than this value are ignored."""

    max_missing: pydantic.NonNegativeInt = 1
    """The maximum number of consecutive scans without points allowed in a trace."""

    min_length: pydantic.PositiveInt = 3
    """Traces spanning fewer scans than this value are discarded."""

    prefilter_k: pydantic.PositiveInt = 3
    """A trace must contain at least `prefilter_k` points with intensity greater or equal than `prefilter_int`."""

    prefilter_int: pydantic.NonNegativeFloat = 100.0
    """The intensity threshold of the prefilter."""

    mz_range: tuple[float, float] | None = None
    """If provided, only use points inside this m/z window."""

    def detect(self, scans: Sequence[Scan], sample_id: str = "") -> list[Roi]:
        """Extract ROIs from scans.

        :param scans: the sample scans, sorted by time.
        :param sample_id: the sample id assigned to the ROIs.
        :return: ROIs sorted by their first scan and m/z. Zero scans produce an empty list.
        :raises MalformedDataError: if scan times are not strictly increasing or m/z values are not sorted.

        """
        check_scans(scans)
        if not scans:
            return list()

        tol = self.ppm * 1e-6
        active: list[_Trace] = list()
        rois: list[Roi] = list()

        for position, scan in enumerate(scans):
            mz, spint = self._get_points(scan)
            attached = numpy.zeros(mz.size, dtype=bool)
            if active and mz.size:
                for trace_index, point_index in self._match(active, mz, tol):
                    active[trace_index].append(position, float(mz[point_index]), float(spint[point_index]))
                    attached[point_index] = True

            for k in numpy.where(~attached)[0]:
                active.append(_Trace(position, float(mz[k]), float(spint[k])))

            still_active = list()
            for trace in active:
                if position - trace.last > self.max_missing:
                    self._close(trace, scans, sample_id, rois)
                else:
                    still_active.append(trace)
            active = still_active

        for trace in active:
            self._close(trace, scans, sample_id, rois)

        rois.sort(key=lambda x: (int(x.scan[0]), float(numpy.nanmean(x.mz))))
        logger.debug(f"Extracted {len(rois)} ROIs from sample `{sample_id}`.")
        return rois

    def _get_points(self, scan: Scan) -> tuple[numpy.ndarray, numpy.ndarray]:
        mask = scan.int > self.noise
        if self.mz_range is not None:
            mask &= (scan.mz >= self.mz_range[0]) & (scan.mz <= self.mz_range[1])
        return scan.mz[mask], scan.int[mask]

    @staticmethod
    def _match(active: list[_Trace], mz: numpy.ndarray, tol: float) -> list[tuple[int, int]]:
        """Create (trace, point) pairs using greedy global assignment."""
        trace_mz = numpy.array([x.mz for x in active])
        lo = numpy.searchsorted(mz, trace_mz * (1 - tol), side="left")
        hi = numpy.searchsorted(mz, trace_mz * (1 + tol), side="right")
        has_candidates = hi > lo
        if not has_candidates.any():
            return list()

        trace_candidates = numpy.where(has_candidates)[0]
        counts = hi[trace_candidates] - lo[trace_candidates]
        trace_index = numpy.repeat(trace_candidates, counts)
        offsets = numpy.arange(counts.sum()) - numpy.repeat(numpy.cumsum(counts) - counts, counts)
        point_index = numpy.repeat(lo[trace_candidates], counts) + offsets

        error = numpy.abs(mz[point_index] - trace_mz[trace_index]) / trace_mz[trace_index] * 1e6
        valid = error <= tol * 1e6
        trace_index, point_index, error = trace_index[valid], point_index[valid], error[valid]

        order = numpy.lexsort((mz[point_index], trace_mz[trace_index], error))
        used_traces: set[int] = set()
        used_points: set[int] = set()
        pairs = list()
        for k in order:
            t, p = int(trace_index[k]), int(point_index[k])
            if t in used_traces or p in used_points:
                continue
            used_traces.add(t)
            used_points.add(p)
            pairs.append((t, p))
        return pairs

    def _close(self, trace: _Trace, scans: Sequence[Scan], sample_id: str, rois: list[Roi]) -> None:
        """Convert a closed trace into an ROI if it passes the length and prefilter checks."""
        length = trace.last - trace.first + 1
        if length < self.min_length:
            return
        n_intense = sum(1 for _, _, x in trace.points if x >= self.prefilter_int)
        if n_intense < self.prefilter_k:
            return

        mz = numpy.full(length, numpy.nan)
        spint = numpy.full(length, numpy.nan)
        for position, mz_k, int_k in trace.points:
            mz[position - trace.first] = mz_k
            spint[position - trace.first] = int_k
        span = scans[trace.first : trace.last + 1]
        time = numpy.array([x.time for x in span], dtype=float)
        scan = numpy.array([x.index for x in span], dtype=int)
        rois.append(Roi(sample_id=sample_id, mz=mz, spint=spint, time=time, scan=scan))


def check_scans(scans: Sequence[Scan]) -> None:
    """Check that scans can be used for peak detection.

    :raises MalformedDataError: if scan times are not strictly increasing or m/z values are not sorted.

    """
    for prev, current in zip(scans[:-1], scans[1:]):
        if current.time <= prev.time:
            msg = f"Scan times must be strictly increasing. Got {prev.time} followed by {current.time}."
            raise MalformedDataError(msg)
    for scan in scans:
        if scan.mz.size > 1 and (numpy.diff(scan.mz) < 0.0).any():
            raise MalformedDataError(f"m/z values in scan {scan.index} are not sorted.")

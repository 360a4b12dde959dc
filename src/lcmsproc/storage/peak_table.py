"""In-memory peak table."""

from __future__ import annotations

import pathlib
from collections import OrderedDict
from typing import Callable, Iterable, Sequence

import numpy

from ..core.exceptions import PeakNotFound
from ..core.models import PEAK_COLUMNS, Peak
from ..io.tabular import read_jsonl, write_jsonl
from ..utils.numpy import FloatArray, FloatArray1D


class PeakTable:
    """Store peaks from multiple samples.

    Peaks are assigned consecutive integer ids when added. Peaks of each sample are kept sorted by
    retention time. Retention time values can be adjusted, and the raw values restored.

    """

    def __init__(self) -> None:
        self._peaks: OrderedDict[int, Peak] = OrderedDict()
        self._by_sample: dict[str, list[int]] = dict()
        self._raw_rt: dict[int, tuple[float, float, float]] = dict()
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._peaks)

    def __eq__(self, other) -> bool:
        if not isinstance(other, PeakTable):
            return NotImplemented
        return list(self._peaks.values()) == list(other._peaks.values())

    def add_peaks(self, peaks: Iterable[Peak]) -> list[int]:
        """Add peaks to the table.

        Ids are assigned to new peaks following the input order.

        :return: the ids assigned to the peaks.

        """
        ids = list()
        touched = set()
        for peak in peaks:
            peak = peak.model_copy(update={"id": self._next_id})
            self._peaks[peak.id] = peak
            self._by_sample.setdefault(peak.sample_id, list()).append(peak.id)
            touched.add(peak.sample_id)
            ids.append(peak.id)
            self._next_id += 1

        for sample_id in touched:
            self._sort_sample(sample_id)
        return ids

    def get_peak(self, peak_id: int) -> Peak:
        """Retrieve a peak by id.

        :raises PeakNotFound: if the peak is not in the table.

        """
        if peak_id not in self._peaks:
            raise PeakNotFound(peak_id)
        return self._peaks[peak_id]

    def has_peak(self, peak_id: int) -> bool:
        """Check if a peak is in the table."""
        return peak_id in self._peaks

    def list_sample_ids(self) -> list[str]:
        """List the ids of samples with peaks in the table."""
        return list(self._by_sample)

    def list_peaks(
        self,
        mz_range: tuple[float, float] | None = None,
        rt_range: tuple[float, float] | None = None,
        sample_ids: Sequence[str] | None = None,
        filled: bool = True,
    ) -> list[Peak]:
        """Retrieve peaks from the table.

        :param mz_range: if provided, only peaks with m/z in this closed interval are retrieved.
        :param rt_range: if provided, only peaks with rt in this closed interval are retrieved.
        :param sample_ids: if provided, only peaks from these samples are retrieved, following this order.
            Otherwise peaks from all samples are retrieved.
        :param filled: if set to ``False`` exclude peaks created during gap filling.
        :return: the peaks, grouped by sample and sorted by retention time in each sample.

        """
        if sample_ids is None:
            sample_ids = list(self._by_sample)

        result = list()
        for sample_id in sample_ids:
            for peak_id in self._by_sample.get(sample_id, list()):
                peak = self._peaks[peak_id]
                if not filled and peak.filled:
                    continue
                if mz_range is not None and not (mz_range[0] <= peak.mz <= mz_range[1]):
                    continue
                if rt_range is not None and not (rt_range[0] <= peak.rt <= rt_range[1]):
                    continue
                result.append(peak)
        return result

    def fetch_columns(self, *columns: str, peak_ids: Sequence[int] | None = None) -> dict[str, FloatArray1D]:
        """Retrieve numeric peak columns as arrays.

        :param columns: the columns to retrieve. If not provided, all numeric columns are retrieved.
        :param peak_ids: if provided, retrieve values from these peaks. Otherwise, use all peaks, in id order.
        :raises ValueError: if an invalid column name is passed.

        """
        if not columns:
            columns = PEAK_COLUMNS
        peaks = list(self._peaks.values()) if peak_ids is None else [self.get_peak(x) for x in peak_ids]
        return {c: numpy.array([x.get(c) for x in peaks], dtype=float) for c in columns}

    def has_adjusted_rt(self) -> bool:
        """Check if retention time of peaks were adjusted."""
        return bool(self._raw_rt)

    def adjust_rt(self, sample_id: str, func: Callable[[FloatArray], FloatArray]) -> None:
        """Apply a retention time correction to all peaks in a sample.

        Raw values are stored the first time a peak is adjusted, and can be restored using :py:meth:`restore_raw_rt`.

        :param sample_id: the sample to adjust
        :param func: a non-decreasing function that maps retention time values.

        """
        for peak_id in self._by_sample.get(sample_id, list()):
            peak = self._peaks[peak_id]
            if peak_id not in self._raw_rt:
                self._raw_rt[peak_id] = (peak.rt, peak.rt_min, peak.rt_max)
            rt, rt_min, rt_max = (float(x) for x in func(numpy.array([peak.rt, peak.rt_min, peak.rt_max])))
            self._peaks[peak_id] = peak.model_copy(update={"rt": rt, "rt_min": rt_min, "rt_max": rt_max})
        self._sort_sample(sample_id)

    def restore_raw_rt(self) -> None:
        """Restore raw retention time values of all adjusted peaks."""
        for peak_id, (rt, rt_min, rt_max) in self._raw_rt.items():
            peak = self._peaks[peak_id]
            self._peaks[peak_id] = peak.model_copy(update={"rt": rt, "rt_min": rt_min, "rt_max": rt_max})
        self._raw_rt = dict()
        for sample_id in self._by_sample:
            self._sort_sample(sample_id)

    def get_raw_rt(self, peak_id: int) -> float:
        """Retrieve the raw apex retention time of a peak."""
        if peak_id in self._raw_rt:
            return self._raw_rt[peak_id][0]
        return self.get_peak(peak_id).rt

    def drop_filled(self) -> list[int]:
        """Remove peaks created during gap filling.

        Ids are reused by peaks added afterwards.

        :return: the ids of the removed peaks.

        """
        removed = [k for k, x in self._peaks.items() if x.filled]
        for peak_id in removed:
            peak = self._peaks.pop(peak_id)
            self._by_sample[peak.sample_id].remove(peak_id)
            self._raw_rt.pop(peak_id, None)
        self._by_sample = {k: v for k, v in self._by_sample.items() if v}
        self._next_id = max(self._peaks, default=-1) + 1
        return removed

    def to_jsonl(self, path: pathlib.Path) -> None:
        """Store peaks in a JSON lines file, one peak per line."""
        write_jsonl(path, self._peaks.values())

    @classmethod
    def from_jsonl(cls, path: pathlib.Path) -> PeakTable:
        """Create a new table from a file created with :py:meth:`to_jsonl`.

        Peaks keep the ids stored in the file.

        """
        table = cls()
        for peak in read_jsonl(path, Peak):
            table._peaks[peak.id] = peak
            table._by_sample.setdefault(peak.sample_id, list()).append(peak.id)
        for sample_id in table._by_sample:
            table._sort_sample(sample_id)
        table._next_id = max(table._peaks, default=-1) + 1
        return table

    def _sort_sample(self, sample_id: str) -> None:
        ids = self._by_sample[sample_id]
        ids.sort(key=lambda x: (self._peaks[x].rt, self._peaks[x].mz, x))

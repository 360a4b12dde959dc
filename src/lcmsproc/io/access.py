"""Raw data access.

Provides:

SpectrumAccess
    The read interface consumed by peak detection and gap filling.
Reader
    The interface that sample readers must implement. Readers are registered in the reader registry.
MSData
    Lazy, cached access to the scans of a single sample.
MSDataAccess
    A SpectrumAccess implementation over multiple samples.

"""

from __future__ import annotations

import pathlib
import threading
from collections import OrderedDict
from logging import getLogger
from typing import Callable, Generator, Protocol, Sequence

import numpy
import pydantic

from ..core.exceptions import (
    MalformedDataError,
    ReaderNotFound,
    RepeatedIdError,
    SampleNotFound,
    SpectrumReadError,
)
from ..core.models import Sample, Scan
from ..core.registry import Registry
from ..utils.numpy import find_range

logger = getLogger(__name__)

ScanTransform = Callable[[Scan], Scan]


class SpectrumAccess(Protocol):
    """Read interface for sample scans."""

    def get_scans(
        self,
        sample_id: str,
        mz_range: tuple[float, float] | None = None,
        rt_range: tuple[float, float] | None = None,
    ) -> list[Scan]:
        """Retrieve scans from a sample, sorted by time.

        :param sample_id: the sample id
        :param mz_range: if provided, only keep m/z values in this closed interval.
        :param rt_range: if provided, only keep scans with time in this closed interval.
        :return: the list of scans. An empty list is returned if no scan is found in the time range.
        :raises SpectrumReadError: if data cannot be read from the source.
        :raises SampleNotFound: if the sample is not found in the source.

        """
        ...


class Reader(Protocol):
    """Reader interface for raw data."""

    def __init__(self, src: pathlib.Path | Sample): ...

    def get_spectrum(self, index: int) -> Scan:
        """Retrieve a spectrum from file."""
        ...

    def get_n_spectra(self) -> int:
        """Retrieve the total number of spectra."""
        ...


reader_registry: Registry[Reader] = Registry("reader")


class MSData:
    """Provide access to the scans of a sample.

    Data is read in a lazy manner and cached in memory. Transforms are applied to each scan
    when it is read from the source, so cached scans belong to a single transform chain.

    :param sample: the sample to read. The reader is fetched from the reader registry using the
        sample `reader` field. If not set, the reader is inferred using the file extension.
    :param cache: The maximum cache size, in bytes. Old entries are deleted from the cache when this
        value is surpassed. If set to``-1``, the cache can grow indefinitely.
    :param transforms: functions applied to each scan after it is read from the source.

    """

    def __init__(self, sample: Sample, cache: int = -1, transforms: Sequence[ScanTransform] = tuple()):
        reader_name = sample.path.suffix[1:] if sample.reader is None else sample.reader
        if not reader_registry.has(reader_name):
            msg = f"No reader found for sample `{sample.id}`: `{reader_name}` is not a registered reader."
            raise ReaderNotFound(msg)
        reader = reader_registry.get(reader_name)

        self.sample = sample
        self.transforms = tuple(transforms)
        self._cache_size = cache
        self._cache = MSDataCache(max_size=cache)
        self._lock = threading.Lock()
        self._n_spectra: int | None = None
        self._index: tuple[list[int], numpy.ndarray] | None = None

        try:
            self._reader = reader(sample)
        except OSError as e:
            raise SpectrumReadError(f"Failed to open data from sample `{sample.id}`.") from e

    def get_n_spectra(self) -> int:
        """Retrieve the total number of spectra stored in the source."""
        if self._n_spectra is None:
            try:
                self._n_spectra = self._reader.get_n_spectra()
            except OSError as e:
                raise SpectrumReadError(f"Failed to read data from sample `{self.sample.id}`.") from e
        return self._n_spectra

    def get_spectrum(self, index: int) -> Scan:
        """Retrieve a spectrum by index, with transforms applied."""
        n_sp = self.get_n_spectra()
        if (index < 0) or (index >= n_sp):
            msg = f"`index` must be integer in the interval [0:{n_sp}). Got {index}."
            raise ValueError(msg)

        with self._lock:
            if self._cache.check(index):
                return self._cache.get(index)

        try:
            scan = self._reader.get_spectrum(index)
        except OSError as e:
            raise SpectrumReadError(f"Failed to read spectrum {index} from sample `{self.sample.id}`.") from e
        except pydantic.ValidationError as e:
            raise MalformedDataError(f"Invalid spectrum {index} in sample `{self.sample.id}`: {e}") from e

        scan.sample_id = self.sample.id
        for transform in self.transforms:
            scan = transform(scan)

        with self._lock:
            self._cache.add(scan)
        return scan

    def __iter__(self) -> Generator[Scan, None, None]:
        """Iterate over spectra, skipping spectra with MS level or time outside the sample definition."""
        for k in range(self.get_n_spectra()):
            sp = self.get_spectrum(k)
            if (self.sample.ms_level == sp.ms_level) and (self.sample.start_time <= sp.time):
                if (self.sample.end_time is None) or (self.sample.end_time > sp.time):
                    yield sp

    def get_scans(
        self, mz_range: tuple[float, float] | None = None, rt_range: tuple[float, float] | None = None
    ) -> list[Scan]:
        """Retrieve scans, optionally restricted to an m/z and time window.

        :raises MalformedDataError: if scan times are not strictly increasing.

        """
        indices, times = self._get_time_index()
        if rt_range is None:
            start, end = 0, len(indices)
        else:
            start, end = find_range(times, *rt_range)

        scans = [self.get_spectrum(k) for k in indices[start:end]]
        if mz_range is not None:
            scans = [crop_scan(x, *mz_range) for x in scans]
        return scans

    def with_transforms(self, *transforms: ScanTransform) -> MSData:
        """Create a new view of the sample data with additional transforms.

        The new view has its own cache.

        """
        return MSData(self.sample, cache=self._cache_size, transforms=self.transforms + transforms)

    def _get_time_index(self) -> tuple[list[int], numpy.ndarray]:
        if self._index is None:
            indices = list()
            times = list()
            for sp in self:
                indices.append(sp.index)
                times.append(sp.time)
            time_arr = numpy.array(times, dtype=float)
            if time_arr.size > 1 and (numpy.diff(time_arr) <= 0.0).any():
                raise MalformedDataError(f"Scan times in sample `{self.sample.id}` are not strictly increasing.")
            self._index = indices, time_arr
        return self._index


class MSDataCache:
    """Cache spectra data to avoid reading from the source.

    Old entries are deleted if the cache grows larger than total data size in bytes. The maximum size of the cache is
    defined by `max_size`. If set to ``-1``, the cache can grow indefinitely.

    """

    def __init__(self, max_size: int = -1):
        self.cache: OrderedDict[int, Scan] = OrderedDict()
        self.size = 0
        self.max_size = max_size

    def add(self, scan: Scan) -> None:
        """Store a scan."""
        if scan.index in self.cache:
            return
        self.cache[scan.index] = scan
        self.size += scan.get_nbytes()
        self._prune()

    def get(self, index: int) -> Scan:
        """Retrieve a scan from the cache."""
        scan = self.cache[index]
        self.cache.move_to_end(index)
        return scan

    def check(self, index: int) -> bool:
        """Check if the provided index is in the cache."""
        return index in self.cache

    def _prune(self) -> None:
        """Delete entries until the cache size is lower than max_size."""
        if self.max_size > -1:
            while self.size > self.max_size and self.cache:
                _, scan = self.cache.popitem(last=False)
                self.size -= scan.get_nbytes()


class MSDataAccess:
    """Provide access to scans of multiple samples.

    Per sample data is created lazily on the first read. Instances can be sent to worker processes:
    open sample data is not pickled and is recreated on demand.

    :param samples: the samples to read.
    :param cache: the maximum cache size, in bytes, for each sample. ``-1`` disables the size limit.
    :param transforms: functions applied to each scan when it is read.

    """

    def __init__(self, *samples: Sample, cache: int = -1, transforms: Sequence[ScanTransform] = tuple()):
        self.cache = cache
        self.transforms = tuple(transforms)
        self._samples: OrderedDict[str, Sample] = OrderedDict()
        self._data: dict[str, MSData] = dict()
        self._lock = threading.Lock()
        self.add_samples(*samples)

    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        state["_data"] = dict()
        del state["_lock"]
        return state

    def __setstate__(self, state: dict) -> None:
        self.__dict__.update(state)
        self._lock = threading.Lock()

    def add_samples(self, *samples: Sample) -> None:
        """Add samples to the data source.

        :raises RepeatedIdError: if a sample with the same id was already added.

        """
        for sample in samples:
            if sample.id in self._samples:
                raise RepeatedIdError(f"Sample with id `{sample.id}` already exists.")
            self._samples[sample.id] = sample

    def has_sample(self, sample_id: str) -> bool:
        """Check if a sample is in the data source."""
        return sample_id in self._samples

    def get_ms_data(self, sample_id: str) -> MSData:
        """Retrieve the data of a sample.

        :raises SampleNotFound: if the sample was not added to the data source.

        """
        if sample_id not in self._samples:
            raise SampleNotFound(sample_id)
        with self._lock:
            if sample_id not in self._data:
                self._data[sample_id] = MSData(self._samples[sample_id], cache=self.cache, transforms=self.transforms)
            return self._data[sample_id]

    def get_scans(
        self,
        sample_id: str,
        mz_range: tuple[float, float] | None = None,
        rt_range: tuple[float, float] | None = None,
    ) -> list[Scan]:
        """Retrieve scans from a sample, sorted by time.

        :param sample_id: the sample id
        :param mz_range: if provided, only keep m/z values in this closed interval.
        :param rt_range: if provided, only keep scans with time in this closed interval.

        """
        return self.get_ms_data(sample_id).get_scans(mz_range=mz_range, rt_range=rt_range)

    def with_transforms(self, *transforms: ScanTransform) -> MSDataAccess:
        """Create a new data source with additional transforms. Cached data is not shared."""
        return MSDataAccess(*self._samples.values(), cache=self.cache, transforms=self.transforms + transforms)


def crop_scan(scan: Scan, mz_min: float, mz_max: float) -> Scan:
    """Create a copy of a scan with m/z values in the closed interval ``[mz_min, mz_max]``."""
    start, end = find_range(scan.mz, mz_min, mz_max)
    return scan.model_copy(update={"mz": scan.mz[start:end], "int": scan.int[start:end]})

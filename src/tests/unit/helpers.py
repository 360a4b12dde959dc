"""Helpers classes and functions for unit tests."""

from __future__ import annotations

import pathlib

import numpy

from lcmsproc.core.models import Peak, Sample, Scan
from lcmsproc.io.access import reader_registry


def create_peak(
    sample_id: str,
    mz: float,
    rt: float,
    id: int = -1,
    width: float = 10.0,
    into: float = 1000.0,
    maxo: float = 100.0,
    filled: bool = False,
) -> Peak:
    """Create a peak centered at `mz` and `rt`."""
    return Peak(
        id=id,
        sample_id=sample_id,
        mz=mz,
        mz_min=mz - 0.001,
        mz_max=mz + 0.001,
        rt=rt,
        rt_min=rt - width / 2,
        rt_max=rt + width / 2,
        into=into,
        maxo=maxo,
        sn=10.0,
        filled=filled,
    )


def create_scan(index: int, mz: list[float], spint: list[float], time: float | None = None) -> Scan:
    """Create a scan. Time is equal to the index if not provided."""
    time = float(index) if time is None else time
    return Scan(index=index, mz=numpy.array(mz, dtype=float), int=numpy.array(spint, dtype=float), time=time)


@reader_registry.register
class FailingReader:
    """A reader that cannot read spectra."""

    def __init__(self, src: pathlib.Path | Sample) -> None:
        self.src = src

    def get_spectrum(self, index: int) -> Scan:
        raise OSError("corrupted data file")

    def get_n_spectra(self) -> int:
        return 10


@reader_registry.register
class UnsortedTimeReader:
    """A reader that creates scans with decreasing time."""

    def __init__(self, src: pathlib.Path | Sample) -> None:
        self.src = src

    def get_spectrum(self, index: int) -> Scan:
        return create_scan(index, [100.0], [1000.0], time=10.0 - index)

    def get_n_spectra(self) -> int:
        return 5


@reader_registry.register
class MismatchedArrayReader:
    """A reader that creates scans with m/z and intensity arrays of different length."""

    def __init__(self, src: pathlib.Path | Sample) -> None:
        self.src = src

    def get_spectrum(self, index: int) -> Scan:
        return create_scan(index, [100.0, 101.0], [1000.0])

    def get_n_spectra(self) -> int:
        return 5

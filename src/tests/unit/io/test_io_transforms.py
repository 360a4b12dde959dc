import numpy
import pytest

from lcmsproc.core.models import Feature
from lcmsproc.io.tabular import read_jsonl, write_jsonl
from lcmsproc.io.transforms import IntensityThreshold, MZCrop

from ..helpers import create_peak, create_scan


@pytest.fixture
def scan():
    return create_scan(0, [100.0, 150.0, 200.0, 250.0], [10.0, 200.0, 50.0, 400.0])


def test_intensity_threshold(scan):
    actual = IntensityThreshold(min_intensity=50.0)(scan)
    assert numpy.array_equal(actual.mz, [150.0, 200.0, 250.0])
    assert scan.mz.size == 4


def test_mz_crop(scan):
    actual = MZCrop(mz_min=120.0, mz_max=200.0)(scan)
    assert numpy.array_equal(actual.mz, [150.0, 200.0])


def test_mz_crop_invalid_window_raise_error():
    with pytest.raises(ValueError):
        MZCrop(mz_min=200.0, mz_max=100.0)


def test_write_read_features_jsonl(tmp_path):
    peaks = [create_peak("s1", 100.0, 50.0, id=0), create_peak("s2", 100.001, 51.0, id=1)]
    expected = [Feature.from_peaks(peaks, id=0)]
    path = tmp_path / "features.jsonl"
    write_jsonl(path, expected)
    actual = read_jsonl(path, Feature)
    assert actual == expected
    assert actual[0].n_peaks == 2

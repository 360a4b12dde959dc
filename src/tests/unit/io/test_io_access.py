import pickle

import numpy
import pytest

from lcmsproc.core.exceptions import (
    MalformedDataError,
    ReaderNotFound,
    RepeatedIdError,
    SampleNotFound,
    SpectrumReadError,
)
from lcmsproc.core.models import Sample
from lcmsproc.io.access import MSData, MSDataAccess, MSDataCache, crop_scan
from lcmsproc.io.transforms import IntensityThreshold, MZCrop

from ..helpers import create_scan


@pytest.fixture
def sample(lcms_sample_factory) -> Sample:
    return lcms_sample_factory("sample")


class TestMSData:
    def test_n_spectra(self, sample, lcms_config):
        data = MSData(sample)
        assert data.get_n_spectra() == lcms_config.n_scans

    def test_get_spectrum_sets_sample_id(self, sample):
        data = MSData(sample)
        assert data.get_spectrum(5).sample_id == sample.id

    def test_get_spectrum_invalid_index_raise_error(self, sample, lcms_config):
        data = MSData(sample)
        with pytest.raises(ValueError):
            data.get_spectrum(lcms_config.n_scans)

    def test_get_spectrum_uses_cache(self, sample):
        data = MSData(sample)
        assert data.get_spectrum(3) is data.get_spectrum(3)

    def test_iterate_respects_time_window(self, lcms_sample_factory):
        sample = lcms_sample_factory("sample", start_time=10.0, end_time=20.0)
        times = [x.time for x in MSData(sample)]
        assert min(times) >= 10.0
        assert max(times) < 20.0

    def test_get_scans_rt_range(self, sample):
        scans = MSData(sample).get_scans(rt_range=(10.0, 20.0))
        assert [x.time for x in scans] == [float(x) for x in range(10, 21)]

    def test_get_scans_mz_range(self, sample):
        scans = MSData(sample).get_scans(mz_range=(149.0, 151.0))
        assert all(((x.mz >= 149.0) & (x.mz <= 151.0)).all() for x in scans)

    def test_get_scans_range_without_scans_returns_empty_list(self, sample):
        assert MSData(sample).get_scans(rt_range=(5000.0, 6000.0)) == list()

    def test_transforms_are_applied(self, sample):
        data = MSData(sample, transforms=[IntensityThreshold(min_intensity=1000.0)])
        assert all((x.int >= 1000.0).all() for x in data)

    def test_with_transforms_do_not_share_cache(self, sample):
        data = MSData(sample)
        view = data.with_transforms(MZCrop(mz_min=200.0, mz_max=300.0))
        assert data.get_spectrum(100).mz.size == 3
        assert view.get_spectrum(100).mz.size == 1

    def test_unknown_reader_raise_error(self, tmp_path):
        sample = Sample(id="sample", path=tmp_path / "sample.unknown")
        with pytest.raises(ReaderNotFound):
            MSData(sample)

    def test_read_failure_raise_spectrum_read_error(self):
        sample = Sample(id="sample", reader="FailingReader")
        with pytest.raises(SpectrumReadError):
            MSData(sample).get_spectrum(0)

    def test_unsorted_times_raise_error(self):
        sample = Sample(id="sample", reader="UnsortedTimeReader")
        with pytest.raises(MalformedDataError):
            MSData(sample).get_scans()

    def test_mismatched_arrays_raise_error(self):
        sample = Sample(id="sample", reader="MismatchedArrayReader")
        with pytest.raises(MalformedDataError):
            MSData(sample).get_spectrum(0)


class TestMSDataCache:
    def test_prune_old_entries(self):
        scan = create_scan(0, [100.0, 200.0], [1.0, 2.0])
        cache = MSDataCache(max_size=scan.get_nbytes() * 2)
        for k in range(3):
            cache.add(create_scan(k, [100.0, 200.0], [1.0, 2.0]))
        assert not cache.check(0)
        assert cache.check(1)
        assert cache.check(2)

    def test_get_updates_entry_order(self):
        scan = create_scan(0, [100.0], [1.0])
        cache = MSDataCache(max_size=scan.get_nbytes() * 2)
        cache.add(create_scan(0, [100.0], [1.0]))
        cache.add(create_scan(1, [100.0], [1.0]))
        cache.get(0)
        cache.add(create_scan(2, [100.0], [1.0]))
        assert cache.check(0)
        assert not cache.check(1)


class TestMSDataAccess:
    @pytest.fixture
    def access(self, lcms_sample_factory):
        return MSDataAccess(*(lcms_sample_factory(f"sample-{k}") for k in range(2)))

    def test_get_scans(self, access, lcms_config):
        scans = access.get_scans("sample-1")
        assert len(scans) == lcms_config.n_scans
        assert all(x.sample_id == "sample-1" for x in scans)

    def test_get_scans_missing_sample_raise_error(self, access):
        with pytest.raises(SampleNotFound):
            access.get_scans("sample-5")

    def test_add_repeated_sample_raise_error(self, access, lcms_sample_factory):
        with pytest.raises(RepeatedIdError):
            access.add_samples(lcms_sample_factory("sample-0"))

    def test_pickle(self, access):
        expected = access.get_scans("sample-0", rt_range=(40.0, 60.0))
        restored = pickle.loads(pickle.dumps(access))
        actual = restored.get_scans("sample-0", rt_range=(40.0, 60.0))
        assert len(actual) == len(expected)
        assert all(numpy.array_equal(x.int, y.int) for x, y in zip(actual, expected))

    def test_with_transforms(self, access):
        view = access.with_transforms(MZCrop(mz_min=240.0, mz_max=260.0))
        scans = view.get_scans("sample-0")
        assert all(x.mz.size == 1 for x in scans)


def test_crop_scan_closed_interval():
    scan = create_scan(0, [100.0, 150.0, 200.0, 250.0], [1.0, 2.0, 3.0, 4.0])
    cropped = crop_scan(scan, 150.0, 200.0)
    assert numpy.array_equal(cropped.mz, [150.0, 200.0])
    assert numpy.array_equal(cropped.int, [2.0, 3.0])

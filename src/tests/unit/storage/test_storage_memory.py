import pytest

from lcmsproc.core import exceptions
from lcmsproc.core.dataflow import AssayProcessStatus
from lcmsproc.core.models import Feature, RtAdjustment, Sample
from lcmsproc.storage.memory import OnMemoryAssayStorage
from lcmsproc.storage.peak_table import PeakTable

from ..helpers import create_peak


@pytest.fixture
def storage():
    storage = OnMemoryAssayStorage("assay")
    storage.add_samples(Sample(id="s1"), Sample(id="s2"))
    return storage


@pytest.fixture
def features():
    peaks = [create_peak("s1", 100.0, 50.0, id=0), create_peak("s2", 100.0, 51.0, id=1)]
    return [Feature.from_peaks(peaks, id=0), Feature.from_peaks(peaks[1:], id=1)]


def test_add_repeated_sample_raise_error(storage):
    with pytest.raises(exceptions.RepeatedIdError):
        storage.add_samples(Sample(id="s1"))


def test_fetch_sample(storage):
    assert storage.fetch_sample("s2").id == "s2"


def test_fetch_missing_sample_raise_error(storage):
    with pytest.raises(exceptions.SampleNotFound):
        storage.fetch_sample("s3")


def test_list_samples_returns_copies(storage):
    samples = storage.list_samples()
    assert [x.id for x in samples] == ["s1", "s2"]
    samples[0].group = "modified"
    assert storage.fetch_sample("s1").group == ""


def test_initial_status_is_unprocessed(storage):
    assert storage.get_process_status() == AssayProcessStatus.unprocessed()


def test_set_features(storage, features):
    storage.set_features(features)
    assert storage.list_features() == features
    assert storage.fetch_feature(1) == features[1]


def test_fetch_missing_feature_raise_error(storage, features):
    storage.set_features(features)
    with pytest.raises(exceptions.FeatureNotFound):
        storage.fetch_feature(5)


def test_rt_adjustments(storage):
    adjustment = RtAdjustment(sample_id="s1", raw=[0.0, 100.0], adjusted=[1.0, 101.0])
    storage.set_rt_adjustments({"s1": adjustment})
    assert storage.get_rt_adjustment("s1") is adjustment
    assert storage.get_rt_adjustment("s2") is None
    storage.clear_rt_adjustments()
    assert storage.get_rt_adjustment("s1") is None


def test_save(storage, features, tmp_path):
    storage.peaks.add_peaks([create_peak("s1", 100.0, 50.0), create_peak("s2", 100.0, 51.0)])
    storage.set_features(features)
    storage.save(tmp_path / "assay")
    assert PeakTable.from_jsonl(tmp_path / "assay" / "peaks.jsonl") == storage.peaks
    assert OnMemoryAssayStorage.load_features(tmp_path / "assay") == features

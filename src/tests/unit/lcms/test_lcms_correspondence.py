import pytest

from lcmsproc.core.enums import MSInstrument, Polarity, SeparationMode
from lcmsproc.core.exceptions import ConfigError
from lcmsproc.core.models import Sample
from lcmsproc.lcms.correspondence import PeakDensity

from ..helpers import create_peak


def create_samples(*groups: str) -> list[Sample]:
    return [Sample(id=f"s{k}", group=group) for k, group in enumerate(groups, start=1)]


def create_peaks(specs: list[tuple[str, float, float]]):
    return [create_peak(sample_id, mz, rt, id=k) for k, (sample_id, mz, rt) in enumerate(specs)]


@pytest.fixture
def samples():
    return create_samples("", "", "")


@pytest.fixture
def peaks():
    # feature at m/z 100 is detected in 2 out of 3 samples
    return create_peaks(
        [
            ("s1", 100.0, 50.0),
            ("s2", 100.0, 50.5),
            ("s1", 200.0, 80.0),
            ("s2", 200.0, 80.5),
            ("s3", 200.0, 79.5),
        ]
    )


@pytest.fixture
def op():
    return PeakDensity(id="density", bin_size=0.05, bandwidth=5.0, min_fraction=0.5)


def test_invalid_min_fraction_raise_error():
    with pytest.raises(ConfigError):
        PeakDensity(min_fraction=1.5)


def test_group_empty_peaks(op, samples):
    assert op.group(list(), samples) == list()


def test_group_creates_features(op, peaks, samples):
    features = op.group(peaks, samples)
    assert len(features) == 2
    assert features[0].peak_ids == [0, 1]
    assert features[1].peak_ids == [2, 3, 4]
    assert features[1].n_samples == 3


def test_group_features_sorted_by_mz_with_consecutive_ids(op, peaks, samples):
    features = op.group(peaks, samples)
    assert [x.id for x in features] == list(range(len(features)))
    mz = [x.mz_med for x in features]
    assert mz == sorted(mz)


def test_group_min_fraction_discards_features(op, peaks, samples):
    op.min_fraction = 0.8
    features = op.group(peaks, samples)
    assert len(features) == 1
    assert features[0].mz_med == pytest.approx(200.0)


def test_group_min_samples_keeps_features(op, peaks, samples):
    op.min_fraction = 0.8
    op.min_samples = 2
    features = op.group(peaks, samples)
    assert len(features) == 2


def test_group_min_fraction_is_computed_per_sample_group(op):
    samples = create_samples("a", "a", "b", "b")
    peaks = create_peaks([("s3", 100.0, 50.0), ("s4", 100.0, 50.0)])
    op.min_fraction = 0.8
    features = op.group(peaks, samples)
    assert len(features) == 1


def test_group_ignores_peaks_from_samples_not_included(op, peaks, samples):
    features = op.group(peaks, samples[:1])
    assert all(x.n_samples == 1 for x in features)
    assert sorted(x for ft in features for x in ft.peak_ids) == [0, 2]


def test_group_small_bandwidth_splits_clusters_wider_apart_than_kernel(op, samples):
    # with a kernel sd of 1.8 s, clusters 1.2 s apart create a single density maximum, 12 s are used instead
    peaks = create_peaks([("s1", 100.0, 100.0), ("s2", 100.0, 100.0), ("s1", 100.0, 112.0), ("s2", 100.0, 112.0)])
    op.bandwidth = 1.8
    features = op.group(peaks, samples)
    assert [x.peak_ids for x in features] == [[0, 1], [2, 3]]


def test_group_large_bandwidth_merges_clusters_wider_apart_than_kernel(op, samples):
    peaks = create_peaks([("s1", 100.0, 100.0), ("s2", 100.0, 100.0), ("s1", 100.0, 112.0), ("s2", 100.0, 112.0)])
    op.bandwidth = 30.0
    features = op.group(peaks, samples)
    assert len(features) == 1
    assert features[0].peak_ids == [0, 1, 2, 3]


def test_group_max_features(op, samples):
    specs = [(x.id, 100.0, rt) for rt in (50.0, 100.0, 150.0) for x in samples]
    op.max_features = 2
    features = op.group(create_peaks(specs), samples)
    assert len(features) == 2
    assert [x.rt_med for x in features] == [50.0, 100.0]


def test_group_peaks_are_assigned_to_a_single_feature(op, samples):
    specs = [(x.id, 100.0 + 0.01 * k, 60.0) for k in range(10) for x in samples]
    peaks = create_peaks(specs)
    features = op.group(peaks, samples)
    peak_ids = [x for ft in features for x in ft.peak_ids]
    assert len(peak_ids) == len(set(peak_ids))


def test_group_peaks_are_not_lost_at_slice_boundaries(op, samples):
    peaks = create_peaks([("s1", 100.0, 60.0), ("s2", 100.03, 60.0), ("s3", 100.03, 60.0)])
    op.min_fraction = 0.3
    features = op.group(peaks, samples)
    assert [x.peak_ids for x in features] == [[0, 1, 2]]


def test_group_all_peaks_in_valid_groups_are_assigned(op, samples):
    specs = [(f"s{k % 3 + 1}", 100.0 + 0.017 * k, 60.0) for k in range(12)]
    op.min_fraction = 0.3
    features = op.group(create_peaks(specs), samples)
    peak_ids = sorted(x for ft in features for x in ft.peak_ids)
    assert peak_ids == list(range(len(specs)))


def test_group_shared_peak_is_assigned_to_group_with_closest_mz(op, samples):
    specs = [(x.id, 100.0, 60.0) for x in samples]
    specs.append(("s1", 100.028, 60.0))
    specs.extend((x.id, 100.04, 60.0) for x in samples)
    features = op.group(create_peaks(specs), samples)
    assert [x.peak_ids for x in features] == [[0, 1, 2], [3, 4, 5, 6]]


def test_group_thresholds_are_checked_after_shared_peaks_are_assigned(op):
    samples = create_samples("", "")
    peaks = create_peaks([("s1", 100.0, 60.0), ("s2", 100.024, 60.0), ("s1", 100.026, 60.0), ("s1", 100.05, 60.0)])
    op.min_fraction = 1.0
    features = op.group(peaks, samples)
    assert [x.peak_ids for x in features] == [[0, 1, 2]]
    assert all(x.n_samples == len(samples) for x in features)


def test_group_is_deterministic(op, peaks, samples):
    assert op.group(peaks, samples) == op.group(list(reversed(peaks)), samples)


@pytest.mark.parametrize("instrument", list(MSInstrument))
@pytest.mark.parametrize("separation", list(SeparationMode))
def test_from_defaults(instrument, separation):
    op = PeakDensity.from_defaults(instrument, separation, Polarity.POSITIVE)
    assert op.bin_size < 0.25
    assert op.bandwidth > 0.0

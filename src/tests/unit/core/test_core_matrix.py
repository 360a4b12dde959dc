import numpy
import pytest

from lcmsproc.core import exceptions
from lcmsproc.core.enums import MultiPeakPolicy
from lcmsproc.core.matrix import FeatureValueMatrix
from lcmsproc.core.models import Feature

from ..helpers import create_peak


@pytest.fixture
def peaks():
    return [
        create_peak("s1", 100.0, 50.0, id=0, into=10.0, maxo=5.0),
        create_peak("s2", 100.0, 51.0, id=1, into=20.0, maxo=8.0),
        create_peak("s2", 100.0, 58.0, id=2, into=40.0, maxo=6.0),
        create_peak("s1", 200.0, 80.0, id=3, into=30.0, maxo=3.0),
    ]


@pytest.fixture
def features(peaks):
    return [Feature.from_peaks(peaks[:3], id=0), Feature.from_peaks(peaks[3:], id=1)]


@pytest.fixture
def sample_ids():
    return ["s1", "s2", "s3"]


class TestFeatureValueMatrix:
    def test_invalid_shape_raise_error(self):
        with pytest.raises(ValueError):
            FeatureValueMatrix([0, 1], ["s1"], numpy.zeros((1, 2)))

    def test_from_features_shape(self, features, peaks, sample_ids):
        matrix = FeatureValueMatrix.from_features(features, peaks, sample_ids)
        assert matrix.shape == (2, 3)
        assert matrix.list_feature_ids() == [0, 1]
        assert matrix.list_sample_ids() == sample_ids

    def test_missing_values_are_nan(self, features, peaks, sample_ids):
        matrix = FeatureValueMatrix.from_features(features, peaks, sample_ids)
        assert matrix.has_missing()
        assert matrix.count_missing() == 3
        assert numpy.isnan(matrix.get_value(1, "s2"))

    def test_max_intensity_policy(self, features, peaks, sample_ids):
        matrix = FeatureValueMatrix.from_features(features, peaks, sample_ids, policy=MultiPeakPolicy.MAX_INTENSITY)
        assert matrix.get_value(0, "s2") == pytest.approx(20.0)

    def test_median_rt_policy(self, features, peaks, sample_ids):
        matrix = FeatureValueMatrix.from_features(features, peaks, sample_ids, policy=MultiPeakPolicy.MEDIAN_RT)
        # feature rt median is 51.0
        assert matrix.get_value(0, "s2") == pytest.approx(20.0)

    def test_sum_policy(self, features, peaks, sample_ids):
        matrix = FeatureValueMatrix.from_features(features, peaks, sample_ids, policy="sum")  # type: ignore
        assert matrix.get_value(0, "s2") == pytest.approx(60.0)

    def test_other_peak_column(self, features, peaks, sample_ids):
        matrix = FeatureValueMatrix.from_features(features, peaks, sample_ids, value="maxo")
        assert numpy.allclose(matrix.get_column("s1"), [5.0, 3.0])

    def test_invalid_column_raise_error(self, features, peaks, sample_ids):
        with pytest.raises(ValueError):
            FeatureValueMatrix.from_features(features, peaks, sample_ids, value="invalid")

    def test_get_missing_sample_raise_error(self, features, peaks, sample_ids):
        matrix = FeatureValueMatrix.from_features(features, peaks, sample_ids)
        with pytest.raises(exceptions.SampleNotFound):
            matrix.get_column("s4")

    def test_get_missing_feature_raise_error(self, features, peaks, sample_ids):
        matrix = FeatureValueMatrix.from_features(features, peaks, sample_ids)
        with pytest.raises(exceptions.FeatureNotFound):
            matrix.get_row(5)

    def test_to_dict(self, features, peaks, sample_ids):
        matrix = FeatureValueMatrix.from_features(features, peaks, sample_ids)
        d = matrix.to_dict()
        assert list(d) == sample_ids
        assert d["s1"] == [10.0, 30.0]

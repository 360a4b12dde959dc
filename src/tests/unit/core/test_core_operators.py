import pydantic
import pytest

from lcmsproc.core.dataflow import AssayProcessStatus, check_process_status, update_process_status
from lcmsproc.core.enums import MSInstrument, Polarity, SeparationMode
from lcmsproc.core.exceptions import (
    ConfigError,
    PipelineConfigurationError,
    ProcessStatusError,
    RegistryError,
    RepeatedIdError,
)
from lcmsproc.core.operators import Pipeline
from lcmsproc.core.registry import Registry, operator_registry
from lcmsproc.lcms.alignment import PeakGroups
from lcmsproc.lcms.correspondence import PeakDensity
from lcmsproc.lcms.detection import CentWave, MatchedFilter
from lcmsproc.lcms.gapfill import FillChromPeaks


class TestProcessStatus:
    def test_unchecked_fields_are_ignored(self):
        status = AssayProcessStatus.unprocessed()
        check_process_status(status, AssayProcessStatus(peaks_detected=False))

    def test_check_invalid_status_raise_error(self):
        status = AssayProcessStatus.unprocessed()
        with pytest.raises(ProcessStatusError):
            check_process_status(status, AssayProcessStatus(features_grouped=True))

    def test_update_only_modifies_set_fields(self):
        status = AssayProcessStatus.unprocessed()
        update_process_status(status, AssayProcessStatus(rt_adjusted=True))
        assert status.rt_adjusted
        assert status.peaks_detected is False


class TestOperatorParameters:
    def test_invalid_parameter_on_creation_raise_config_error(self):
        with pytest.raises(ConfigError):
            CentWave(ppm=-1.0)

    def test_unsorted_peakwidth_raise_config_error(self):
        with pytest.raises(ConfigError):
            CentWave(peakwidth=(50.0, 20.0))

    def test_invalid_min_fraction_raise_config_error(self):
        with pytest.raises(ConfigError):
            PeakDensity(min_fraction=1.5)

    def test_invalid_smoother_raise_config_error(self):
        with pytest.raises(ConfigError):
            PeakGroups(smooth="spline")  # type: ignore

    def test_set_invalid_parameter_raise_validation_error(self):
        op = FillChromPeaks()
        with pytest.raises(pydantic.ValidationError):
            op.ppm = -5.0  # type: ignore

    def test_get_parameters_include_algorithm(self):
        params = PeakDensity(bandwidth=5.0).get_parameters()
        assert params["algorithm"] == "PeakDensity"
        assert params["method"] == "density"
        assert params["bandwidth"] == 5.0

    @pytest.mark.parametrize("op_type", [CentWave, MatchedFilter, PeakDensity, PeakGroups, FillChromPeaks])
    @pytest.mark.parametrize("instrument", list(MSInstrument))
    @pytest.mark.parametrize("separation", list(SeparationMode))
    def test_from_defaults(self, op_type, instrument, separation):
        op = op_type.from_defaults(instrument, separation, Polarity.POSITIVE)
        assert isinstance(op, op_type)

    def test_from_defaults_uses_instrument(self):
        qtof = CentWave.from_defaults(MSInstrument.QTOF, SeparationMode.UPLC, Polarity.POSITIVE)
        orbitrap = CentWave.from_defaults(MSInstrument.ORBITRAP, SeparationMode.UPLC, Polarity.POSITIVE)
        assert orbitrap.ppm < qtof.ppm

    def test_peak_groups_from_defaults_sets_grouping(self):
        op = PeakGroups.from_defaults(MSInstrument.ORBITRAP, SeparationMode.UPLC, Polarity.POSITIVE)
        expected = PeakDensity.from_defaults(MSInstrument.ORBITRAP, SeparationMode.UPLC, Polarity.POSITIVE)
        assert op.grouping == expected


class TestExpectedStatus:
    def test_peak_detection_after_peak_detection_raise_error(self):
        status = AssayProcessStatus.unprocessed()
        op = CentWave()
        op.update_status(status)
        with pytest.raises(ProcessStatusError):
            op.check_status(status)

    def test_gap_filling_before_correspondence_raise_error(self):
        status = AssayProcessStatus(peaks_detected=True, features_grouped=False, peaks_filled=False)
        with pytest.raises(ProcessStatusError):
            FillChromPeaks().check_status(status)

    def test_alignment_twice_raise_error(self):
        status = AssayProcessStatus(peaks_detected=True, features_grouped=False, rt_adjusted=False, peaks_filled=False)
        op = PeakGroups()
        op.check_status(status)
        op.update_status(status)
        with pytest.raises(ProcessStatusError):
            op.check_status(status)

    def test_alignment_discards_features(self):
        status = AssayProcessStatus(peaks_detected=True, features_grouped=True, rt_adjusted=False, peaks_filled=False)
        PeakGroups().update_status(status)
        assert status.rt_adjusted
        assert not status.features_grouped


class TestRegistry:
    def test_operators_are_registered(self):
        for name in ["CentWave", "MatchedFilter", "PeakDensity", "PeakGroups", "FillChromPeaks"]:
            assert operator_registry.has(name)

    def test_get_missing_entry_raise_error(self):
        with pytest.raises(RegistryError):
            Registry("test").get("missing")

    def test_register_repeated_entry_raise_error(self):
        registry = Registry("test")
        registry.register(PeakDensity)
        with pytest.raises(RepeatedIdError):
            registry.register(PeakDensity)

    def test_list(self):
        registry = Registry("test")
        registry.register(PeakGroups)
        registry.register(CentWave)
        assert registry.list() == ["CentWave", "PeakGroups"]

    def test_missing_entry_error_lists_available_entries(self):
        registry = Registry("test")
        registry.register(CentWave)
        with pytest.raises(RegistryError, match="CentWave"):
            registry.get("missing")


class TestPipeline:
    @pytest.fixture
    def pipe(self):
        pipe = Pipeline("pipeline")
        pipe.add_operator(CentWave(id="detection", peakwidth=(5.0, 30.0)))
        pipe.add_operator(PeakGroups(id="alignment", grouping=PeakDensity(bandwidth=5.0)))
        pipe.add_operator(PeakDensity(id="correspondence", bin_size=0.01))
        pipe.add_operator(FillChromPeaks(id="gap-filling", ppm=10.0))
        return pipe

    def test_add_operator_with_repeated_id_raise_error(self, pipe):
        with pytest.raises(RepeatedIdError):
            pipe.add_operator(PeakDensity(id="correspondence"))

    def test_validate_dataflow(self, pipe):
        pipe.validate_dataflow()

    def test_validate_dataflow_invalid_order_raise_error(self):
        pipe = Pipeline("pipeline")
        pipe.add_operator(CentWave(id="detection"))
        pipe.add_operator(FillChromPeaks(id="gap-filling"))
        with pytest.raises(PipelineConfigurationError):
            pipe.validate_dataflow()

    def test_validate_dataflow_alignment_after_gap_filling_raise_error(self):
        pipe = Pipeline("pipeline")
        pipe.add_operator(CentWave(id="detection"))
        pipe.add_operator(PeakDensity(id="correspondence"))
        pipe.add_operator(FillChromPeaks(id="gap-filling"))
        pipe.add_operator(PeakGroups(id="alignment"))
        with pytest.raises(PipelineConfigurationError):
            pipe.validate_dataflow()

    def test_serialize_deserialize(self, pipe):
        actual = Pipeline.deserialize(pipe.serialize())
        assert actual == pipe

    def test_serialize_include_operator_class(self, pipe):
        d = pipe.serialize()
        assert [x["class"] for x in d["operators"]] == ["CentWave", "PeakGroups", "PeakDensity", "FillChromPeaks"]

    def test_deserialize_without_id_raise_error(self, pipe):
        d = pipe.serialize()
        d.pop("id")
        with pytest.raises(ConfigError):
            Pipeline.deserialize(d)

    def test_deserialize_without_class_raise_error(self, pipe):
        d = pipe.serialize()
        d["operators"][0].pop("class")
        with pytest.raises(ConfigError):
            Pipeline.deserialize(d)

    def test_deserialize_invalid_parameters_raise_error(self, pipe):
        d = pipe.serialize()
        d["operators"][2]["bin_size"] = -1.0
        with pytest.raises(ConfigError):
            Pipeline.deserialize(d)

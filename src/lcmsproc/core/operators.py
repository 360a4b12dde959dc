"""lcmsproc core operators.

Operators store algorithm parameters as pydantic models and implement one processing stage.
Each stage defines an abstract operator, and each concrete algorithm is a subclass that is
registered in the operator registry.

"""

from __future__ import annotations

from abc import ABC, abstractmethod
from logging import getLogger
from typing import TYPE_CHECKING, Any, Self

import pydantic

from .dataflow import AssayProcessStatus, check_process_status, update_process_status
from .enums import MSInstrument, Polarity, ProcessingStage, SeparationMode, StepStatus
from .exceptions import ConfigError, MalformedDataError, PipelineConfigurationError, RepeatedIdError
from .history import ProcessingStep, SampleRecord
from .models import Feature, Peak, Sample, Scan
from .registry import operator_registry

if TYPE_CHECKING:
    from ..io.access import SpectrumAccess
    from ..storage.memory import OnMemoryAssayStorage

logger = getLogger(__name__)


class BaseOperator(ABC, pydantic.BaseModel):
    """Base operator which all other operators inherit from.

    Provides functionality to:
    - validate parameters on creation, raising a :py:class:`ConfigError` on invalid values.
    - set default parameters using instrument type, separation type and polarity.
    - check and update the processing status of the data.

    """

    id: str = ""
    """The Operator id."""

    model_config = pydantic.ConfigDict(validate_assignment=True)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except pydantic.ValidationError as e:
            raise ConfigError(f"Invalid {self.__class__.__name__} parameters: {e}") from e

    @abstractmethod
    def get_expected_status_in(self) -> AssayProcessStatus:
        """Get the expected data status before applying the operator."""
        ...

    @abstractmethod
    def get_expected_status_out(self) -> AssayProcessStatus:
        """Get the expected data status after applying the operator."""
        ...

    def check_status(self, status: AssayProcessStatus) -> None:
        """Raise an exception if data status is not compatible with operator required status."""
        check_process_status(status, self.get_expected_status_in())

    def update_status(self, status: AssayProcessStatus) -> None:
        """Update the data process status to the status after applying the operator."""
        update_process_status(status, self.get_expected_status_out())

    def get_parameters(self) -> dict[str, Any]:
        """Get the operator parameters as a JSON compatible dictionary, including the algorithm name."""
        params = self.model_dump(mode="json")
        params["algorithm"] = self.__class__.__name__
        return params

    @classmethod
    @abstractmethod
    def from_defaults(cls, instrument: MSInstrument, separation: SeparationMode, polarity: Polarity) -> Self:
        """Create a new operator with sane defaults for the specified MS instrument, separation mode and polarity.

        :param instrument: The MS instrument used to measure the samples
        :param separation: The analytical method used for separation
        :param polarity: The polarity in which the samples where measured
        :return: A new operator instance

        """
        ...


class SampleDetection(pydantic.BaseModel):
    """Store the result of detecting peaks in a single sample."""

    record: SampleRecord
    """The sample processing outcome."""

    peaks: list[Peak] = list()
    """The detected peaks, sorted by retention time."""


class PeakDetector(BaseOperator):
    """Detect chromatographic peaks in individual samples.

    MUST implement the `detect` method, which takes the scans of a single sample and creates a list of peaks.
    Samples are independent, which allows processing them in parallel.

    """

    def get_expected_status_in(self) -> AssayProcessStatus:
        """Get the expected status before performing peak detection."""
        return AssayProcessStatus(peaks_detected=False)

    def get_expected_status_out(self) -> AssayProcessStatus:
        """Get the expected status after performing peak detection."""
        return AssayProcessStatus(peaks_detected=True)

    @abstractmethod
    def detect(self, scans: list[Scan], sample_id: str) -> list[Peak]:
        """Detect peaks from the scans of a sample.

        :param scans: the sample scans, sorted by time.
        :param sample_id: the id of the sample.
        :return: the list of peaks. An empty list is a valid result.
        :raises MalformedDataError: if the scans cannot be processed.

        """
        ...

    def process_sample(self, access: SpectrumAccess, sample: Sample) -> SampleDetection:
        """Read sample data and detect peaks.

        Read failures and malformed data are recorded as failures instead of raising an exception.

        """
        try:
            scans = access.get_scans(sample.id)
            peaks = self.detect(scans, sample.id)
        except (OSError, MalformedDataError) as e:
            logger.warning(f"Peak detection failed for sample `{sample.id}`: {e}")
            record = SampleRecord(sample_id=sample.id, status=StepStatus.FAILED, message=str(e))
            return SampleDetection(record=record)

        peaks = sorted(peaks, key=lambda x: (x.rt, x.mz))
        if peaks:
            record = SampleRecord(sample_id=sample.id, n_peaks=len(peaks))
        else:
            logger.warning(f"No peaks found in sample `{sample.id}`.")
            record = SampleRecord(sample_id=sample.id, status=StepStatus.NO_SIGNAL, message="no peaks found")
        return SampleDetection(record=record, peaks=peaks)


class AssayOperator(BaseOperator):
    """Base operator for stages that process data from all samples in an assay."""

    def apply(self, data: OnMemoryAssayStorage, access: SpectrumAccess | None = None) -> ProcessingStep:
        """Apply the operator function to the data.

        :param data: the assay data
        :param access: raw data access. Only required by operators that read raw data.
        :return: the processing step describing the operation.

        """
        self.check_status(data.get_process_status())

        if hasattr(self, "pre_apply"):
            self.pre_apply()  # type: ignore

        step = self._apply_operator(data, access)

        if hasattr(self, "post_apply"):
            self.post_apply()  # type: ignore

        self.update_status(data.get_process_status())
        return step

    @abstractmethod
    def _apply_operator(self, data: OnMemoryAssayStorage, access: SpectrumAccess | None) -> ProcessingStep: ...


class PeakGrouper(AssayOperator):
    """Group peaks across samples into features.

    MUST implement the `group` method, which takes peaks and samples and creates a list of features.
    Feature ids are assigned by `group`. Previous features in the assay are discarded.

    """

    def get_expected_status_in(self) -> AssayProcessStatus:
        """Get expected status of input data."""
        return AssayProcessStatus(peaks_detected=True, peaks_filled=False)

    def get_expected_status_out(self) -> AssayProcessStatus:
        """Get status of output data."""
        return AssayProcessStatus(features_grouped=True)

    def _apply_operator(self, data: OnMemoryAssayStorage, access: SpectrumAccess | None) -> ProcessingStep:
        samples = data.list_samples()
        peaks = data.peaks.list_peaks(sample_ids=[x.id for x in samples])
        features = self.group(peaks, samples)
        data.set_features(features)
        logger.info(f"Created {len(features)} features from {len(peaks)} peaks.")
        return ProcessingStep(
            stage=ProcessingStage.CORRESPONDENCE,
            parameters=self.get_parameters(),
            messages=(f"{len(features)} features created from {len(peaks)} peaks.",),
        )

    @abstractmethod
    def group(self, peaks: list[Peak], samples: list[Sample]) -> list[Feature]:
        """Group peaks into features.

        :param peaks: the peaks to group
        :param samples: the samples included in the grouping. Sample groups are used to compute detection rates.
        :return: features sorted by m/z and retention time, with ids assigned following this order.

        """
        ...


class RtAligner(AssayOperator):
    """Apply a retention time correction to peaks.

    Raw retention time values are preserved in the assay data and can be restored. Features
    defined before the correction are discarded.

    """

    def get_expected_status_in(self) -> AssayProcessStatus:
        """Get expected status of input data."""
        return AssayProcessStatus(peaks_detected=True, rt_adjusted=False, peaks_filled=False)

    def get_expected_status_out(self) -> AssayProcessStatus:
        """Get status of output data."""
        return AssayProcessStatus(rt_adjusted=True, features_grouped=False)


class PeakFiller(AssayOperator):
    """Create peaks for features with missing values by integrating raw data."""

    def get_expected_status_in(self) -> AssayProcessStatus:
        """Get expected status of input data."""
        return AssayProcessStatus(features_grouped=True, peaks_filled=False)

    def get_expected_status_out(self) -> AssayProcessStatus:
        """Get status of output data."""
        return AssayProcessStatus(peaks_filled=True)


class Pipeline:
    """Compose multiple operators into a single processing unit."""

    def __init__(self, id: str) -> None:
        self.id = id
        self.operators: list[BaseOperator] = list()

    def __eq__(self, other) -> bool:
        equal_ids = self.id == other.id
        equal_operators = self.operators == other.operators
        return equal_ids and equal_operators

    def add_operator(self, operator: BaseOperator) -> None:
        """Add a new operator to the pipeline.

        :param operator: the operator to add
        :raises RepeatedIdError: if an operator with the same id already exists in the pipeline.

        """
        if any(x.id == operator.id for x in self.operators):
            msg = f"Pipeline {self.id} already contains an operator with id {operator.id}."
            raise RepeatedIdError(msg)
        self.operators.append(operator)

    def validate_dataflow(self) -> None:
        """Check that the processing status throughout the pipeline is valid.

        :raises PipelineConfigurationError: if operators are not sorted in a valid processing order.

        """
        status = AssayProcessStatus.unprocessed()
        try:
            for op in self.operators:
                op.check_status(status)
                op.update_status(status)
        except ValueError as e:
            msg = f"Invalid operator order in pipeline {self.id}: {e}"
            raise PipelineConfigurationError(msg) from e

    @classmethod
    def deserialize(cls, d: dict[str, Any]) -> Pipeline:
        """Deserialize a dictionary into a pipeline."""
        id_ = d.get("id")
        if not isinstance(id_, str):
            raise ConfigError("`id` is a mandatory field and must be a string.")

        operators = d.get("operators")
        if not isinstance(operators, list):
            raise ConfigError("`operators` is a mandatory field and must be a list of dictionaries.")

        pipe = Pipeline(id_)
        for op_dict in operators:
            if not isinstance(op_dict, dict):
                raise ConfigError("`operators` element is not a dictionary.")
            op_dict = op_dict.copy()
            op_type = op_dict.pop("class", None)
            if op_type is None:
                raise ConfigError("Operator dictionaries must define the operator `class`.")
            T = operator_registry.get(op_type)
            pipe.add_operator(T(**op_dict))
        return pipe

    def serialize(self) -> dict:
        """Serialize pipeline into a JSON serializable dictionary."""
        operators = list()
        for op in self.operators:
            d = op.model_dump(mode="json")
            d["class"] = op.__class__.__name__
            operators.append(d)
        return {"id": self.id, "operators": operators}

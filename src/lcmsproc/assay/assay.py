"""A manager class for processing multiple samples."""

from __future__ import annotations

import pathlib
from logging import getLogger
from typing import TYPE_CHECKING, Sequence

from ..core.enums import MultiPeakPolicy, ProcessingStage, StepStatus
from ..core.exceptions import ProcessStatusError, SampleProcessorError
from ..core.history import ProcessingHistory, ProcessingStep
from ..core.matrix import FeatureValueMatrix
from ..core.models import Feature, Peak, Sample
from ..core.operators import AssayOperator, PeakDetector, Pipeline
from ..io.access import MSDataAccess, SpectrumAccess
from ..storage.memory import OnMemoryAssayStorage
from .executors import SampleProcessor, SequentialSampleProcessor

if TYPE_CHECKING:
    from ..lcms.alignment import PeakGroups
    from ..lcms.correspondence import PeakDensity
    from ..lcms.gapfill import FillChromPeaks

logger = getLogger("assay")


class Assay:
    """The assay class.

    Runs processing stages over all samples in the assay and exposes the results.

    :param id: an identifier for the assay
    :param sample_processor: the executor used for per sample peak detection.
    :param access: the raw data source. If not provided, samples are read using the reader
        defined in each sample.

    """

    def __init__(
        self,
        id: str,
        sample_processor: SampleProcessor | None = None,
        access: SpectrumAccess | None = None,
    ):
        self.id = id
        self.pipe = Pipeline(f"{id}-pipeline")
        self._storage = OnMemoryAssayStorage(id)
        self._sample_processor = SequentialSampleProcessor() if sample_processor is None else sample_processor
        self._access = MSDataAccess() if access is None else access
        self._history = ProcessingHistory()

    @property
    def access(self) -> SpectrumAccess:
        """The raw data source."""
        return self._access

    def add_samples(self, *samples: Sample) -> None:
        """Add samples to the assay.

        :raises RepeatedIdError: if a sample with the same id already exists.
        :raises ProcessStatusError: if peak detection was already performed.

        """
        if self._storage.get_process_status().peaks_detected:
            raise ProcessStatusError("Samples cannot be added after peak detection.")
        self._storage.add_samples(*samples)
        if isinstance(self._access, MSDataAccess):
            self._access.add_samples(*samples)
        for sample in samples:
            logger.info(f"Added sample `{sample.id}` with path `{sample.path}` to {self.id}.")

    def fetch_samples(self) -> list[Sample]:
        """Retrieve the samples in the assay."""
        return self._storage.list_samples()

    def detect_peaks(self, op: PeakDetector) -> ProcessingStep:
        """Detect peaks in all samples.

        Samples that cannot be read are recorded as failed in the processing history and do not
        contribute peaks.

        :raises SampleProcessorError: if peak detection failed in all samples.

        """
        status = self._storage.get_process_status()
        op.check_status(status)
        samples = self._storage.list_samples()

        results = self._sample_processor.execute(op, self._access, samples)
        records = tuple(x.record for x in results)
        if samples and all(x.status is StepStatus.FAILED for x in records):
            raise SampleProcessorError(f"Peak detection failed for all samples in assay {self.id}.")

        for result in results:
            self._storage.peaks.add_peaks(result.peaks)

        n_peaks = sum(x.n_peaks for x in records)
        step = ProcessingStep(
            stage=ProcessingStage.PEAK_DETECTION,
            parameters=op.get_parameters(),
            samples=records,
            messages=(f"{n_peaks} peaks detected in {len(samples)} samples.",),
        )
        op.update_status(status)
        return self._record(step)

    def group_peaks(self, op: PeakDensity, sample_ids: Sequence[str] | None = None) -> ProcessingStep:
        """Group peaks across samples into features. Previous features are discarded.

        :param op: the correspondence operator
        :param sample_ids: if provided, only use peaks from these samples.

        """
        if sample_ids is None:
            return self._record(op.apply(self._storage, self._access))

        status = self._storage.get_process_status()
        op.check_status(status)
        samples = [self._storage.fetch_sample(x) for x in sample_ids]
        peaks = self._storage.peaks.list_peaks(sample_ids=sample_ids)
        features = op.group(peaks, samples)
        self._storage.set_features(features)
        op.update_status(status)
        step = ProcessingStep(
            stage=ProcessingStage.CORRESPONDENCE,
            parameters=op.get_parameters() | {"sample_ids": list(sample_ids)},
            messages=(f"{len(features)} features created from {len(peaks)} peaks.",),
        )
        return self._record(step)

    def adjust_rtime(self, op: PeakGroups, grouping: PeakDensity | None = None) -> ProcessingStep:
        """Correct retention time of peaks.

        :param op: the retention time correction operator
        :param grouping: if provided, overrides the correspondence operator used to find hook features.
        :raises ProcessStatusError: if retention times were already corrected.

        """
        if grouping is not None:
            op = op.model_copy(update={"grouping": grouping})
        return self._record(op.apply(self._storage, self._access))

    def drop_adjusted_rtime(self) -> ProcessingStep:
        """Restore raw retention time values. Features are discarded.

        :raises ProcessStatusError: if filled peaks exist or if retention times were not corrected.

        """
        status = self._storage.get_process_status()
        if not status.rt_adjusted:
            raise ProcessStatusError("Retention time correction was not applied.")
        if status.peaks_filled:
            raise ProcessStatusError("Filled peaks must be removed before restoring raw retention time.")

        self._storage.peaks.restore_raw_rt()
        self._storage.clear_rt_adjustments()
        self._storage.set_features(list())
        status.rt_adjusted = False
        status.features_grouped = False
        return self._record(ProcessingStep(stage=ProcessingStage.DROP_ALIGNMENT))

    def fill_peaks(self, op: FillChromPeaks) -> ProcessingStep:
        """Fill missing feature values by integrating raw data."""
        return self._record(op.apply(self._storage, self._access))

    def drop_filled_peaks(self) -> ProcessingStep:
        """Remove peaks created by gap filling. Can be called multiple times."""
        removed = set(self._storage.peaks.drop_filled())
        features = list()
        for ft in self._storage.list_features():
            peak_ids = [x for x in ft.peak_ids if x not in removed]
            features.append(ft.model_copy(update={"peak_ids": peak_ids}))
        self._storage.set_features(features)
        self._storage.get_process_status().peaks_filled = False
        step = ProcessingStep(stage=ProcessingStage.DROP_FILLED, messages=(f"{len(removed)} filled peaks removed.",))
        return self._record(step)

    def process(self) -> None:
        """Apply the assay pipeline.

        :raises PipelineConfigurationError: if the pipeline operators are not in a valid order.

        """
        self.pipe.validate_dataflow()
        for op in self.pipe.operators:
            if isinstance(op, PeakDetector):
                self.detect_peaks(op)
            else:
                assert isinstance(op, AssayOperator)
                self._record(op.apply(self._storage, self._access))

    def chrom_peaks(
        self,
        mz_range: tuple[float, float] | None = None,
        rt_range: tuple[float, float] | None = None,
        sample_ids: Sequence[str] | None = None,
        filled: bool = True,
    ) -> list[Peak]:
        """Retrieve peaks from the assay.

        :param mz_range: if provided, only peaks with m/z in this closed interval are retrieved.
        :param rt_range: if provided, only peaks with rt in this closed interval are retrieved.
        :param sample_ids: if provided, only peaks from these samples are retrieved.
        :param filled: if set to ``False``, peaks created by gap filling are excluded.

        """
        if sample_ids is None:
            sample_ids = [x.id for x in self._storage.list_samples()]
        peaks = self._storage.peaks
        return peaks.list_peaks(mz_range=mz_range, rt_range=rt_range, sample_ids=sample_ids, filled=filled)

    def feature_definitions(self) -> list[Feature]:
        """Retrieve the current features."""
        return self._storage.list_features()

    def feature_values(
        self,
        value: str = "into",
        policy: MultiPeakPolicy | str = MultiPeakPolicy.MAX_INTENSITY,
        filled: bool = True,
    ) -> FeatureValueMatrix:
        """Create a matrix of feature values.

        :param value: the peak column used as feature value.
        :param policy: how to select a value when a sample contributes multiple peaks to a feature.
        :param filled: if set to ``False``, values from filled peaks are not used.
        :return: a matrix with features as rows and samples as columns. Missing values are ``nan``.
        :raises ValueError: if `value` is not a valid peak column.

        """
        sample_ids = [x.id for x in self._storage.list_samples()]
        peaks = self._storage.peaks.list_peaks(sample_ids=sample_ids, filled=filled)
        features = self._storage.list_features()
        policy = MultiPeakPolicy(policy)
        return FeatureValueMatrix.from_features(features, peaks, sample_ids, value=value, policy=policy)

    def processing_history(self) -> ProcessingHistory:
        """Retrieve the log of processing stages applied to the assay."""
        return self._history

    def save(self, path: pathlib.Path) -> None:
        """Store peaks and features as JSON lines files in a directory."""
        self._storage.save(path)

    def _record(self, step: ProcessingStep) -> ProcessingStep:
        self._history = self._history.append(step)
        failed = step.list_failed()
        if failed:
            logger.warning(f"Stage {step.stage.value} failed for samples: {', '.join(failed)}.")
        return step

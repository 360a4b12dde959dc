"""Utilities to execute per sample peak detection."""

from __future__ import annotations

import concurrent.futures
from logging import getLogger
from typing import Protocol, Sequence

import pydantic

from ..core.models import Sample
from ..core.operators import PeakDetector, SampleDetection
from ..io.access import SpectrumAccess

logger = getLogger(__name__)


class SampleProcessor(Protocol):
    """Base sample executor class."""

    def execute(self, op: PeakDetector, access: SpectrumAccess, samples: Sequence[Sample]) -> list[SampleDetection]:
        """Detect peaks in multiple samples.

        :return: the detection results, in the same order as `samples`.

        """
        ...


class SequentialSampleProcessor:
    """Process samples one at a time."""

    def execute(self, op: PeakDetector, access: SpectrumAccess, samples: Sequence[Sample]) -> list[SampleDetection]:
        """Detect peaks in multiple samples."""
        results = list()
        n_samples = len(samples)
        for k, sample in enumerate(samples, start=1):
            logger.info(f"Processing `{sample.id}` ({k}/{n_samples}).")
            results.append(op.process_sample(access, sample))
        return results


class ParallelSampleProcessor(pydantic.BaseModel):
    """Process samples in parallel using multiple processes.

    The operator and the data access are sent to each worker. Results are returned in sample order,
    independently of the order in which workers finish.

    """

    max_workers: pydantic.PositiveInt = 2
    """The maximum number of process spawned simultaneously to process samples."""

    def execute(self, op: PeakDetector, access: SpectrumAccess, samples: Sequence[Sample]) -> list[SampleDetection]:
        """Detect peaks in multiple samples."""
        n_samples = len(samples)
        with concurrent.futures.ProcessPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(_sample_executor_worker, op, access, x): x.id for x in samples}
            results: dict[str, SampleDetection] = dict()
            for k, future in enumerate(concurrent.futures.as_completed(futures), start=1):
                sample_id = futures[future]
                results[sample_id] = future.result()
                logger.info(f"Processed `{sample_id}` ({k}/{n_samples}).")
        return [results[x.id] for x in samples]


def _sample_executor_worker(op: PeakDetector, access: SpectrumAccess, sample: Sample) -> SampleDetection:
    """Detect peaks in a sample."""
    return op.process_sample(access, sample)

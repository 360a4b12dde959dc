"""Utilities to create LC-MS assays."""

from ..assay import Assay
from ..assay.executors import ParallelSampleProcessor, SampleProcessor, SequentialSampleProcessor
from ..core.enums import MSInstrument, Polarity, SeparationMode
from .alignment import PeakGroups
from .correspondence import PeakDensity
from .detection import CentWave
from .gapfill import FillChromPeaks


def create_lcms_assay(
    id: str,
    *,
    instrument: MSInstrument,
    separation: SeparationMode,
    polarity: Polarity,
    max_workers: int = 1,
) -> Assay:
    """Create a new Assay instance for LC-MS data.

    The assay pipeline performs peak detection, retention time correction, correspondence and gap filling.

    :param id: the assay name
    :param instrument: the instrument used in the experimental measurements. Used to define operator defaults.
    :param separation: the separation mode used in the experimental measurements. Used to define operator defaults.
    :param polarity: the instrument polarity. Used to define operator defaults.
    :param max_workers: the number of processes used for peak detection.

    """
    executor: SampleProcessor
    if max_workers == 1:
        executor = SequentialSampleProcessor()
    else:
        executor = ParallelSampleProcessor(max_workers=max_workers)

    assay = Assay(id, executor)

    ops = [
        CentWave.from_defaults(instrument, separation, polarity),
        PeakGroups.from_defaults(instrument, separation, polarity),
        PeakDensity.from_defaults(instrument, separation, polarity),
        FillChromPeaks.from_defaults(instrument, separation, polarity),
    ]
    for op in ops:
        op.id = f"{assay.id}-{op.__class__.__name__}"
        assay.pipe.add_operator(op)

    return assay

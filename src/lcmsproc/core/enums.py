"""lcmsproc constants."""

import enum


class MSInstrument(str, enum.Enum):
    """Available MS instrument types."""

    QTOF = "qtof"
    ORBITRAP = "orbitrap"


class SeparationMode(str, enum.Enum):
    """Analytical method separation platform."""

    DART = "DART"
    HPLC = "HPLC"
    UPLC = "UPLC"


class Polarity(str, enum.Enum):
    """Scan polarity."""

    POSITIVE = "positive"
    NEGATIVE = "negative"


class AggregationMethod(str, enum.Enum):
    """Aggregate spectral intensity in a scan when building chromatograms."""

    SUM = "sum"
    """Sum intensities in the m/z window. Creates total ion or extracted ion chromatograms."""

    MAX = "max"
    """Use the maximum intensity in the m/z window. Creates base peak chromatograms."""


class MultiPeakPolicy(str, enum.Enum):
    """Select the peak used as the feature value when a sample contributes multiple peaks to a feature."""

    MAX_INTENSITY = "maxint"
    """Use the peak with the largest `maxo`."""

    MEDIAN_RT = "medret"
    """Use the peak with retention time closest to the feature retention time median."""

    SUM = "sum"
    """Sum the values of all peaks."""


class ProcessingStage(str, enum.Enum):
    """Processing stages recorded in the processing history."""

    PEAK_DETECTION = "peak_detection"
    CORRESPONDENCE = "correspondence"
    ALIGNMENT = "alignment"
    DROP_ALIGNMENT = "drop_alignment"
    GAP_FILLING = "gap_filling"
    DROP_FILLED = "drop_filled"


class StepStatus(str, enum.Enum):
    """Outcome of a processing stage for an individual sample."""

    OK = "ok"
    """The stage completed normally."""

    NO_SIGNAL = "no_signal"
    """The stage completed but did not find any signal. Not an error."""

    FAILED = "failed"
    """The sample could not be processed, e.g. due to a read failure. Its contribution is absent."""

    INSUFFICIENT_ANCHORS = "insufficient_anchors"
    """Retention time correction was skipped due to the lack of hook peaks."""

"""Utilities to process LC-MS datasets."""

from .alignment import AlignmentParams, PeakGroups
from .assay import create_lcms_assay
from .correspondence import CorrespondenceParams, PeakDensity
from .detection import CentWave, MatchedFilter, PeakDetectionParams, parse_peak_detection_params
from .gapfill import FillChromPeaks, GapFillParams

__all__ = [
    "AlignmentParams",
    "CentWave",
    "CorrespondenceParams",
    "create_lcms_assay",
    "FillChromPeaks",
    "GapFillParams",
    "MatchedFilter",
    "parse_peak_detection_params",
    "PeakDensity",
    "PeakDetectionParams",
    "PeakGroups",
]

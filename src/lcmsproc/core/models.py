"""lcmsproc core data models."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import numpy
import pydantic
from pydantic.functional_validators import BeforeValidator
from scipy.interpolate import interp1d
from typing_extensions import Self

from ..utils.numpy import FloatArray, FloatArray1D, IntArray1D
from .enums import AggregationMethod, Polarity


class LCMSBaseModel(pydantic.BaseModel):
    """Base model that all other library models inherit from."""

    model_config = pydantic.ConfigDict(
        validate_assignment=True, arbitrary_types_allowed=True, ser_json_inf_nan="constants"
    )


class Sample(LCMSBaseModel):
    """Store metadata from an individual measurement."""

    id: str
    """A unique sample identifier"""

    path: Annotated[Path, BeforeValidator(lambda x: Path(x))] = Path(".")
    """Path to a raw data file"""

    ms_level: pydantic.PositiveInt = pydantic.Field(default=1, repr=False)
    """the sample MS level"""

    start_time: pydantic.NonNegativeFloat = pydantic.Field(default=0.0, repr=False)
    """Minimum acquisition time of MS scans to include."""

    end_time: pydantic.NonNegativeFloat | None = pydantic.Field(default=None, repr=False)
    """Maximum acquisition time of MS scans to include. If ``None``, end at the last scan"""

    group: str = ""
    """the sample group. Treated as an opaque label to compute feature detection rates."""

    order: pydantic.NonNegativeInt = 0
    """the sample measurement order in an assay"""

    batch: pydantic.NonNegativeInt = pydantic.Field(default=0, repr=False)
    """the sample analytical batch number in an assay."""

    extra: dict[str, Any] | None = pydantic.Field(default=None, repr=False)
    """extra sample information, e.g. phenotype fields."""

    reader: str | None = None
    """The name of a registered data reader to read sample data. If ``None``, the
    reader is inferred from the file extension.
    """

    @pydantic.field_serializer("path")
    def serialize_path(self, path: Path, _info) -> str:
        """Serialize path into a string."""
        return str(path)


class Scan(LCMSBaseModel):
    """A mass spectrum measured at a given retention time."""

    sample_id: str = ""
    """The sample where the scan was measured"""

    index: int = -1
    """The scan position in the sample raw data"""

    mz: FloatArray1D
    """Sorted m/z data"""

    int: FloatArray1D
    """Spectral intensity"""

    time: pydantic.NonNegativeFloat = 0.0
    """Acquisition time of the scan, in seconds."""

    ms_level: pydantic.PositiveInt = 1
    """MS level of the current scan"""

    polarity: Polarity = Polarity.POSITIVE
    """The scan polarity"""

    @pydantic.model_validator(mode="after")
    def check_arrays(self) -> Self:
        """Check that m/z and intensity arrays are consistent."""
        assert self.mz.shape == self.int.shape, "m/z and intensity arrays must have the same shape."
        return self

    def get_nbytes(self) -> int:
        """Get the number of bytes stored in m/z and intensity arrays."""
        return self.int.nbytes + self.mz.nbytes


class Chromatogram(LCMSBaseModel):
    """Chromatogram representation."""

    sample_id: str = ""
    """The sample where the chromatogram was extracted from"""

    time: FloatArray1D
    """The time data"""

    int: FloatArray1D
    """The intensity data"""

    mz_range: tuple[float, float] | None = None
    """The m/z window used to build the chromatogram. ``None`` for total ion chromatograms."""

    aggregation: AggregationMethod = AggregationMethod.SUM
    """The method used to aggregate intensities in each scan."""


class Roi(LCMSBaseModel):
    """A region of interest, i.e. an m/z trace across consecutive scans.

    The ROI spans a contiguous range of scans. Scans where the trace was
    not observed (gaps tolerated during extraction) have ``nan`` m/z and
    intensity values until :py:meth:`fill_nan` is called, which only
    fills intensity values.

    """

    sample_id: str
    """The sample where the ROI was extracted from."""

    mz: FloatArray1D
    """m/z in each scan. ``nan`` in scans where the trace was not observed."""

    spint: FloatArray1D
    """intensity in each scan."""

    time: FloatArray1D
    """time in each scan."""

    scan: IntArray1D
    """scan indices where the ROI is defined."""

    @pydantic.model_validator(mode="after")
    def check_sizes(self) -> Self:
        """Check that all arrays have the same size."""
        size = self.scan.size
        msg = "ROI arrays must have the same size."
        assert self.mz.size == size and self.spint.size == size and self.time.size == size, msg
        return self

    @property
    def mz_min(self) -> float:
        """The minimum m/z observed in the trace."""
        return float(numpy.nanmin(self.mz))

    @property
    def mz_max(self) -> float:
        """The maximum m/z observed in the trace."""
        return float(numpy.nanmax(self.mz))

    def get_observed_mask(self) -> numpy.ndarray:
        """Get a boolean mask of scans where the trace was observed."""
        return ~numpy.isnan(self.mz)

    def get_n_points(self) -> int:
        """Get the number of scans where the trace was observed."""
        return int(self.get_observed_mask().sum())

    def fill_nan(self) -> None:
        """Fill missing intensity values in the trace.

        Missing intensity values are filled using linear interpolation. m/z values of missing
        points are left as ``nan``.

        """
        missing = numpy.isnan(self.spint)
        if missing.any() and (~missing).sum() > 1:
            interpolator = interp1d(self.time[~missing], self.spint[~missing], assume_sorted=True)
            spint = self.spint.copy()
            spint[missing] = interpolator(self.time[missing])
            self.spint = spint
        elif missing.any():
            self.spint = numpy.where(missing, numpy.nanmax(self.spint), self.spint)

    def equals(self, other: Self) -> bool:
        """Check if two ROIs are equal."""
        return (
            numpy.array_equal(self.mz, other.mz, equal_nan=True)
            and numpy.array_equal(self.time, other.time)
            and numpy.array_equal(self.spint, other.spint, equal_nan=True)
            and numpy.array_equal(self.scan, other.scan)
        )


class Peak(LCMSBaseModel):
    """Representation of a chromatographic peak."""

    id: int = -1
    """The peak index in a peak table. Managed by the peak table, MUST not be set by the user."""

    sample_id: str
    """The sample where the peak was detected"""

    mz: float
    """The peak m/z, the intensity weighted mean of the trace m/z in the peak region"""

    mz_min: float
    """The minimum m/z in the peak region"""

    mz_max: float
    """The maximum m/z in the peak region"""

    rt: float
    """The apex retention time"""

    rt_min: float
    """The peak start time"""

    rt_max: float
    """The peak end time"""

    into: pydantic.NonNegativeFloat
    """The integrated peak area"""

    maxo: pydantic.NonNegativeFloat
    """The maximum peak intensity"""

    sn: float = float("nan")
    """The peak signal-to-noise ratio. ``nan`` for filled peaks."""

    filled: bool = False
    """``True`` if the peak was created by integrating raw data during gap filling."""

    @pydantic.model_validator(mode="after")
    def check_peak_definition(self) -> Self:
        """Check that apex values are contained in the peak boundaries."""
        assert self.rt_min <= self.rt <= self.rt_max, "Peak rt must be in the interval [rt_min, rt_max]."
        assert self.mz_min <= self.mz <= self.mz_max, "Peak m/z must be in the interval [mz_min, mz_max]."
        return self

    @property
    def width(self) -> float:
        """The peak extension in the time domain."""
        return self.rt_max - self.rt_min

    def get(self, column: str) -> float:
        """Retrieve a numeric column value.

        :raises ValueError: if an invalid column name is passed.

        """
        if column not in PEAK_COLUMNS:
            raise ValueError(f"{column} is not a valid peak column. Valid columns are {PEAK_COLUMNS}.")
        return float(getattr(self, column))

    def to_str(self) -> str:
        """Serialize the peak into a JSON string."""
        return self.model_dump_json()

    @classmethod
    def from_str(cls, s: str) -> Self:
        """Create a peak from a string generated with `to_str`."""
        return cls(**json.loads(s))


PEAK_COLUMNS = ("mz", "mz_min", "mz_max", "rt", "rt_min", "rt_max", "into", "maxo", "sn")


class Feature(LCMSBaseModel):
    """A group of peaks from different samples that are assumed to be generated by the same ion."""

    id: int = -1
    """The feature id. Assigned by sorting features by m/z and retention time."""

    mz_med: float
    """The median m/z of peaks in the feature"""

    mz_min: float
    """The minimum m/z of peaks in the feature"""

    mz_max: float
    """The maximum m/z of peaks in the feature"""

    rt_med: float
    """The median retention time of peaks in the feature"""

    rt_min: float
    """The minimum retention time of peaks in the feature"""

    rt_max: float
    """The maximum retention time of peaks in the feature"""

    peak_rt_min: float
    """The median start time of peaks in the feature"""

    peak_rt_max: float
    """The median end time of peaks in the feature"""

    peak_mz_min: float
    """The median minimum m/z of peaks in the feature"""

    peak_mz_max: float
    """The median maximum m/z of peaks in the feature"""

    peak_ids: list[int]
    """The ids of the peaks in the feature"""

    n_samples: pydantic.NonNegativeInt = 0
    """The number of distinct samples with peaks in the feature"""

    @pydantic.computed_field
    @property
    def n_peaks(self) -> int:
        """The number of peaks in the feature."""
        return len(self.peak_ids)

    @classmethod
    def from_peaks(cls, peaks: list[Peak], id: int = -1) -> Self:
        """Create a new feature using aggregated peak values.

        :param peaks: the peaks in the feature. Must not be empty.
        :param id: the feature id

        """
        if not peaks:
            raise ValueError("At least one peak is required to create a feature.")
        mz = numpy.array([x.mz for x in peaks])
        rt = numpy.array([x.rt for x in peaks])
        return cls(
            id=id,
            mz_med=float(numpy.median(mz)),
            mz_min=float(mz.min()),
            mz_max=float(mz.max()),
            rt_med=float(numpy.median(rt)),
            rt_min=float(rt.min()),
            rt_max=float(rt.max()),
            peak_rt_min=float(numpy.median([x.rt_min for x in peaks])),
            peak_rt_max=float(numpy.median([x.rt_max for x in peaks])),
            peak_mz_min=float(numpy.median([x.mz_min for x in peaks])),
            peak_mz_max=float(numpy.median([x.mz_max for x in peaks])),
            peak_ids=sorted(x.id for x in peaks),
            n_samples=len({x.sample_id for x in peaks}),
        )

    def contains(self, peak: Peak) -> bool:
        """Check if a peak apex is inside the feature m/z and retention time range."""
        in_mz = self.mz_min <= peak.mz <= self.mz_max
        in_rt = self.rt_min <= peak.rt <= self.rt_max
        return in_mz and in_rt


class RtAdjustment(LCMSBaseModel):
    """A piecewise linear retention time correction for a sample.

    The correction is defined by knots that map raw retention time values to adjusted values. Outside
    the knot range the deviation from the raw value is held constant. Adjusted knot values must be
    strictly increasing, which makes the correction invertible.

    """

    sample_id: str
    """The corrected sample."""

    raw: FloatArray1D
    """Raw retention time knots, sorted."""

    adjusted: FloatArray1D
    """Adjusted retention time values at each knot."""

    @pydantic.model_validator(mode="after")
    def check_knots(self) -> Self:
        """Check that knots define an invertible function."""
        assert self.raw.size == self.adjusted.size and self.raw.size > 0, "knot arrays must have the same size."
        assert (numpy.diff(self.raw) > 0.0).all(), "raw knots must be strictly increasing."
        assert (numpy.diff(self.adjusted) > 0.0).all(), "adjusted knots must be strictly increasing."
        return self

    def adjust(self, rt: FloatArray | float) -> FloatArray:
        """Map raw retention time values into adjusted values."""
        return _interp_constant_deviation(numpy.asarray(rt, dtype=float), self.raw, self.adjusted)

    def revert(self, rt: FloatArray | float) -> FloatArray:
        """Map adjusted retention time values into raw values."""
        return _interp_constant_deviation(numpy.asarray(rt, dtype=float), self.adjusted, self.raw)


def _interp_constant_deviation(x: FloatArray, xp: FloatArray, fp: FloatArray) -> FloatArray:
    y = numpy.interp(x, xp, fp)
    y = numpy.where(x < xp[0], x + (fp[0] - xp[0]), y)
    return numpy.where(x > xp[-1], x + (fp[-1] - xp[-1]), y)

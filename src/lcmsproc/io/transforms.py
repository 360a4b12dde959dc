"""Stateless scan transforms applied when raw data is read."""

from __future__ import annotations

import pydantic
from typing_extensions import Self

from ..core.models import Scan
from .access import crop_scan


class IntensityThreshold(pydantic.BaseModel):
    """Remove spectral elements with intensity lower than a threshold."""

    model_config = pydantic.ConfigDict(frozen=True)

    min_intensity: pydantic.NonNegativeFloat = 0.0
    """The minimum intensity kept in a scan."""

    def __call__(self, scan: Scan) -> Scan:
        mask = scan.int >= self.min_intensity
        return scan.model_copy(update={"mz": scan.mz[mask], "int": scan.int[mask]})


class MZCrop(pydantic.BaseModel):
    """Keep spectral elements inside an m/z window."""

    model_config = pydantic.ConfigDict(frozen=True)

    mz_min: pydantic.NonNegativeFloat = 0.0
    """The window lower bound"""

    mz_max: pydantic.PositiveFloat = 2000.0
    """The window upper bound"""

    @pydantic.model_validator(mode="after")
    def check_window(self) -> Self:
        """Check that the window bounds are sorted."""
        if self.mz_min >= self.mz_max:
            raise ValueError("`mz_min` must be lower than `mz_max`.")
        return self

    def __call__(self, scan: Scan) -> Scan:
        return crop_scan(scan, self.mz_min, self.mz_max)

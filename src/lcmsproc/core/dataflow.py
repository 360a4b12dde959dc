"""Processing status of assay data.

Each operator declares the status that the data must have before it is applied and the
status after it is applied. Checking the status enforces a valid processing order, e.g.
gap filling requires features to be defined.

"""

from __future__ import annotations

import pydantic

from .exceptions import ProcessStatusError


class AssayProcessStatus(pydantic.BaseModel):
    """Store the processing status of an assay.

    A ``None`` value in an expected status means that the field is not checked.

    """

    peaks_detected: bool | None = None
    """Chromatographic peaks were detected in all samples."""

    features_grouped: bool | None = None
    """Peaks were grouped into features."""

    rt_adjusted: bool | None = None
    """Retention time correction was applied to peaks."""

    peaks_filled: bool | None = None
    """Missing feature values were filled."""

    @classmethod
    def unprocessed(cls) -> AssayProcessStatus:
        """Create the status of an assay where no processing stage was applied."""
        return cls(peaks_detected=False, features_grouped=False, rt_adjusted=False, peaks_filled=False)


def check_process_status(status: AssayProcessStatus, expected: AssayProcessStatus) -> None:
    """Raise an exception if the status is not compatible with the expected status.

    :param status: the current data status.
    :param expected: the status required by an operator. Fields set to ``None`` are ignored.
    :raises ProcessStatusError: if a field in the current status differs from the expected value.

    """
    for field, value in expected.model_dump().items():
        if value is None:
            continue
        current = getattr(status, field)
        if current != value:
            msg = f"Expected `{field}` status to be {value}. Got {current}."
            raise ProcessStatusError(msg)


def update_process_status(status: AssayProcessStatus, update: AssayProcessStatus) -> None:
    """Update the fields of a status, in place, using values that are not ``None``."""
    for field, value in update.model_dump().items():
        if value is not None:
            setattr(status, field, value)

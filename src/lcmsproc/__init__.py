"""Peak detection, correspondence, retention time correction and gap filling for LC-MS data."""

# register built-in readers
from .simulation import lcms as _simulation_lcms  # noqa: F401

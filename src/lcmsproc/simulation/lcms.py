"""Utilities to simulate LC-MS data.

Provides:

SimulatedLCMSDataReader
    A Reader that can be plugged into MSData to generate simulated LC-MS data.
SimulatedLCMSSampleFactory
    A pydantic model that creates simulated sample data configuration.

"""

from __future__ import annotations

import pathlib

import numpy as np
import pydantic
from typing_extensions import Self

from ..core.models import Sample, Scan
from ..io.access import reader_registry
from ..utils.numpy import FloatArray1D

SIMULATION_KEY = "simulation"
"""The key in the sample `extra` field where the simulation configuration is stored."""


@reader_registry.register
class SimulatedLCMSDataReader:
    """Read simulated LC-MS data."""

    def __init__(self, src: pathlib.Path | Sample) -> None:
        if isinstance(src, pathlib.Path) or src.extra is None or SIMULATION_KEY not in src.extra:
            msg = "Simulated LC-MS sample only work with sample models created with the simulated sample factory."
            raise ValueError(msg)
        self._sample = SimulatedLCMSSample.model_validate(src.extra[SIMULATION_KEY])
        self.spectrum_factory = MSSpectrumFactory(self._sample)

    def get_spectrum(self, index: int) -> Scan:
        """Retrieve a spectrum."""
        return self.spectrum_factory.create(index)

    def get_n_spectra(self) -> int:
        """Retrieve the total number of spectra."""
        return self._sample.config.n_scans


class SimulatedLCMSDataConfiguration(pydantic.BaseModel):
    """Store configuration of a simulated LC-MS sample."""

    mz_noise: pydantic.NonNegativeFloat = 0.0005
    """Additive noise added to m/z in each scan"""

    amp_noise: pydantic.NonNegativeFloat = 10.0
    """additive noise added to spectral intensity on each scan"""

    mz_width: pydantic.PositiveFloat = 0.005
    """The peak width in the m/z domain"""

    n_scans: pydantic.PositiveInt = 300
    """The number of scans in the sample"""

    time_resolution: pydantic.PositiveFloat = 1.0
    """The time spacing between scans"""

    min_signal_intensity: pydantic.PositiveFloat | None = None
    """If specified, elements in a spectrum with values lower than this parameter are removed"""

    rt_shift: float = 0.0
    """A constant shift added to the retention time of all features in the sample."""

    ms_level: pydantic.PositiveInt = 1
    """The spectra MS level"""

    seed: pydantic.NonNegativeInt = 0
    """Random seed used to generate noise. Each scan is generated from the seed and the scan index."""


class SimulatedLCMSSampleFactory(pydantic.BaseModel):
    """Utility that creates simulated data samples."""

    config: SimulatedLCMSDataConfiguration = SimulatedLCMSDataConfiguration()
    """The sample configuration used to simulate data."""

    adducts: list[SimulatedLCMSAdductSpec] = list()
    """the list of adducts to include in the simulated sample."""

    def __call__(self, id: str, **kwargs) -> Sample:
        """Create a new simulated sample model.

        :param id: the id for the sample
        :param kwargs: extra sample information passed to the :py:class:`lcmsproc.Sample` constructor.

        """
        if "path" not in kwargs:
            kwargs["path"] = pathlib.Path(".")

        reader = SimulatedLCMSDataReader.__name__
        features: list[SimulatedLCMSFeature] = list()
        for adduct in self.adducts:
            features.extend(adduct.create_features())
        features = sorted(features, key=lambda x: x.mz)
        simulation = SimulatedLCMSSample(config=self.config, features=features).model_dump(mode="json")
        extra = dict(kwargs.pop("extra", None) or dict())
        extra[SIMULATION_KEY] = simulation
        return Sample(id=id, reader=reader, extra=extra, **kwargs)


class SimulatedLCMSSample(pydantic.BaseModel):
    """Create simulated LC-MS data."""

    config: SimulatedLCMSDataConfiguration
    """The sample configuration used to simulate data."""

    features: list[SimulatedLCMSFeature] = list()
    """the list of features in the sample."""

    def make_grid(self) -> FloatArray1D:
        """Create a grid from features m/z values."""
        return np.array(sorted([x.mz for x in self.features]), dtype=float)

    @classmethod
    def from_json(cls, path: pathlib.Path) -> Self:
        """Create a new instance from a JSON file."""
        with path.open("rt") as f:
            model_json = f.read()
        return cls.model_validate_json(model_json)

    def to_json(self, path: pathlib.Path):
        """Store the model as a JSON file."""
        with path.open("wt") as f:
            f.write(self.model_dump_json())


class SimulatedLCMSAdductSpec(pydantic.BaseModel):
    """Define an ion observed as a chromatographic peak."""

    mz: pydantic.PositiveFloat
    """The ion m/z"""

    rt_mean: pydantic.PositiveFloat
    """The adduct retention time"""

    rt_noise: pydantic.PositiveFloat | None = None
    """Additive noise for the features retention time."""

    rt_width: pydantic.PositiveFloat = 3.0
    """The peak width, as the standard deviation of a Gaussian peak."""

    base_intensity: pydantic.PositiveFloat = 1000.0
    """The peak height."""

    def create_features(self) -> list[SimulatedLCMSFeature]:
        """Create a list of simulated features to simulate a sample."""
        if self.rt_noise is None:
            rt_noise = 0.0
        else:
            rt_noise = np.random.normal(scale=self.rt_noise)

        rt = self.rt_mean + rt_noise
        return [SimulatedLCMSFeature(mz=self.mz, rt=rt, int=self.base_intensity, width=self.rt_width)]


class SimulatedLCMSFeature(pydantic.BaseModel):
    """Store a simulated LC-MS peak information."""

    mz: pydantic.PositiveFloat
    """The feature m/z."""

    rt: pydantic.PositiveFloat
    """The feature retention time."""

    int: pydantic.PositiveFloat
    """the feature intensity."""

    width: pydantic.PositiveFloat
    """The peak width in the time domain"""


class MSSpectrumFactory:
    """Create scans from a simulated sample."""

    def __init__(self, sample: SimulatedLCMSSample) -> None:
        self.sample = sample
        self.grid = sample.make_grid()

    def create(self, scan: int) -> Scan:
        """Create a scan."""
        assert scan < self.sample.config.n_scans, "`scan` must be lower than the sample `n_scans` parameter."

        # use the same random state for a given scan for reproducibility
        rng = np.random.default_rng([self.sample.config.seed, scan])
        mz = self._compute_mz(rng)
        sp = self._compute_intensity(mz, scan, rng)

        sort_index = np.argsort(mz)
        mz = mz[sort_index]
        sp = sp[sort_index]

        if self.sample.config.min_signal_intensity is not None:
            mask = sp >= self.sample.config.min_signal_intensity
            mz = mz[mask]
            sp = sp[mask]

        time = self.sample.config.time_resolution * scan
        return Scan(index=scan, mz=mz, int=sp, ms_level=self.sample.config.ms_level, time=time)

    def _compute_mz(self, rng: np.random.Generator) -> FloatArray1D:
        noise_level = self.sample.config.mz_noise
        if noise_level > 0.0:
            noise = rng.normal(size=self.grid.size, scale=noise_level)
            mz = self.grid + noise
        else:
            mz = self.grid.copy()
        return mz

    def _compute_intensity(self, mz: FloatArray1D, scan: int, rng: np.random.Generator) -> FloatArray1D:
        config = self.sample.config
        time = config.time_resolution * scan
        intensity = np.zeros_like(mz)
        for ft in self.sample.features:
            amp = ft.int * np.exp(-0.5 * ((time - ft.rt - config.rt_shift) / ft.width) ** 2)
            intensity += amp * np.exp(-0.5 * ((mz - ft.mz) / config.mz_width) ** 2)

        if config.amp_noise > 0.0:
            intensity += rng.normal(size=intensity.size, scale=config.amp_noise)
            intensity[intensity < 0] = 0.0

        return intensity

import pytest
from numpy.random import seed

from lcmsproc.lcms.detection import CentWave
from lcmsproc.simulation import lcms


@pytest.fixture(scope="session", autouse=True)
def random_seed():
    seed(1234)
    return


@pytest.fixture(scope="module")
def lcms_adducts() -> list[lcms.SimulatedLCMSAdductSpec]:
    mz_list = [150.0, 250.0, 400.0]
    rt_list = [50.0, 100.0, 150.0]
    intensities = [5000.0, 8000.0, 3000.0]
    adduct_list = list()
    for mz, rt, intensity in zip(mz_list, rt_list, intensities):
        adduct = lcms.SimulatedLCMSAdductSpec(mz=mz, rt_mean=rt, base_intensity=intensity, rt_width=3.0)
        adduct_list.append(adduct)
    return adduct_list


@pytest.fixture(scope="module")
def lcms_config() -> lcms.SimulatedLCMSDataConfiguration:
    return lcms.SimulatedLCMSDataConfiguration(n_scans=200, amp_noise=5.0, mz_noise=0.0005)


@pytest.fixture(scope="module")
def lcms_sample_factory(lcms_adducts, lcms_config) -> lcms.SimulatedLCMSSampleFactory:
    return lcms.SimulatedLCMSSampleFactory(config=lcms_config, adducts=lcms_adducts)


@pytest.fixture
def centwave() -> CentWave:
    return CentWave(id="centwave", ppm=25.0, peakwidth=(4.0, 40.0), snr_threshold=10.0, prefilter=(3, 100.0))

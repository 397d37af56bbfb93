"""Shared test fixtures for pomp."""

import numpy as np
import pytest

from pomp import models
from pomp import parameters as prm
from pomp import sde as sdes
from pomp import simulate


@pytest.fixture
def rng():
    """Fixed random generator for reproducibility."""
    return np.random.default_rng(42)


@pytest.fixture
def ou_param():
    """OU parameters: theta=0, alpha=0.1, sigma=0.1, started near 1."""
    return prm.OuParameter(m0=1., c0=np.log(0.01), alpha=np.log(0.1),
                           sigma=np.log(0.1), theta=0.)


@pytest.fixture
def bm_param():
    return prm.BrownianParameter(m0=0., c0=np.log(1.), sigma=np.log(0.5))


@pytest.fixture
def poisson_model():
    return models.Poisson(sde=sdes.ornstein_uhlenbeck)


@pytest.fixture
def poisson_params(ou_param):
    return prm.leaf_parameter(scale=None, sde=ou_param)


@pytest.fixture
def poisson_data(poisson_model, poisson_params):
    """100 Poisson observations, at times 0, 1, ..., 99."""
    return simulate.simulate_times(poisson_model, poisson_params,
                                   np.arange(100.), rng=1)


@pytest.fixture
def seasonal_model():
    return models.Seasonal(sde=sdes.ornstein_uhlenbeck, period=24,
                           harmonics=1)


@pytest.fixture
def seasonal_params():
    return prm.leaf_parameter(
        scale=np.log(0.5),
        sde=prm.OuParameter(m0=[0., 0.], c0=[0., 0.], alpha=[-1., -1.],
                            sigma=[np.log(0.3), np.log(0.3)],
                            theta=[1., 1.]))

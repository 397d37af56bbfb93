"""Tests for pomp.parameters."""

import numpy as np
import pytest

from pomp import models
from pomp import parameters as prm
from pomp import sde as sdes
from pomp import tree as tr
from pomp.errors import MissingParameter, ShapeMismatch


@pytest.fixture
def composed_params(ou_param, bm_param):
    return tr.branch(prm.leaf_parameter(scale=0.5, sde=ou_param),
                     prm.leaf_parameter(scale=None, sde=bm_param))


class TestSdeParameter:

    def test_scalars_become_vectors(self, ou_param):
        assert ou_param.dim == 1
        assert len(ou_param) == 5
        assert ou_param.theta.shape == (1,)

    def test_missing_field(self):
        with pytest.raises(MissingParameter):
            prm.BrownianParameter(m0=0., c0=0.)

    def test_unknown_field(self):
        with pytest.raises(TypeError):
            prm.BrownianParameter(m0=0., c0=0., sigma=0., alpha=1.)

    def test_fields_of_different_sizes(self):
        with pytest.raises(ShapeMismatch):
            prm.BrownianParameter(m0=[0., 0.], c0=0., sigma=0.)

    def test_from_flat(self, ou_param):
        p = ou_param.from_flat(np.arange(5.))
        assert isinstance(p, prm.OuParameter)
        np.testing.assert_array_equal(p.flatten(), np.arange(5.))
        with pytest.raises(ShapeMismatch):
            ou_param.from_flat(np.arange(4.))

    def test_map(self, ou_param):
        p = ou_param.map(np.exp)
        assert isinstance(p, prm.OuParameter)
        np.testing.assert_allclose(p.alpha, [0.1])
        np.testing.assert_allclose(p.theta, [1.])
        np.testing.assert_allclose(p.flatten(), np.exp(ou_param.flatten()))

    def test_leaf_parameter_requires_sde(self):
        with pytest.raises(MissingParameter):
            prm.LeafParameter(scale=1.)


class TestParameterTrees:

    def test_flatten_and_names(self, composed_params):
        v = prm.flatten(composed_params)
        assert v.shape == (prm.length(composed_params),) == (9,)
        names = prm.names(composed_params)
        assert names[0] == 'p0.scale'
        assert names[-1] == 'p1.sigma_0'
        assert v[0] == 0.5

    def test_unflatten_round_trip(self, composed_params):
        v = prm.flatten(composed_params)
        assert prm.unflatten(composed_params, v) == composed_params
        with pytest.raises(ShapeMismatch):
            prm.unflatten(composed_params, v[:-1])

    def test_perturb_moves_every_component(self, composed_params, rng):
        new = prm.perturb(composed_params, 0.1, rng=rng)
        diff = prm.flatten(new) - prm.flatten(composed_params)
        assert np.all(diff != 0.)
        assert tr.same_shape(new, composed_params)
        assert isinstance(tr.get_node(new, 1).sde, prm.BrownianParameter)

    def test_perturb_mvn_identity_chol(self, composed_params, rng):
        d = prm.length(composed_params)
        new = prm.perturb_mvn(composed_params, np.zeros((d, d)), rng=rng)
        assert new == composed_params

    def test_mean_and_covariance(self, composed_params, rng):
        samples = [prm.perturb(composed_params, 0.2, rng=rng)
                   for _ in range(2000)]
        m = prm.mean(samples)
        np.testing.assert_allclose(prm.flatten(m),
                                   prm.flatten(composed_params), atol=0.03)
        cov = prm.covariance(samples)
        np.testing.assert_allclose(np.diag(cov), 0.04, rtol=0.15)

    def test_check_shape(self, composed_params):
        mod = models.compose(models.Linear(sdes.ornstein_uhlenbeck),
                             models.Poisson(sdes.brownian_motion))
        prm.check_shape(mod, composed_params)
        with pytest.raises(ShapeMismatch):
            prm.check_shape(mod, composed_params.left)

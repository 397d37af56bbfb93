"""Tests for pomp.models."""

import numpy as np
import pytest

from pomp import models
from pomp import parameters as prm
from pomp import sde as sdes
from pomp import tree as tr
from pomp.errors import MissingParameter, ShapeMismatch, UnimplementedObservation


def leaf_params(scale, sde_param):
    return prm.leaf_parameter(scale=scale, sde=sde_param)


class TestComposition:

    def test_nesting_does_not_change_structure(self, ou_param, bm_param, rng):
        a = models.Poisson(sdes.ornstein_uhlenbeck)
        b = models.Linear(sdes.brownian_motion)
        c = models.Bernoulli(sdes.ornstein_uhlenbeck)
        pa = leaf_params(None, ou_param)
        pb = leaf_params(0., bm_param)
        pc = leaf_params(None, ou_param)
        left = models.Composed(models.Composed(a, b), c)
        right = models.Composed(a, models.Composed(b, c))
        p_left = tr.branch(tr.branch(pa, pb), pc)
        p_right = tr.branch(pa, tr.branch(pb, pc))
        assert tr.size(left.shape()) == tr.size(right.shape()) == 3
        assert prm.length(p_left) == prm.length(p_right)
        x_left = left.initial_state(p_left).rvs(rng=rng)
        x_right = right.initial_state(p_right).rvs(rng=rng)
        assert tr.size(x_left) == tr.size(x_right) == 3
        assert tr.flatten(x_left).shape == tr.flatten(x_right).shape
        assert left.dim(p_left) == right.dim(p_right) == 3

    def test_compose_folds_from_the_left(self):
        a, b, c = (models.Poisson(), models.Linear(), models.Bernoulli())
        mod = models.compose(a, b, c)
        assert tr.shape_str(mod.shape()) == 'B(B(L, L), L)'
        with pytest.raises(ValueError):
            models.compose()

    def test_f_is_the_sum_of_components(self, ou_param, bm_param):
        mod = models.compose(models.Poisson(sdes.ornstein_uhlenbeck),
                             models.Linear(sdes.brownian_motion))
        x = tr.branch(tr.leaf(np.array([[0.5], [1.]])),
                      tr.leaf(np.array([[1.], [2.]])))
        np.testing.assert_allclose(mod.f(x, 0.), [1.5, 3.])
        np.testing.assert_allclose(mod.eta(x, 0.), np.exp([1.5, 3.]))

    def test_likelihood_of_the_left_model(self, ou_param, bm_param):
        pois = models.Poisson(sdes.ornstein_uhlenbeck)
        lin = models.Linear(sdes.brownian_motion)
        params = tr.branch(leaf_params(None, ou_param),
                           leaf_params(0., bm_param))
        eta = np.array([1., 2.])
        ll = models.compose(pois, lin).log_likelihood(params, eta, 1)
        np.testing.assert_allclose(
            ll, pois.log_likelihood(params.left, eta, 1))
        # the reverse composition uses the Gaussian likelihood, whose scale
        # is taken from the left parameters
        rev = models.compose(lin, pois)
        rev_params = tr.branch(params.right, params.left)
        np.testing.assert_allclose(
            rev.log_likelihood(rev_params, eta, 1),
            lin.log_likelihood(params.right, eta, 1))

    def test_parameters_of_the_wrong_shape(self, ou_param):
        mod = models.compose(models.Poisson(), models.Poisson())
        with pytest.raises(ShapeMismatch):
            mod.sde(leaf_params(None, ou_param))
        with pytest.raises(ShapeMismatch):
            models.Poisson().sde(tr.branch(leaf_params(None, ou_param),
                                           leaf_params(None, ou_param)))


class TestLeafModels:

    def test_unknown_option(self):
        with pytest.raises(TypeError):
            models.Poisson(period=3)

    def test_missing_scale(self, ou_param):
        mod = models.Linear()
        with pytest.raises(MissingParameter):
            mod.observation(leaf_params(None, ou_param), 0.)

    def test_seasonal(self, seasonal_model, seasonal_params):
        x = tr.leaf(np.array([[1., 0.], [0., 1.]]))
        np.testing.assert_allclose(seasonal_model.f(x, 6.), [0., 1.],
                                   atol=1e-12)
        with pytest.raises(ShapeMismatch):
            seasonal_model.f(tr.leaf(np.zeros((2, 3))), 0.)

    def test_seasonal_harmonics(self):
        mod = models.Seasonal(period=12, harmonics=3)
        assert mod.fourier(0.).shape == (6,)
        np.testing.assert_allclose(mod.fourier(0.), [1., 0.] * 3)

    def test_bernoulli_link_is_clipped(self):
        mod = models.Bernoulli()
        np.testing.assert_allclose(mod.link(np.array([-10., 0., 10.])),
                                   [0., 0.5, 1.])
        assert mod.log_likelihood(None, np.array([0.]), 1)[0] == -1e99

    @pytest.mark.parametrize('cls, scale, y', [
        (models.Poisson, None, 3),
        (models.Linear, 0., 0.3),
        (models.StudentsT, 0., 0.3),
        (models.NegativeBinomial, 1., 3),
        (models.ZeroInflatedPoisson, -1., 0),
        (models.BetaModel, 1., 0.4),
    ])
    def test_observation_and_likelihood_agree(self, cls, scale, y, ou_param,
                                              rng):
        mod = cls()
        params = leaf_params(scale, ou_param)
        eta = mod.link(np.array([0.2, -0.3]))
        obs = mod.observation(params, eta)
        assert np.shape(obs.rvs(rng=rng)) == (2,)
        np.testing.assert_allclose(mod.log_likelihood(params, eta, y),
                                   obs.logpdf(y))
        assert np.all(np.isfinite(mod.log_likelihood(params, eta, y)))

    def test_students_t_is_location_scale(self, ou_param):
        mod = models.StudentsT(df=4)
        params = leaf_params(np.log(2.), ou_param)
        ll0 = mod.log_likelihood(params, np.array([0.]), 2.)
        ll1 = mod.log_likelihood(params, np.array([1.]), 3.)
        np.testing.assert_allclose(ll0, ll1)

    def test_lgcp(self, ou_param):
        mod = models.LogGaussianCox()
        params = leaf_params(None, ou_param)
        with pytest.raises(UnimplementedObservation):
            mod.observation(params, 0.)
        eta = np.array([[np.log(2.), 0.5], [0., 1.]])
        np.testing.assert_allclose(mod.log_likelihood(params, eta, 1),
                                   [np.log(2.) - 0.5, -1.])
        np.testing.assert_allclose(mod.log_likelihood(params, eta, 0),
                                   [-0.5, -1.])

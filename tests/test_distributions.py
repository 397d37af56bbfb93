"""Tests for pomp.distributions."""

import numpy as np
import pytest
from scipy import stats

from pomp import distributions as dists
from pomp import tree as tr


class TestShapes:

    @pytest.mark.parametrize('dist', [
        dists.Normal(loc=np.zeros(3)),
        dists.Beta(a=np.ones(3), b=2.),
        dists.Gamma(a=np.ones(3)),
        dists.Exponential(rate=np.ones(3)),
        dists.Uniform(a=np.zeros(3), b=2.),
        dists.Student(df=4., loc=np.zeros(3)),
        dists.Dirac(loc=np.zeros(3)),
        dists.Poisson(rate=np.ones(3)),
        dists.Bernoulli(p=np.full(3, 0.3)),
        dists.NegativeBinomial(size=2., mu=np.ones(3)),
        dists.ZeroInflatedPoisson(rate=np.ones(3), pzero=0.2),
    ])
    def test_vector_parameters_broadcast(self, dist, rng):
        x = dist.rvs(size=7, rng=rng)
        assert x.shape == (7, 3)
        assert dist.logpdf(x).shape == (7, 3)

    def test_mv_normal(self, rng):
        cov = np.array([[2., 0.5], [0.5, 1.]])
        d = dists.MvNormal(loc=np.ones(2), cov=cov)
        x = d.rvs(size=20000, rng=rng)
        assert x.shape == (20000, 2)
        np.testing.assert_allclose(np.cov(x, rowvar=False), cov, atol=0.06)
        np.testing.assert_allclose(
            d.logpdf(x[:5]),
            stats.multivariate_normal.logpdf(x[:5], mean=np.ones(2),
                                             cov=cov))


class TestDiscrete:

    def test_negative_binomial_moments(self, rng):
        d = dists.NegativeBinomial(size=2., mu=3.)
        x = d.rvs(size=50000, rng=rng)
        assert np.mean(x) == pytest.approx(3., rel=0.03)
        assert np.var(x) == pytest.approx(3. + 9. / 2., rel=0.05)

    def test_zero_inflated_poisson(self, rng):
        d = dists.ZeroInflatedPoisson(rate=2., pzero=0.3)
        x = d.rvs(size=50000, rng=rng)
        p0 = 0.3 + 0.7 * np.exp(-2.)
        assert np.mean(x == 0) == pytest.approx(p0, abs=0.01)
        assert d.logpdf(0) == pytest.approx(np.log(p0))
        ks = np.arange(60)
        assert np.exp(d.logpdf(ks)).sum() == pytest.approx(1.)

    def test_zero_inflated_poisson_without_inflation(self):
        d = dists.ZeroInflatedPoisson(rate=2., pzero=0.)
        np.testing.assert_allclose(d.logpdf(np.arange(5)),
                                   stats.poisson.logpmf(np.arange(5), 2.))

    def test_logistic(self):
        np.testing.assert_allclose(dists.logistic(np.array([0., np.inf])),
                                   [0.5, 1.])


class TestIndepTree:

    def test_sampling_and_density(self, rng):
        d = dists.IndepTree(tr.branch(tr.leaf(dists.Normal(loc=np.zeros(2))),
                                      tr.leaf(dists.Normal(loc=np.ones(1)))))
        x = d.rvs(size=9, rng=rng)
        assert tr.shape_str(x) == 'B(L, L)'
        assert x.left.value.shape == (9, 2)
        assert x.right.value.shape == (9, 1)
        expected = (stats.norm.logpdf(x.left.value).sum(axis=1)
                    + stats.norm.logpdf(x.right.value, loc=1.).sum(axis=1))
        np.testing.assert_allclose(d.logpdf(x), expected)

"""
Probability distributions as Python objects.

Overview
========

This module lets users define probability distributions as Python objects.
They are used:

  * by SDE kernels (see module `sde`), to represent the distribution of the
    initial state, and of the next state given the current one;
  * by models (see module `models`), to represent the distribution of an
    observation given the linear predictor;
  * by the PMMH sampler (see module `mcmc`), to represent proposals.

The module defines the following distributions:

=======================================  ==================================
  class (with signature)                   comments
=======================================  ==================================
Beta(a=1., b=1.)
Dirac(loc=0.)                            Dirac mass at point *loc*
Exponential(rate=1.)                     mean is 1 / rate
Gamma(a=1., b=1.)                        scale = 1/b
Normal(loc=0., scale=1.)                 N(loc,scale^2) distribution
MvNormal(loc, scale=1., cov=None)        multivariate Gaussian
Student(df=3., loc=0., scale=1.)
Uniform(a=0., b=1.)                      uniform over interval [a,b]
Bernoulli(p=0.5)
Poisson(rate=1.)                         Poisson with expectation ``rate``
NegativeBinomial(size=1., mu=1.)         mean mu, variance mu + mu^2/size
ZeroInflatedPoisson(rate=1., pzero=0.)   zero with probability pzero
IndepTree(t)                             independent product over a tree
=======================================  ==================================

Under the hood
==============

Probability distributions are represented as objects of classes that inherit
from base class `ProbDist`, and implement the following methods:

* ``logpdf(self, x)``: computes the log-pdf (or log-pmf) at point ``x``;
* ``rvs(self, size=None, rng=None)``: simulates ``size`` random variates,
  using random generator ``rng`` (anything accepted by
  `numpy.random.default_rng`).

Parameters may be numpy arrays, in which case the distribution is an "array
distribution". If ``size`` is None, ``rvs`` returns one variate per entry of
the (broadcast) parameters; otherwise, it returns an array of shape
``(size,) + shape of parameters``. For instance::

    d = dists.Normal(loc=np.zeros(3))
    d.rvs(size=10, rng=rng)  # a (10, 3) array
    dists.Normal(loc=np.zeros((10, 3))).rvs(rng=rng)  # also (10, 3)

This is how a cloud of N particles, stored as arrays of shape (N, d), is
moved in one call: the SDE kernel returns a distribution whose parameters
have shape (N, d), and a single call to ``rvs`` draws the N next states.

Distributions are composed by ordinary function calls: a kernel is simply a
function that maps the current state to a distribution.

"""

import numpy as np
import numpy.linalg as nla
import scipy.linalg as sla
from scipy import special, stats

from pomp import tree as tr

HALFLOG2PI = 0.5 * np.log(2.0 * np.pi)


class ProbDist:
    """Base class for probability distributions.

    To define a probability distribution class, subclass ProbDist, and define
    methods:

    * ``logpdf(self, x)``: the log-density at point x
    * ``rvs(self, size=None, rng=None)``: generates *size* variates

    and attribute ``params``, the names of the (array-like) parameters, so
    that `shape` works out the shape of the output.

    """

    dtype = float  # distributions are continuous by default
    params = ()

    def batch_shape(self):
        return np.broadcast(*[getattr(self, p) for p in self.params]).shape

    def shape(self, size):
        if size is None:
            return None
        else:
            return (size,) + self.batch_shape()

    def logpdf(self, x):
        raise NotImplementedError

    def rvs(self, size=None, rng=None):
        raise NotImplementedError


##############################
# continuous distributions
##############################


class Normal(ProbDist):
    """N(loc, scale^2) distribution."""

    params = ('loc', 'scale')

    def __init__(self, loc=0.0, scale=1.0):
        self.loc = loc
        self.scale = scale

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return rng.normal(loc=self.loc, scale=self.scale, size=self.shape(size))

    def logpdf(self, x):
        return stats.norm.logpdf(x, loc=self.loc, scale=self.scale)


class Beta(ProbDist):
    """Beta(a,b) distribution."""

    params = ('a', 'b')

    def __init__(self, a=1.0, b=1.0):
        self.a = a
        self.b = b

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return rng.beta(self.a, self.b, size=self.shape(size))

    def logpdf(self, x):
        return stats.beta.logpdf(x, self.a, self.b)


class Gamma(ProbDist):
    """Gamma(a,b) distribution, scale=1/b."""

    params = ('a', 'b')

    def __init__(self, a=1.0, b=1.0):
        self.a = a
        self.b = b
        self.scale = 1.0 / np.asarray(b, dtype=float)

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return rng.gamma(self.a, scale=self.scale, size=self.shape(size))

    def logpdf(self, x):
        return stats.gamma.logpdf(x, self.a, scale=self.scale)


class Exponential(ProbDist):
    """Exponential distribution, with expectation 1 / rate."""

    params = ('rate',)

    def __init__(self, rate=1.0):
        self.rate = rate

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return rng.exponential(scale=1.0 / np.asarray(self.rate, dtype=float),
                               size=self.shape(size))

    def logpdf(self, x):
        return stats.expon.logpdf(x, scale=1.0 / np.asarray(self.rate,
                                                            dtype=float))


class Uniform(ProbDist):
    """Uniform([a,b]) distribution."""

    params = ('a', 'b')

    def __init__(self, a=0, b=1.0):
        self.a = a
        self.b = b
        self.scale = np.subtract(b, a)

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return rng.uniform(low=self.a, high=self.b, size=self.shape(size))

    def logpdf(self, x):
        return stats.uniform.logpdf(x, loc=self.a, scale=self.scale)


class Student(ProbDist):
    """Student distribution."""

    params = ('df', 'loc', 'scale')

    def __init__(self, df=3.0, loc=0.0, scale=1.0):
        self.df = df
        self.loc = loc
        self.scale = scale

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return stats.t.rvs(self.df, loc=self.loc, scale=self.scale,
                           size=self.shape(size), random_state=rng)

    def logpdf(self, x):
        return stats.t.logpdf(x, self.df, loc=self.loc, scale=self.scale)


class Dirac(ProbDist):
    """Dirac mass."""

    params = ('loc',)

    def __init__(self, loc=0.0):
        self.loc = loc

    def rvs(self, size=None, rng=None):
        if size is None:
            return np.array(self.loc, dtype=float)  # a copy
        return np.broadcast_to(self.loc, self.shape(size)).astype(float)

    def logpdf(self, x):
        return np.where(x == self.loc, 0.0, -np.inf)


class MvNormal(ProbDist):
    """Multivariate Normal distribution.

    Parameters
    ----------
    loc: ndarray
        location parameter, of shape (d,) or (N, d)
    scale: float or ndarray
        scale parameter (default: 1.)
    cov: (d, d) ndarray
        covariance matrix (default: identity, with dim determined by loc)
    chol: (d, d) ndarray
        lower Cholesky factor of cov; may be given instead of cov (and may
        then be singular)

    Notes
    -----
    ``MvNormal(loc=m, scale=s, cov=C)`` corresponds to
    N(m, diag(s)*C*diag(s)). In particular, m and s may be (N, d) arrays,
    i.e. for each n=1...N we have a different mean, and a different scale.
    """

    def __init__(self, loc=np.array([0.0]), scale=1.0, cov=None, chol=None):
        self.loc = np.asarray(loc, dtype=float)
        self.scale = scale
        if chol is not None:
            self.L = np.asarray(chol, dtype=float)
            self.cov = self.L @ np.swapaxes(self.L, -1, -2)
        else:
            self.cov = np.eye(self.loc.shape[-1]) if cov is None else cov
            try:
                self.L = nla.cholesky(self.cov)  # lower triangle
            except nla.LinAlgError:
                raise ValueError("MvNormal: argument cov must be a (d, d) "
                                 "pos. definite matrix")

    @property
    def dim(self):
        return self.L.shape[-1]

    def linear_transform(self, z):
        return self.loc + self.scale * np.einsum("...ij,...j->...i", self.L, z)

    def logpdf(self, x):
        halflogdetcor = np.sum(np.log(np.diag(self.L)))
        xc = (x - self.loc) / self.scale
        z = sla.solve_triangular(self.L, np.transpose(xc), lower=True)
        # z is dxN, not Nxd
        if np.asarray(self.scale).ndim == 0:
            logdet = self.dim * np.log(self.scale)
        else:
            logdet = np.sum(np.log(self.scale), axis=-1)
        logdet += halflogdetcor
        return -0.5 * np.sum(z * z, axis=0) - logdet - self.dim * HALFLOG2PI

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        sh = np.broadcast(self.loc, self.scale).shape[:-1]
        if size is not None:
            sh = (size,) + sh
        z = rng.standard_normal(size=sh + (self.dim,))
        return self.linear_transform(z)


########################
# Discrete distributions
########################


class DiscreteDist(ProbDist):
    """Base class for discrete probability distributions.
    """
    dtype = np.int64


class Poisson(DiscreteDist):
    """Poisson(rate) distribution."""

    params = ('rate',)

    def __init__(self, rate=1.0):
        self.rate = rate

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return rng.poisson(self.rate, size=self.shape(size))

    def logpdf(self, x):
        return stats.poisson.logpmf(x, self.rate)


class Bernoulli(DiscreteDist):
    """Bernoulli(p) distribution, over {0, 1}."""

    params = ('p',)

    def __init__(self, p=0.5):
        self.p = p

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return rng.binomial(1, self.p, size=self.shape(size))

    def logpdf(self, x):
        return stats.bernoulli.logpmf(x, self.p)


class NegativeBinomial(DiscreteDist):
    """Negative Binomial distribution, mean/size parametrisation.

    Parameters
    ----------
    size: float, or array of floats (>0)
        size (or dispersion) parameter
    mu: float, or array of floats (>0)
        expectation

    Note:
        the variance is mu + mu^2 / size; support is 0, 1, ...

    """

    params = ('size', 'mu')

    def __init__(self, size=1.0, mu=1.0):
        self.size = size
        self.mu = mu
        self.p = np.divide(size, np.add(size, mu))

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return rng.negative_binomial(self.size, self.p, size=self.shape(size))

    def logpdf(self, x):
        return stats.nbinom.logpmf(x, self.size, self.p)


class ZeroInflatedPoisson(DiscreteDist):
    """Mixture of a Dirac mass at zero (probability pzero) and a Poisson."""

    params = ('rate', 'pzero')

    def __init__(self, rate=1.0, pzero=0.0):
        self.rate = rate
        self.pzero = pzero

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        shape = self.shape(size)
        zero = rng.uniform(size=shape) < self.pzero
        return np.where(zero, 0, rng.poisson(self.rate, size=shape))

    def logpdf(self, x):
        with np.errstate(divide='ignore'):
            lp = np.log1p(-self.pzero) + stats.poisson.logpmf(x, self.rate)
            return np.where(np.asarray(x) == 0,
                            np.logaddexp(np.log(self.pzero), lp), lp)


def logistic(x):
    """Inverse of the logit function."""
    return special.expit(x)


###################################
# trees of distributions
###################################


class IndepTree(ProbDist):
    """Product of independent distributions, laid out as a tree.

    Sampling returns a tree with the same shape, whose leaves are the
    variates of the corresponding distribution; logpdf sums the log-densities
    of all leaves (and of all components of each leaf).

    Parameters
    ----------
    dists: Tree
        a tree whose payloads are `ProbDist` objects

    Example
    -------
    ::

        d = IndepTree(tr.branch(tr.leaf(Normal(loc=np.zeros(2))),
                                tr.leaf(Gamma())))
        x = d.rvs(size=9, rng=rng)  # a tree with leaves (9, 2) and (9,)

    """

    def __init__(self, dists):
        self.dists = dists

    def rvs(self, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return tr.tree_map(lambda d: d.rvs(size=size, rng=rng), self.dists)

    def logpdf(self, x):
        lps = tr.leaves(tr.tree_zip(lambda d, xi: d.logpdf(xi), self.dists, x))
        # leaves are vectors, their components are on the last axis
        return sum(np.sum(lp, axis=-1) for lp in lps)

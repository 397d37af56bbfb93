"""
Partially observed Markov process (POMP) models, and their composition.

Overview
========

A model describes how a latent state X_t, which follows a SDE (see module
`sde`), generates observations Y_t. Given a state x at time t, we compute:

* ``gamma = f(x, t)``: a linear (deterministic) transformation of the state;
* ``eta = link(gamma)``: the (possibly non-linear) link function;
* the observation ``Y_t ~ observation(params, eta)``.

To define a model class, sub-class `Model` and define methods ``link``,
``f_leaf`` (the contribution of a single vector of the state to gamma),
``observation`` and ``log_likelihood``. This module defines the following
(leaf) models:

==========================  ==================  ===========================
  class                     link                observation
==========================  ==================  ===========================
Poisson                     exp                 Poisson(eta)
Bernoulli                   logistic (clipped)  Bernoulli(eta)
Seasonal(period, harmonics) identity            N(eta, exp(scale)^2)
Linear                      identity            N(eta, exp(scale)^2)
StudentsT(df)               identity            eta + exp(scale) * t(df)
NegativeBinomial            exp                 NB(size=exp(scale), mu=eta)
ZeroInflatedPoisson         exp                 ZIP(eta, logistic(scale))
BetaModel                   exp(-gamma)         Beta(eta, exp(scale))
LogGaussianCox              identity            (event times, by thinning)
==========================  ==================  ===========================

Leaf models are instantiated with an unparameterised SDE (a function that
maps a `parameters.SdeParameter` to a `sde.Sde` object), plus optional
keyword arguments whose defaults are given by class attribute
``default_params``::

    from pomp import models, sde

    mod = models.Seasonal(sde=sde.ornstein_uhlenbeck, period=24, harmonics=2)

Model parameters are trees of `parameters.LeafParameter` objects, with the
same shape as the model (see `Model.shape`); they are passed to each method
that needs them, so that a single model object may be evaluated at
different parameter values (e.g. by the PMMH sampler).

Composition
===========

Models may be composed::

    mod = models.compose(models.Poisson(sde.brownian_motion),
                         models.Seasonal(sde.ornstein_uhlenbeck))

The composed model adds up the linear predictors of its components (here, a
trend plus a daily seasonality), its latent state is the branch made of the
two sub-states, and the SDE of each sub-state is the SDE of the
corresponding component.

.. warning::
    Composition is **not** commutative: the observation distribution, link
    function and likelihood of a composed model are those of the *left*
    component (with the left sub-parameter). The observation family of the
    right component is never used. ``compose(m1, m2)`` and
    ``compose(m2, m1)`` are therefore different models, unless m1 and m2
    share the same observation family. ``compose(a, b, c)`` folds from the
    left, i.e. it is ``compose(compose(a, b), c)``, whose observation
    distribution is that of a.

Vectorisation
=============

All methods accept states that are clouds of N particles (tree leaves of
shape (N, d)) as well as single states (leaves of shape (d,)); gamma and
eta are then (N,) arrays (or scalars).

"""

import functools

import numpy as np

from pomp import distributions as dists
from pomp import sde as sdes
from pomp import tree as tr
from pomp.errors import MissingParameter, ShapeMismatch, UnimplementedObservation


class Model:
    """Base class for models.

    Methods that depend on parameters take a parameter tree as their first
    argument.
    """

    default_params = {}

    def _error_msg(self, method):
        return ('method ' + method + ' not implemented in class %s' %
                self.__class__.__name__)

    def shape(self):
        """Tree that has the shape of the model (payloads are leaf models)."""
        raise NotImplementedError(self._error_msg('shape'))

    def sde(self, params):
        raise NotImplementedError(self._error_msg('sde'))

    def initial_state(self, params):
        """Distribution of the initial state (a `distributions.IndepTree`)."""
        raise NotImplementedError(self._error_msg('initial_state'))

    def f(self, x, t):
        """Linear predictor gamma, for state x (a tree) at time t."""
        raise NotImplementedError(self._error_msg('f'))

    def link(self, gamma):
        return gamma

    def observation(self, params, eta):
        """Distribution of the observation given eta."""
        raise NotImplementedError(self._error_msg('observation'))

    def log_likelihood(self, params, eta, y):
        """Log-density of observation y given eta (one value per particle)."""
        raise NotImplementedError(self._error_msg('log_likelihood'))

    def eta(self, x, t):
        return self.link(self.f(x, t))

    def dim(self, params):
        """Dimension of the latent state."""
        return self.sde(params).dim


class LeafModel(Model):
    """Base class for leaf models (observation families).

    Parameters
    ----------
    sde: callable
        unparameterised SDE, maps a `SdeParameter` to a `Sde` object
        (default: `sde.ornstein_uhlenbeck`)
    **kwargs:
        values of the parameters listed in class attribute ``default_params``
    """

    default_sde = staticmethod(sdes.ornstein_uhlenbeck)

    def __init__(self, sde=None, **kwargs):
        self.__dict__.update(self.default_params)
        for k, v in kwargs.items():
            if k not in self.default_params:
                raise TypeError('%s: unknown parameter %s'
                                % (self.__class__.__name__, k))
            self.__dict__[k] = v
        self.sde_fn = self.default_sde if sde is None else sde

    def __repr__(self):
        opts = ', '.join('%s=%r' % (k, getattr(self, k))
                         for k in self.default_params)
        return '%s(%s)' % (self.__class__.__name__, opts)

    def leaf_param(self, params):
        if not isinstance(params, tr.Leaf):
            raise ShapeMismatch('%s: expected leaf parameters, got shape %s'
                                % (self.__class__.__name__,
                                   tr.shape_str(params)))
        return params.value

    def scale(self, params):
        scale = self.leaf_param(params).scale
        if scale is None:
            raise MissingParameter('%s: no scale parameter provided'
                                   % self.__class__.__name__)
        return scale

    def shape(self):
        return tr.leaf(self)

    def sde(self, params):
        return self.sde_fn(self.leaf_param(params).sde)

    def initial_state(self, params):
        return self.sde(params).initial_state()

    def f_leaf(self, v, t):
        # first component of the state
        return v[..., 0]

    def f(self, x, t):
        return tr.fold(x, lambda v: self.f_leaf(np.asarray(v), t),
                       lambda a, b: a + b, 0.)


class Poisson(LeafModel):
    """Poisson observations, log link."""

    def link(self, gamma):
        return np.exp(gamma)

    def observation(self, params, eta):
        return dists.Poisson(rate=eta)

    def log_likelihood(self, params, eta, y):
        return dists.Poisson(rate=eta).logpdf(y)


class Bernoulli(LeafModel):
    """Binary observations, logistic link.

    The link is clipped: it returns 0 below -6, and 1 above 6; the log
    probability of an impossible observation is then set to -1e99 (rather
    than -inf).
    """

    def link(self, gamma):
        gamma = np.asarray(gamma, dtype=float)
        return np.where(gamma > 6., 1., np.where(gamma < -6., 0.,
                                                 dists.logistic(gamma)))

    def observation(self, params, eta):
        return dists.Bernoulli(p=eta)

    def log_likelihood(self, params, eta, y):
        p = np.asarray(eta, dtype=float)
        with np.errstate(divide='ignore'):
            lp = np.where(y == 1, np.log(p), np.log1p(-p))
        return np.maximum(lp, -1e99)


class Gaussian(LeafModel):
    """Base class for Gaussian observations, sd = exp(scale)."""

    def observation(self, params, eta):
        return dists.Normal(loc=eta, scale=np.exp(self.scale(params)))

    def log_likelihood(self, params, eta, y):
        return self.observation(params, eta).logpdf(y)


class Linear(Gaussian):
    """Gaussian observations, identity link."""


class Seasonal(Gaussian):
    """Gaussian observations; gamma is a Fourier series, whose coefficients
    are the latent state.

    For harmonics=k, the state has dimension 2k, and::

        f(x, t) = sum_j x[2j] cos(w (j+1) t) + x[2j+1] sin(w (j+1) t)

    where w = 2 pi / period.
    """

    default_params = {'period': 24, 'harmonics': 1}

    def fourier(self, t):
        """Vector (cos(w t), sin(w t), ..., cos(w k t), sin(w k t))."""
        freq = 2. * np.pi / self.period
        a = np.arange(1, self.harmonics + 1)
        return np.stack([np.cos(freq * a * t), np.sin(freq * a * t)],
                        axis=-1).ravel()

    def f_leaf(self, v, t):
        if v.shape[-1] != 2 * self.harmonics:
            raise ShapeMismatch('Seasonal model with %i harmonics expects '
                                'states of dimension %i, got %i'
                                % (self.harmonics, 2 * self.harmonics,
                                   v.shape[-1]))
        return v @ self.fourier(t)


class StudentsT(LeafModel):
    """Location-scale Student t observations, scale=exp(scale)."""

    default_params = {'df': 5}

    def observation(self, params, eta):
        return dists.Student(df=self.df, loc=eta,
                             scale=np.exp(self.scale(params)))

    def log_likelihood(self, params, eta, y):
        return self.observation(params, eta).logpdf(y)


class NegativeBinomial(LeafModel):
    """Over-dispersed counts: mean eta = exp(gamma), size = exp(scale).

    The variance is eta + eta^2 / size.
    """

    def link(self, gamma):
        return np.exp(gamma)

    def observation(self, params, eta):
        return dists.NegativeBinomial(size=np.exp(self.scale(params)), mu=eta)

    def log_likelihood(self, params, eta, y):
        return self.observation(params, eta).logpdf(y)


class ZeroInflatedPoisson(LeafModel):
    """Counts with excess zeros; the probability of an extra zero is
    logistic(scale)."""

    def link(self, gamma):
        return np.exp(gamma)

    def observation(self, params, eta):
        return dists.ZeroInflatedPoisson(
            rate=eta, pzero=dists.logistic(self.scale(params)))

    def log_likelihood(self, params, eta, y):
        return self.observation(params, eta).logpdf(y)


class BetaModel(LeafModel):
    """Observations in (0, 1): Beta(exp(-gamma), exp(scale))."""

    def link(self, gamma):
        return np.exp(-np.asarray(gamma, dtype=float))

    def observation(self, params, eta):
        return dists.Beta(a=eta, b=np.exp(self.scale(params)))

    def log_likelihood(self, params, eta, y):
        return self.observation(params, eta).logpdf(y)


class LogGaussianCox(LeafModel):
    """Log-Gaussian Cox process: events occur with intensity exp(gamma).

    Observations are event indicators (1: an event occurred at time t, 0: no
    event since the previous observation). The likelihood requires eta to
    hold, on its last axis, the log-intensity at time t, and the integrated
    intensity since the previous observation; this is what
    `filtering.LgcpFilter` computes. Data are simulated by thinning (see
    `simulate.simulate_lgcp`); there is no pointwise observation
    distribution.
    """

    def observation(self, params, eta):
        raise UnimplementedObservation(
            'LogGaussianCox: no observation distribution; use '
            'simulate.simulate_lgcp to simulate event times')

    def log_likelihood(self, params, eta, y):
        eta = np.asarray(eta, dtype=float)
        return y * eta[..., 0] - eta[..., 1]


class Composed(Model):
    """Composition of two models, see `compose`."""

    def __init__(self, left, right):
        self.left = left
        self.right = right

    def __repr__(self):
        return 'Composed(%r, %r)' % (self.left, self.right)

    def _split(self, params):
        if not isinstance(params, tr.Branch):
            raise ShapeMismatch('composed model: expected branch parameters, '
                                'got shape %s' % tr.shape_str(params))
        return params.left, params.right

    def shape(self):
        return tr.branch(self.left.shape(), self.right.shape())

    def sde(self, params):
        lp, rp = self._split(params)
        return sdes.compose(self.left.sde(lp), self.right.sde(rp))

    def initial_state(self, params):
        lp, rp = self._split(params)
        return dists.IndepTree(tr.combine(self.left.initial_state(lp).dists,
                                          self.right.initial_state(rp).dists))

    def f(self, x, t):
        if isinstance(x, tr.Branch):
            return self.left.f(x.left, t) + self.right.f(x.right, t)
        if isinstance(x, tr.Leaf):
            return self.left.f(x, t)
        return 0.

    def link(self, gamma):
        return self.left.link(gamma)

    def observation(self, params, eta):
        return self.left.observation(self._split(params)[0], eta)

    def log_likelihood(self, params, eta, y):
        return self.left.log_likelihood(self._split(params)[0], eta, y)


def compose(*models):
    """Compose models, from the left: compose(a, b, c) = (a + b) + c.

    The observation distribution of the result is that of the first model.
    """
    if not models:
        raise ValueError('compose: at least one model is required')
    return functools.reduce(Composed, models)

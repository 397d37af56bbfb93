"""
Parameters of composed models.

Overview
========

The parameters of a model (see module `models`) are a tree (see module
`tree`) with exactly the same shape as the model. Each leaf of that tree is
a `LeafParameter`, made of:

* ``scale``: an optional observation scale (e.g. the log standard deviation
  of a Gaussian observation; None for a Poisson observation);
* ``sde``: the parameters of the SDE that drives the latent state, one of:

=========================================  =================================
  class (with signature)                    SDE
=========================================  =================================
BrownianParameter(m0, c0, sigma)           driftless Brownian motion
GenBrownianParameter(m0, c0, mu, sigma)    Brownian motion with drift mu
OuParameter(m0, c0, alpha, sigma, theta)   Ornstein-Uhlenbeck process
=========================================  =================================

All fields are vectors of size d (the dimension of the SDE); scalars are
accepted and converted to vectors of size one. ``m0`` is the mean of the
initial state, ``theta`` the long-run mean and ``mu`` the drift of the
state. Positive quantities are stored on the log-scale, so that a Gaussian
random walk may be used to propose new values:

* ``c0``: log-variance of the initial state;
* ``sigma``: log of the diffusion coefficient;
* ``alpha``: log of the mean-reversion rate.

Example::

    from pomp import parameters as prm, tree as tr

    p = tr.leaf(prm.LeafParameter(
        scale=None,
        sde=prm.OuParameter(m0=1., c0=np.log(0.1), alpha=np.log(0.1),
                            sigma=np.log(0.1), theta=0.)))

The free functions of this module (`flatten`, `add`, `perturb`, ...)
operate on such trees; parameter objects are immutable, every operation
returns a new object.

"""

import numpy as np

from pomp import tree as tr
from pomp.errors import MissingParameter, ShapeMismatch


class SdeParameter:
    """Base class for the parameters of a SDE.

    Subclasses set class attribute ``fields``, the names of the vectors that
    make up the parameter, in the order used by `flatten`.
    """

    fields = ()

    def __init__(self, **kwargs):
        for k in kwargs:
            if k not in self.fields:
                raise TypeError("%s: no parameter named %s"
                                % (self.__class__.__name__, k))
        for f in self.fields:
            if f not in kwargs:
                raise MissingParameter("%s: missing parameter %s"
                                       % (self.__class__.__name__, f))
            self.__dict__[f] = np.atleast_1d(np.asarray(kwargs[f], dtype=float))
        dims = {getattr(self, f).shape for f in self.fields}
        if len(dims) > 1:
            raise ShapeMismatch("%s: fields must have the same size, got %s"
                                % (self.__class__.__name__, self._dims()))

    def _dims(self):
        return ', '.join('%s=%i' % (f, getattr(self, f).size)
                         for f in self.fields)

    @property
    def dim(self):
        return getattr(self, self.fields[0]).shape[0]

    def __len__(self):
        return self.dim * len(self.fields)

    def flatten(self):
        return np.concatenate([getattr(self, f) for f in self.fields])

    def from_flat(self, v):
        """New parameter of the same class and dim, with values v."""
        v = np.asarray(v, dtype=float)
        if v.shape != (len(self),):
            raise ShapeMismatch('%s: expected %i values, got %s'
                                % (self.__class__.__name__, len(self),
                                   v.shape))
        d = self.dim
        return self.__class__(**{f: v[i * d:(i + 1) * d]
                                 for i, f in enumerate(self.fields)})

    def add(self, delta):
        return self.from_flat(self.flatten() + delta)

    def map(self, f):
        """Apply f to every field (each a vector)."""
        return self.__class__(**{k: f(getattr(self, k)) for k in self.fields})

    def names(self):
        return ['%s_%i' % (f, i) for f in self.fields for i in range(self.dim)]

    def __eq__(self, other):
        return (type(self) is type(other)
                and all(np.array_equal(getattr(self, f), getattr(other, f))
                        for f in self.fields))

    __hash__ = None

    def __repr__(self):
        return '%s(%s)' % (self.__class__.__name__,
                           ', '.join('%s=%s' % (f, getattr(self, f))
                                     for f in self.fields))


class BrownianParameter(SdeParameter):
    """Parameters of a driftless Brownian motion.

    Parameters
    ----------
    m0: initial mean
    c0: log of initial variance
    sigma: log of diffusion coefficient
    """
    fields = ('m0', 'c0', 'sigma')


class GenBrownianParameter(SdeParameter):
    """Parameters of a Brownian motion with drift (mu)."""
    fields = ('m0', 'c0', 'mu', 'sigma')


class OuParameter(SdeParameter):
    """Parameters of an Ornstein-Uhlenbeck process.

    The process solves dX = exp(alpha) (theta - X) dt + exp(sigma) dW.

    Parameters
    ----------
    m0: initial mean
    c0: log of initial variance
    alpha: log of mean-reversion rate
    sigma: log of diffusion coefficient
    theta: long-run mean
    """
    fields = ('m0', 'c0', 'alpha', 'sigma', 'theta')


class LeafParameter:
    """Parameters of a leaf model: optional observation scale, plus SDE.

    Parameters
    ----------
    scale: float or None
        observation scale (on the log or logit scale, depending on the model)
    sde: SdeParameter
    """

    def __init__(self, scale=None, sde=None):
        if sde is None:
            raise MissingParameter('LeafParameter: missing sde parameter')
        self.scale = None if scale is None else float(np.squeeze(scale))
        self.sde = sde

    def __len__(self):
        return len(self.sde) + (0 if self.scale is None else 1)

    def flatten(self):
        sde = self.sde.flatten()
        if self.scale is None:
            return sde
        return np.concatenate(([self.scale], sde))

    def from_flat(self, v):
        v = np.asarray(v, dtype=float)
        if self.scale is None:
            return LeafParameter(None, self.sde.from_flat(v))
        if v.shape != (len(self),):
            raise ShapeMismatch('LeafParameter: expected %i values, got %s'
                                % (len(self), v.shape))
        return LeafParameter(v[0], self.sde.from_flat(v[1:]))

    def add(self, delta):
        return self.from_flat(self.flatten() + delta)

    def names(self):
        sde = self.sde.names()
        return sde if self.scale is None else ['scale'] + sde

    def __eq__(self, other):
        return (isinstance(other, LeafParameter) and self.scale == other.scale
                and self.sde == other.sde)

    __hash__ = None

    def __repr__(self):
        return 'LeafParameter(scale=%s, sde=%r)' % (self.scale, self.sde)


def leaf_parameter(scale=None, sde=None):
    """Parameter tree of a leaf model."""
    return tr.leaf(LeafParameter(scale=scale, sde=sde))


#############################
# functions on parameter trees
#############################


def flatten(params):
    """All scalar parameters, depth-first, as a 1D array."""
    return tr.flatten(params)


def length(params):
    return tr.fold(params, len, lambda a, b: a + b, 0)


def names(params):
    """Names of the scalar parameters, in the same order as `flatten`.

    Each name is prefixed by the index of the leaf (from the left), e.g.
    'p0.scale', 'p1.sigma_0'.
    """
    return ['p%i.%s' % (i, n) for i, lp in enumerate(tr.leaves(params))
            for n in lp.names()]


def unflatten(template, v):
    """Parameter tree with the same shape and variants as template, values v.
    """
    v = np.asarray(v, dtype=float)
    n = length(template)
    if v.shape != (n,):
        raise ShapeMismatch('vector of shape %s does not match a parameter '
                            'tree with %i values' % (v.shape, n))
    pos = [0]

    def refill(lp):
        k = len(lp)
        out = lp.from_flat(v[pos[0]:pos[0] + k])
        pos[0] += k
        return out

    return tr.tree_map(refill, template)


def add(params, delta):
    """Add vector delta to the (flattened) parameters."""
    return unflatten(params, flatten(params) + delta)


def perturb(params, delta, rng=None):
    """Gaussian random walk: add independent N(0, delta^2) to every scalar
    parameter (observation scales and SDE parameters alike)."""
    rng = np.random.default_rng(rng)
    return add(params, delta * rng.standard_normal(length(params)))


def perturb_mvn(params, chol, rng=None):
    """Gaussian random walk with covariance chol * chol^T.

    Parameters
    ----------
    params: Tree
    chol: (d, d) ndarray
        lower Cholesky factor of the covariance of the increment, where d is
        the number of scalar parameters
    rng: numpy Generator, int or None
    """
    rng = np.random.default_rng(rng)
    chol = np.atleast_2d(chol)
    return add(params, chol @ rng.standard_normal(chol.shape[1]))


def perturb_mvn_eigen(params, eigvals, eigvecs, scale=1., rng=None):
    """Gaussian random walk, covariance given by its eigen-decomposition.

    The increment is scale * Q diag(sqrt(eigvals)) z, z ~ N(0, I), with Q the
    matrix of eigenvectors; see `numpy.linalg.eigh`.
    """
    rng = np.random.default_rng(rng)
    q = scale * eigvecs * np.sqrt(np.maximum(eigvals, 0.))
    return add(params, q @ rng.standard_normal(len(eigvals)))


def as_matrix(samples):
    """(n, d) array of flattened parameters, one row per sample."""
    return np.array([flatten(s) for s in samples])


def mean(samples):
    """Component-wise mean of a list of parameter trees (of the same shape)."""
    if len(samples) == 0:
        raise ValueError('mean: no samples')
    return unflatten(samples[0], as_matrix(samples).mean(axis=0))


def covariance(samples):
    """(d, d) empirical covariance matrix of a list of parameter trees."""
    return np.atleast_2d(np.cov(as_matrix(samples), rowvar=False))


def check_shape(model, params):
    """Raise ShapeMismatch if params does not have the shape of model."""
    if not tr.same_shape(model.shape(), params):
        raise ShapeMismatch('parameters of shape %s do not match model %s of '
                            'shape %s' % (tr.shape_str(params), model,
                                          tr.shape_str(model.shape())))
    for lp in tr.leaves(params):
        if not isinstance(lp, LeafParameter):
            raise ShapeMismatch('leaves of a parameter tree must be '
                                'LeafParameter objects, got %s'
                                % type(lp).__name__)

"""
Stochastic differential equations (SDE) that drive the latent state.

Overview
========

The latent state of a model (see module `models`) evolves in continuous time
according to a SDE::

    dX_t = a(X_t) dt + b(X_t) dW_t

where a is the drift, b the diffusion, and W a Wiener process. An object of
class `Sde` provides:

* ``dim``: the dimension of the state;
* ``initial_state()``: the distribution of X_0;
* ``drift(x)`` and ``diffusion(x)``: functions a and b;
* ``step(dt, x)``: the distribution of X_{t+dt} given X_t = x;
* ``dW(dt, size, rng)``: Wiener increments.

States are trees (see module `tree`), so that the SDE of a composed model is
the composition (`ComposedSde`) of the SDEs of its components.
Distributions over states are `distributions.IndepTree` objects, and states
are vectorised: if x is a cloud of N particles (leaves of shape (N, d)),
``step(dt, x).rvs(rng=rng)`` moves all N particles at once.

By default, ``step`` implements the Euler-Maruyama scheme::

    X_{t+dt} = X_t + a(X_t) dt + b(X_t) sqrt(dt) Z,   Z ~ N(0, I)

where b(x) is either a vector (diagonal diffusion) or a (d, d) matrix. The
following processes override it with their exact Gaussian transition:

===================================  ========================================
  class                              SDE
===================================  ========================================
BrownianMotion(p)                    dX = s dW
GenBrownianMotion(p)                 dX = mu dt + s dW
OrnsteinUhlenbeck(p)                 dX = a (theta - X) dt + s dW
===================================  ========================================

See module `parameters` for their parameters (positive quantities such as a
and s are stored on the log-scale). `EulerMaruyama` defines a SDE from
arbitrary drift and diffusion functions::

    sde = EulerMaruyama(drift=lambda x: -x ** 3,
                        diffusion=lambda x: np.ones_like(x),
                        x0_dist=dists.Normal(loc=np.zeros(1)), dim=1)

Models take an *unparameterised* SDE, i.e. a function that maps a
`parameters.SdeParameter` to a `Sde` object; `brownian_motion`,
`gen_brownian_motion` and `ornstein_uhlenbeck` are such functions.

Simulation
==========

* `simulate_regular`: generator of (t, state) on a regular grid;
* `simulate_times`: list of (t, state) at given times;
* `simulate_fine`: list of (t, state) on a fine grid of step 10^-precision.

"""

import collections

import numpy as np

from pomp import distributions as dists
from pomp import parameters as prm
from pomp import tree as tr
from pomp.errors import ShapeMismatch

StateSpace = collections.namedtuple('StateSpace', ['t', 'state'])


class Sde:
    """Base class for SDEs (over states that are trees)."""

    dim = None

    def _error_msg(self, method):
        return ('method %s not implemented in SDE class %s'
                % (method, self.__class__.__name__))

    def initial_state(self):
        raise NotImplementedError(self._error_msg('initial_state'))

    def drift(self, x):
        raise NotImplementedError(self._error_msg('drift'))

    def diffusion(self, x):
        raise NotImplementedError(self._error_msg('diffusion'))

    def step(self, dt, x):
        raise NotImplementedError(self._error_msg('step'))

    def dW(self, dt, size=None, rng=None):
        raise NotImplementedError(self._error_msg('dW'))


class LeafSde(Sde):
    """Base class for SDEs whose state is a single leaf (a vector).

    Subclasses define the following methods, which act on arrays of shape
    (d,) or (N, d):

    * ``x0_dist(self)``: distribution of the initial state (a `ProbDist`);
    * ``a(self, v)``: drift;
    * ``b(self, v)``: diffusion, a vector (diagonal diffusion), or a (d, d)
      matrix if attribute ``matrix_diffusion`` is True;
    * ``transition(self, dt, v)`` (optional): distribution of the next state;
      Euler-Maruyama by default.
    """

    matrix_diffusion = False

    def value(self, x):
        if not isinstance(x, tr.Leaf):
            raise ShapeMismatch('%s: expected a leaf state, got shape %s'
                                % (self.__class__.__name__, tr.shape_str(x)))
        v = np.asarray(x.value, dtype=float)
        if v.shape[-1:] != (self.dim,):
            raise ShapeMismatch('%s: expected states of dimension %i, got '
                                'an array of shape %s'
                                % (self.__class__.__name__, self.dim, v.shape))
        return v

    def transition(self, dt, v):
        loc = v + self.a(v) * dt
        b = self.b(v)
        if self.matrix_diffusion:
            return dists.MvNormal(loc=loc, scale=np.sqrt(dt), chol=b)
        return dists.Normal(loc=loc, scale=np.abs(b) * np.sqrt(dt))

    def initial_state(self):
        return dists.IndepTree(tr.leaf(self.x0_dist()))

    def drift(self, x):
        return tr.leaf(self.a(self.value(x)))

    def diffusion(self, x):
        return tr.leaf(self.b(self.value(x)))

    def step(self, dt, x):
        return dists.IndepTree(tr.leaf(self.transition(dt, self.value(x))))

    def step_euler(self, dt, x):
        """Euler-Maruyama transition, even if an exact one is available."""
        return dists.IndepTree(tr.leaf(LeafSde.transition(self, dt,
                                                          self.value(x))))

    def dW(self, dt, size=None, rng=None):
        rng = np.random.default_rng(rng)
        shape = (self.dim,) if size is None else (size, self.dim)
        return tr.leaf(rng.normal(scale=np.sqrt(dt), size=shape))


class BrownianMotion(LeafSde):
    """Brownian motion, with optional drift mu (vector).

    Parameters
    ----------
    p: BrownianParameter or GenBrownianParameter
    """

    def __init__(self, p):
        self.p = p
        self.dim = p.dim
        self.m0 = p.m0
        self.sd0 = np.exp(0.5 * p.c0)
        self.mu = getattr(p, 'mu', np.zeros(p.dim))
        self.sigma = np.exp(p.sigma)

    def x0_dist(self):
        return dists.Normal(loc=self.m0, scale=self.sd0)

    def a(self, v):
        return np.broadcast_to(self.mu, v.shape)

    def b(self, v):
        return np.broadcast_to(self.sigma, v.shape)

    def transition(self, dt, v):
        return dists.Normal(loc=v + self.mu * dt,
                            scale=np.broadcast_to(self.sigma * np.sqrt(dt),
                                                  v.shape))


class GenBrownianMotion(BrownianMotion):
    """Brownian motion with drift, dX = mu dt + s dW."""


class OrnsteinUhlenbeck(LeafSde):
    """Ornstein-Uhlenbeck process, dX = a (theta - X) dt + s dW.

    The transition over dt is Gaussian, with::

        mean = theta + (x - theta) exp(-a dt)
        var = s^2 (1 - exp(-2 a dt)) / (2 a)

    The variance is computed with expm1 so that it tends to s^2 dt (the
    variance of a Brownian increment) as a -> 0.

    Parameters
    ----------
    p: OuParameter
    """

    def __init__(self, p):
        self.p = p
        self.dim = p.dim
        self.m0 = p.m0
        self.sd0 = np.exp(0.5 * p.c0)
        self.alpha = np.exp(p.alpha)
        self.sigma = np.exp(p.sigma)
        self.theta = p.theta

    def x0_dist(self):
        return dists.Normal(loc=self.m0, scale=self.sd0)

    def a(self, v):
        return self.alpha * (self.theta - v)

    def b(self, v):
        return np.broadcast_to(self.sigma, v.shape)

    def mean_and_var(self, dt, v):
        mean = self.theta + (v - self.theta) * np.exp(-self.alpha * dt)
        var = self.sigma ** 2 * (-np.expm1(-2. * self.alpha * dt)) / (2. * self.alpha)
        return mean, np.broadcast_to(var, mean.shape)

    def transition(self, dt, v):
        mean, var = self.mean_and_var(dt, v)
        return dists.Normal(loc=mean, scale=np.sqrt(var))


class EulerMaruyama(LeafSde):
    """SDE defined by user-supplied drift and diffusion functions.

    Parameters
    ----------
    drift: callable
        maps an array of states (shape (d,) or (N, d)) to the drift (same
        shape)
    diffusion: callable
        maps an array of states to the diffusion; either an array of the same
        shape (diagonal diffusion), or a (d, d) matrix (resp. (N, d, d)) if
        matrix is True
    x0_dist: ProbDist
        distribution of the initial state (variates of shape (d,))
    dim: int
        dimension of the state
    matrix: bool (default: False)
        whether the diffusion is a matrix

    Note
    ----
    The transition is always the Euler-Maruyama approximation; its
    discretisation error vanishes as dt -> 0.
    """

    def __init__(self, drift=None, diffusion=None, x0_dist=None, dim=1,
                 matrix=False):
        self.drift_fn = drift
        self.diffusion_fn = diffusion
        self.x0 = x0_dist
        self.dim = dim
        self.matrix_diffusion = matrix

    def x0_dist(self):
        return self.x0

    def a(self, v):
        return self.drift_fn(v)

    def b(self, v):
        return self.diffusion_fn(v)


class ComposedSde(Sde):
    """SDE over a branch state: left SDE on the left sub-state, right SDE on
    the right sub-state; the Wiener increments of the two sides are
    independent."""

    def __init__(self, left, right):
        self.left = left
        self.right = right
        self.dim = left.dim + right.dim

    def _split(self, x):
        if not isinstance(x, tr.Branch):
            raise ShapeMismatch('composed SDE: expected a branch state, got '
                                'shape %s' % tr.shape_str(x))
        return x.left, x.right

    def initial_state(self):
        return dists.IndepTree(tr.branch(self.left.initial_state().dists,
                                         self.right.initial_state().dists))

    def drift(self, x):
        l, r = self._split(x)
        return tr.branch(self.left.drift(l), self.right.drift(r))

    def diffusion(self, x):
        l, r = self._split(x)
        return tr.branch(self.left.diffusion(l), self.right.diffusion(r))

    def step(self, dt, x):
        l, r = self._split(x)
        return dists.IndepTree(tr.branch(self.left.step(dt, l).dists,
                                         self.right.step(dt, r).dists))

    def dW(self, dt, size=None, rng=None):
        rng = np.random.default_rng(rng)
        return tr.branch(self.left.dW(dt, size=size, rng=rng),
                         self.right.dW(dt, size=size, rng=rng))


def compose(left, right):
    return ComposedSde(left, right)


###############################
# unparameterised SDEs
###############################


def _check_param(p, cls, name, also=None):
    if not isinstance(p, cls) and not (also and isinstance(p, also)):
        raise ShapeMismatch('%s: expected a %s, got %s'
                            % (name, cls.__name__, type(p).__name__))


def brownian_motion(p):
    """Brownian motion, from a BrownianParameter (or GenBrownianParameter)."""
    _check_param(p, prm.BrownianParameter, "brownian_motion",
                 also=prm.GenBrownianParameter)
    return BrownianMotion(p)


def gen_brownian_motion(p):
    """Brownian motion with drift, from a GenBrownianParameter."""
    _check_param(p, prm.GenBrownianParameter, 'gen_brownian_motion')
    return GenBrownianMotion(p)


def ornstein_uhlenbeck(p):
    """Ornstein-Uhlenbeck process, from an OuParameter."""
    _check_param(p, prm.OuParameter, 'ornstein_uhlenbeck')
    return OrnsteinUhlenbeck(p)


###############################
# simulation
###############################


def simulate_regular(sde, dt, t0=0., rng=None):
    """Generator of StateSpace(t, state), at times t0, t0 + dt, ...

    The generator is unbounded, e.g. use `itertools.islice` to get the
    first n states.
    """
    rng = np.random.default_rng(rng)
    x = sde.initial_state().rvs(rng=rng)
    t = t0
    while True:
        yield StateSpace(t, x)
        x = sde.step(dt, x).rvs(rng=rng)
        t += dt


def simulate_times(sde, times, rng=None):
    """Simulate the SDE at (ordered) times; initial state drawn at times[0].
    """
    rng = np.random.default_rng(rng)
    x = sde.initial_state().rvs(rng=rng)
    out = [StateSpace(times[0], x)]
    for t in times[1:]:
        x = sde.step(t - out[-1].t, x).rvs(rng=rng)
        out.append(StateSpace(t, x))
    return out


def fine_grid(t0, horizon, precision):
    """Grid t0, t0 + delta, ..., up to t0 + horizon, delta = 10^-precision."""
    delta = 10. ** (-precision)
    n = int(np.floor(horizon / delta + 1e-9))
    return t0 + delta * np.arange(n + 1)


def simulate_fine(sde, x0, t0, horizon, precision, rng=None):
    """Simulate the SDE from x0 on a fine grid of step 10^-precision.

    Returns
    -------
    list of StateSpace objects, from (t0, x0) up to time t0 + horizon
    """
    rng = np.random.default_rng(rng)
    delta = 10. ** (-precision)
    times = fine_grid(t0, horizon, precision)
    out = [StateSpace(times[0], x0)]
    for t in times[1:]:
        out.append(StateSpace(t, sde.step(delta, out[-1].state).rvs(rng=rng)))
    return out

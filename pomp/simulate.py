"""
Simulation of data from models.

Overview
========

Data are stored as lists of `Data` objects (named tuples), with fields:

* ``t``: time of the observation;
* ``observation``: the observed value;
* ``eta``, ``gamma``, ``state``: the latent quantities that generated the
  observation (for simulated data; None for real data).

A one-step transition (`simulate_step`) draws the next state from the SDE,
computes gamma = f(state, t) and eta = link(gamma), and draws the
observation. Trajectories are simulated either on a regular grid
(`simulate_regular`, a generator) or at arbitrary ordered times
(`simulate_times`)::

    from pomp import simulate

    data = simulate.simulate_times(mod, params, np.arange(100.), rng=42)

Log-Gaussian Cox process
========================

A `models.LogGaussianCox` model has no pointwise observation distribution;
event times are simulated by thinning (`simulate_lgcp`):

1. simulate the latent state on a fine grid of step 10^-precision;
2. compute the upper bound U of the intensity exp(f(x, t)) over the grid;
3. draw candidate times from a homogeneous Poisson process of rate U;
4. accept a candidate at time t with probability exp(f(x_s, s)) / U, where s
   is the last grid point before t.

Accepted candidates are recorded with observation 1, rejected ones with
observation 0; `simulate_lgcp_events` returns accepted candidates only.

"""

import collections

import numpy as np

from pomp import distributions as dists
from pomp import sde as sdes
from pomp import tree as tr
from pomp.errors import NumericalDegeneracy


class Data(collections.namedtuple('Data', ['t', 'observation', 'eta',
                                           'gamma', 'state'],
                                  defaults=(None, None, None))):
    """An observation at time t, plus the latent quantities (if known)."""

    __slots__ = ()

    def row(self):
        out = [self.t, self.observation]
        if self.state is not None:
            out.extend([np.squeeze(self.eta)[()], np.squeeze(self.gamma)[()]])
            out.extend(tr.flatten(self.state))
        return out

    def __str__(self):
        return ', '.join(str(v) for v in self.row())


def simulate_step(model, params, x, t, dt, rng=None, sde=None):
    """Move state x over dt, and draw an observation at time t.

    Parameters
    ----------
    model: Model
    params: parameter tree
    x: Tree
        current state
    t: float
        time of the observation
    dt: float
        time increment
    rng: numpy Generator, int or None
    sde: Sde, optional
        the SDE of the model at params (recomputed if not given)

    Returns
    -------
    Data
    """
    rng = np.random.default_rng(rng)
    if sde is None:
        sde = model.sde(params)
    x1 = sde.step(dt, x).rvs(rng=rng)
    gamma = model.f(x1, t)
    eta = model.link(gamma)
    y = model.observation(params, eta).rvs(rng=rng)
    return Data(t, y, eta, gamma, x1)


def simulate_regular(model, params, dt, rng=None, t0=0.):
    """Generator of observations at times t0, t0 + dt, t0 + 2 dt, ...

    The first observation is generated from the initial state (zero time
    increment). The generator is unbounded; use e.g. `itertools.islice`.
    """
    rng = np.random.default_rng(rng)
    sde = model.sde(params)
    x = model.initial_state(params).rvs(rng=rng)
    d = simulate_step(model, params, x, t0, 0., rng=rng, sde=sde)
    while True:
        yield d
        d = simulate_step(model, params, d.state, d.t + dt, dt, rng=rng,
                          sde=sde)


def simulate_times(model, params, times, rng=None):
    """Simulate observations at the given (ordered) times.

    Returns
    -------
    list of Data objects, one per time
    """
    rng = np.random.default_rng(rng)
    sde = model.sde(params)
    x = model.initial_state(params).rvs(rng=rng)
    out = []
    for i, t in enumerate(times):
        dt = 0. if i == 0 else t - out[-1].t
        out.append(simulate_step(model, params, x, t, dt, rng=rng, sde=sde))
        x = out[-1].state
    return out


def _thinning(model, params, start, end, precision, rng):
    rng = np.random.default_rng(rng)
    sde = model.sde(params)
    x0 = model.initial_state(params).rvs(rng=rng)
    path = sdes.simulate_fine(sde, x0, start, end - start, precision, rng=rng)
    times = np.array([s.t for s in path])
    log_hazard = np.array([model.f(s.state, s.t) for s in path])
    with np.errstate(over='ignore'):
        upper = np.max(np.exp(log_hazard))
    if not np.isfinite(upper) or upper <= 0.:
        raise NumericalDegeneracy('LGCP thinning: invalid upper bound %s for '
                                  'the intensity' % upper, t=start)
    expo = dists.Exponential(rate=upper)
    out = []
    t = start + expo.rvs(rng=rng)
    while t <= end:
        i = np.searchsorted(times, t, side='right') - 1
        accept = rng.uniform() <= np.exp(log_hazard[i]) / upper
        state = path[i].state
        gamma = model.f(state, t)
        out.append(Data(t, int(accept), model.link(gamma), gamma, state))
        t += expo.rvs(rng=rng)
    return out


def simulate_lgcp(model, params, start, end, precision=2, rng=None):
    """Simulate a log-Gaussian Cox process by thinning.

    Parameters
    ----------
    model: Model
        typically a `models.LogGaussianCox` model (or a composition whose
        left-most component is one)
    params: parameter tree
    start, end: float
        time window
    precision: int
        the latent state is simulated on a grid of step 10^-precision
    rng: numpy Generator, int or None

    Returns
    -------
    list of Data objects, in time order: accepted candidates (events) have
    observation 1, rejected candidates observation 0

    Raises
    ------
    NumericalDegeneracy
        if the upper bound of the intensity is zero or infinite
    """
    return _thinning(model, params, start, end, precision, rng)


def simulate_lgcp_events(model, params, start, end, precision=2, rng=None):
    """Event times of a log-Gaussian Cox process (see `simulate_lgcp`)."""
    return [d for d in _thinning(model, params, start, end, precision, rng)
            if d.observation == 1]


def remove_duplicate_times(data):
    """Sort data by time, and keep only the first observation at each time."""
    out = []
    for d in sorted(data, key=lambda d: d.t):
        if not out or d.t != out[-1].t:
            out.append(d)
    return out

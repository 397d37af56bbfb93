"""
Bootstrap particle filter.

Overview
========

This module defines:

* `ParticleFilter`: the bootstrap particle filter, for a model (see module
  `models`), a parameter tree, and a list of observations (see module
  `simulate`);
* `LgcpFilter`: the same filter, for log-Gaussian Cox processes;
* several front-ends: `log_likelihood`, `ll_filter`, `filter_with_intervals`,
  `online_filter` and `multi_filter`.

To get you started::

    from pomp import filtering

    pf = filtering.ParticleFilter(model=mod, params=params, data=data, N=500)
    pf.run()
    print(pf.ll)  # estimate of the log-likelihood

The filter
==========

The N particles are drawn from the initial distribution of the model at time
t0 (by default, the time of the first observation). Then, for each
observation y at time t:

1. each particle is moved by the SDE over dt = t - t_prev;
2. gamma = f(x, t) and eta = link(gamma) are computed for each particle;
3. the log-weights are the log-likelihoods of y given eta;
4. the log-likelihood estimate is incremented by the log of the mean of the
   weights (computed with the log-sum-exp trick);
5. the particles are resampled (at every step, this is a bootstrap filter);
6. the ESS, floor(1 / sum W^2), is recorded.

A `ParticleFilter` object is an iterator: each call to ``next`` performs one
step, i.e. processes one observation. Steps 1-3 may be distributed over a
pool of threads (option ``n_jobs``), the particles being split into chunks,
each with its own random generator; resampling waits for all the chunks.

Output of the filter
====================

After each step, attribute ``state`` is a `PfState` object (time,
observation, particles before resampling, their weights, log-likelihood
estimate, ESS and step index), and method `output` summarises it as a
`summaries.PfOut` object: weighted means of the state and of eta, and
credible intervals computed from the resampled particles.

Errors
======

If all the particles have a zero likelihood (or a NaN likelihood), filtering
cannot proceed; a `errors.NumericalDegeneracy` exception is raised, which
records the index of the step and the time of the observation.

"""

import collections
import functools

import numpy as np

from pomp import parameters as prm
from pomp import resampling as rs
from pomp import summaries as sm
from pomp import tree as tr
from pomp import utils
from pomp.errors import NumericalDegeneracy


class PfState(collections.namedtuple('PfState', [
        't', 'observation', 'X', 'eta', 'wgts', 'A', 'll', 'ess', 'step'])):
    """State of a particle filter, after a step.

    Attributes
    ----------
    t: float
        time of the observation
    observation:
        the observation
    X: Tree
        particles, before resampling
    eta: (N,) or (N, 2) ndarray
        eta for each particle
    wgts: `resampling.Weights` object
        weights of the particles
    A: (N,) int ndarray
        ancestor indices drawn by resampling (the resampled cloud is X[A])
    ll: float
        log-likelihood estimate of the observations up to time t
    ess: int
        effective sample size, before resampling
    step: int
        index of the step (0 for the first observation)
    """

    __slots__ = ()

    def resampled(self):
        return tr.tree_map(lambda x: x[self.A], self.X)


def _concat_clouds(clouds):
    return functools.reduce(
        lambda a, b: tr.tree_zip(lambda u, v: np.concatenate((u, v)), a, b),
        clouds)


class ParticleFilter:
    """Bootstrap particle filter.

    Parameters
    ----------
    model: Model object
        the model (see module `models`)
    params: Tree
        parameters of the model (see module `parameters`)
    data: list of `simulate.Data` objects (or None)
        observations, in time order; if None, the filter is fed manually
        through method `step`
    N: int (default=100)
        number of particles
    resampling: str (default='systematic')
        resampling scheme, see module `resampling`
    t0: float (default: time of the first observation)
        time at which the initial particles are drawn
    n_jobs: int (default=1)
        number of threads for moving and weighting the particles
    rng: numpy Generator, int or None
        source of randomness
    verbose: bool (default=False)
        whether to print basic info at every step
    interval: float (default=0.95)
        probability of the credible intervals computed by `output`

    Attributes
    ----------
    X: Tree
        current (resampled) particles
    ll: float
        current estimate of the log-likelihood
    state: PfState object
        state after the last step (None before the first step)
    status: str
        'initialized', 'stepped' or 'terminated'
    cpu_time: float
        CPU time of the last call to `run`
    """

    def __init__(self, model=None, params=None, data=None, N=100,
                 resampling='systematic', t0=None, n_jobs=1, rng=None,
                 verbose=False, interval=0.95):
        if not isinstance(N, (int, np.integer)) or N < 1:
            raise ValueError('N must be a positive integer, got %r' % (N,))
        if resampling not in rs.rs_funcs:
            raise ValueError('%s: not a valid resampling scheme' % resampling)
        if not 0. < interval < 1.:
            raise ValueError('interval must be in (0, 1), got %r' % interval)
        prm.check_shape(model, params)
        self.model = model
        self.params = params
        self.N = N
        self.resampling = resampling
        self.n_jobs = n_jobs
        self.rng = np.random.default_rng(rng)
        self.verbose = verbose
        self.interval = interval
        self.sde = model.sde(params)
        self.data = iter(()) if data is None else iter(data)

        # initialisation
        self.t = t0
        self.k = 0
        self.ll = 0.
        self.X = model.initial_state(params).rvs(size=N, rng=self.rng)
        self.state = None
        self.status = 'initialized'

    def __str__(self):
        return self.summary_format()

    def summary_format(self):
        if self.state is None:
            return 'step=0: initialized, N=%i' % self.N
        return 'step=%i: t=%g, ESS=%i, loglik=%.2f' % (
            self.state.step, self.state.t, self.state.ess, self.state.ll)

    def move_and_eta(self, X, dt, t, rng):
        """Move a chunk of particles over dt, and compute their eta at t."""
        if dt > 0.:
            X = self.sde.step(dt, X).rvs(rng=rng)
        return X, self.model.eta(X, t)

    def chunks(self, X):
        n = max(1, min(utils.n_workers(self.n_jobs), self.N))
        bounds = np.linspace(0, self.N, n + 1).astype(int)
        seeds = utils.distinct_seeds(n, rng=self.rng)
        return [(tr.tree_map(lambda x: x[a:b], X), np.random.default_rng(s))
                for a, b, s in zip(bounds[:-1], bounds[1:], seeds)]

    def advance(self, dt, t):
        """Move all the particles over dt, and compute eta at time t."""
        if self.n_jobs == 1:
            return self.move_and_eta(self.X, dt, t, self.rng)
        f = lambda X, rng: self.move_and_eta(X, dt, t, rng)
        chunks = self.chunks(self.X)
        out = utils.thread_map(f, chunks, n_jobs=len(chunks))
        X = _concat_clouds([o[0] for o in out])
        eta = np.concatenate([np.asarray(o[1], dtype=float) for o in out])
        return X, eta

    def log_weights(self, eta, y):
        return self.model.log_likelihood(self.params, eta, y.observation)

    def step(self, y):
        """Process observation y (a `simulate.Data` object).

        Returns
        -------
        PfState object
        """
        if self.t is None:
            self.t = y.t
        dt = y.t - self.t
        if dt < 0.:
            raise ValueError('observations must be in time order (t=%g '
                             'comes after t=%g)' % (y.t, self.t))
        X, eta = self.advance(dt, y.t)
        lw = np.broadcast_to(np.asarray(self.log_weights(eta, y), dtype=float),
                             (self.N,))
        m = np.max(lw)
        if not np.isfinite(m):
            raise NumericalDegeneracy('invalid log-weights (maximum is %s)' % m,
                                      t=y.t, step=self.k)
        wgts = rs.Weights(lw=lw)
        self.ll += wgts.log_mean
        A = rs.resampling(self.resampling, wgts.W, rng=self.rng)
        self.X = tr.tree_map(lambda x: x[A], X)
        self.state = PfState(t=y.t, observation=y.observation, X=X, eta=eta,
                             wgts=wgts, A=A, ll=self.ll,
                             ess=int(np.floor(wgts.ESS)), step=self.k)
        self.t = y.t
        self.k += 1
        self.status = 'stepped'
        if self.verbose:
            print(self)
        return self.state

    def eta_summary(self, eta):
        """Scalar summary of eta used in the output (one value per particle).
        """
        return np.asarray(eta, dtype=float)

    def output(self, state=None):
        """Summary of a PfState (by default, the current one).

        Returns
        -------
        `summaries.PfOut` object
        """
        st = self.state if state is None else state
        if st is None:
            raise ValueError('output: the filter has not processed any '
                             'observation yet')
        p = 0.5 * (1. + self.interval)
        eta = self.eta_summary(st.eta)
        return sm.PfOut(t=st.t, observation=st.observation,
                        eta=np.average(eta, weights=st.wgts.W),
                        eta_interval=sm.order_statistic(eta[st.A], p),
                        state=sm.weighted_mean(st.X, st.wgts.W),
                        state_intervals=sm.credible_intervals(st.resampled(),
                                                              p),
                        ess=st.ess, log_likelihood=st.ll)

    def __next__(self):
        """One step of the particle filter (one observation)."""
        try:
            y = next(self.data)
        except StopIteration:
            self.status = 'terminated'
            raise
        return self.step(y)

    def __iter__(self):
        return self

    @utils.timer
    def run(self):
        """Run the filter until all the observations have been processed.

        Returns
        -------
        float
            the log-likelihood estimate
        """
        for _ in self:
            pass
        return self.ll


class LgcpFilter(ParticleFilter):
    """Particle filter for log-Gaussian Cox processes.

    Between two observations, the particles are moved on a fine grid of step
    delta = 10^-precision, and the integrated intensity is approximated by
    the sum of exp(f(x_s, s)) * delta over the grid points s. Eta is then an
    array of shape (N, 2): the log-intensity at the time of the observation,
    and the integrated intensity since the previous observation, as required
    by `models.LogGaussianCox`.

    Parameters
    ----------
    precision: int (default=2)
        see above
    **kwargs:
        see `ParticleFilter`
    """

    def __init__(self, precision=2, **kwargs):
        self.precision = precision
        super().__init__(**kwargs)

    def move_and_eta(self, X, dt, t, rng):
        delta = 10. ** (-self.precision)
        n = int(np.floor(dt / delta + 1e-9))
        s = t - dt
        integ = 0.
        for _ in range(n):
            X = self.sde.step(delta, X).rvs(rng=rng)
            s += delta
            integ = integ + np.exp(self.model.f(X, s)) * delta
        rest = t - s
        if rest > 1e-12:
            X = self.sde.step(rest, X).rvs(rng=rng)
            integ = integ + np.exp(self.model.f(X, t)) * rest
        log_hazard = self.model.f(X, t)
        integ = np.broadcast_to(integ, np.shape(log_hazard))
        return X, np.stack((log_hazard, integ), axis=-1)

    def eta_summary(self, eta):
        return np.asarray(eta, dtype=float)[..., 0]


###############################
# front-ends
###############################


def log_likelihood(model, data, N=100, resampling='systematic', t0=None,
                   n_jobs=1, rng=None, filter_cls=ParticleFilter, **kwargs):
    """Log-likelihood estimator, as a function of the parameters.

    Returns
    -------
    function
        maps a parameter tree to an estimate of the log-likelihood; each call
        runs an independent particle filter (the random generator is shared
        between calls)

    Example
    -------
    ::

        ll = log_likelihood(mod, data, N=500, rng=42)
        ll(params)
    """
    rng = np.random.default_rng(rng)

    def loglik(params):
        pf = filter_cls(model=model, params=params, data=data, N=N,
                        resampling=resampling, t0=t0, n_jobs=n_jobs, rng=rng,
                        **kwargs)
        return pf.run()

    return loglik


def ll_filter(model, params, data, N=100, rng=None, **kwargs):
    """Estimate of the log-likelihood at params (one run of the filter)."""
    return log_likelihood(model, data, N=N, rng=rng, **kwargs)(params)


def filter_with_intervals(model, params, data, N=100, interval=0.95,
                          rng=None, filter_cls=ParticleFilter, **kwargs):
    """Filter the data, and summarise the output at each observation time.

    Returns
    -------
    list of `summaries.PfOut` objects, in time order
    """
    pf = filter_cls(model=model, params=params, data=data, N=N,
                    interval=interval, rng=rng, **kwargs)
    return [pf.output(st) for st in pf]


def online_filter(model, params, observations, N=100, t0=None,
                  interval=0.95, rng=None, filter_cls=ParticleFilter,
                  **kwargs):
    """Generator that filters observations as they arrive.

    Parameters
    ----------
    observations: iterable of `simulate.Data` objects
        may be a (possibly unbounded) generator

    Yields
    ------
    `summaries.PfOut` object, one per observation

    Note
    ----
    No history is kept; closing the generator stops the filter.
    """
    pf = filter_cls(model=model, params=params, data=None, N=N, t0=t0,
                    interval=interval, rng=rng, **kwargs)
    for y in observations:
        pf.step(y)
        yield pf.output()


class _picklable_f:

    def __init__(self, fun):
        self.fun = fun

    def __call__(self, filter_cls=ParticleFilter, **kwargs):
        pf = filter_cls(**kwargs)
        pf.run()
        return self.fun(pf)


@_picklable_f
def _identity(x):
    return x


def multi_filter(model=None, params=None, data=None, nruns=10, nprocs=0,
                 out_func=None, rng=None, **args):
    """Run a particle filter several times, in parallel, for different
    combinations of options.

    Relies on `utils.multiplexer`: arguments that are lists (e.g.
    ``N=[100, 1000]``) are expanded, each run receives a distinct seed.
    The data are never expanded.

    Parameters
    ----------
    nruns: int
        number of runs for each combination of options
    nprocs: int
        number of processes (0: all cores)
    out_func: callable
        function of the filter object that is stored as the output of a run
        (default: the filter object itself)
    rng: numpy Generator, int or None
        used to generate the seeds of the runs
    **args:
        options of `ParticleFilter`

    Returns
    -------
    list of dicts, with keys 'run', 'seed', 'output' and the expanded options

    Example
    -------
    ::

        results = multi_filter(model=mod, params=params, data=data,
                               N=[100, 1000], nruns=20,
                               out_func=lambda pf: pf.ll)
    """
    f = _identity if out_func is None else _picklable_f(out_func)
    return utils.multiplexer(f=f, nruns=nruns, nprocs=nprocs, seeding=True,
                             protected_args={'model': model,
                                             'params': params,
                                             'data': data},
                             rng=rng, **args)

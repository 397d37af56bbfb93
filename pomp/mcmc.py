"""
Particle marginal Metropolis-Hastings (PMMH).

Overview
========

PMMH is a Metropolis sampler where the intractable likelihood of the model is
replaced by an estimate obtained from a particle filter (see module
`filtering`). Since this estimate is unbiased (on the natural scale), the
chain targets the exact posterior distribution of the parameters, provided
that the estimate at the current point is *never* recomputed; this is why
each state of the chain stores its log-likelihood estimate::

    from pomp import filtering, mcmc

    ll = filtering.log_likelihood(mod, data, N=200, rng=1)
    sampler = mcmc.PMMH(loglik=ll, initial_params=params,
                        proposal=mcmc.perturb(0.05), seed=2)
    chain = sampler.run(1000)  # a list of MetropState objects

A `PMMH` object is also an (unbounded) iterator; each call to ``next``
performs one iteration, so that e.g. ``itertools.islice(sampler, 100)``
returns the first 100 states of the chain.

Proposals
=========

A proposal is a function that maps the current parameters to a distribution
(an object with a method ``rvs(rng)``) over the parameters. Random walks on
the flattened parameters (see module `parameters`) are provided:

* `perturb(delta)`: independent Gaussian increments, standard deviation delta;
* `perturb_mvn(chol)`: Gaussian increments, covariance chol * chol^T;
* `perturb_mvn_eigen(cov, scale)`: Gaussian increments, covariance
  scale^2 * cov, through the eigen-decomposition of cov;
* `propose_identity`: the proposal that does not move (for testing).

`rw_chol` computes a covariance for the random walk from the output of a
previous (pilot) chain.

Number of particles
===================

The variance of the log-likelihood estimate should be about one at a central
value of the parameters. `pilot_run` estimates this variance for several
numbers of particles, and `choose_particles` picks the smallest one that
meets a target.

"""

import collections
import itertools

import numpy as np
from scipy.linalg import LinAlgError, cholesky

from pomp import filtering
from pomp import parameters as prm
from pomp import utils


def msjd(samples):
    """Mean squared jumping distance.

    Parameters
    ----------
    samples: list of parameter trees

    Returns
    -------
    float
    """
    x = prm.as_matrix(samples)
    return np.sum(np.diff(x, axis=0) ** 2) / max(1, x.shape[0] - 1)


class MetropState(collections.namedtuple('MetropState', [
        'params', 'll', 'iteration', 'accepted'])):
    """State of a PMMH chain.

    Attributes
    ----------
    params: Tree
        current parameters
    ll: float
        log-likelihood estimate at params (computed when params was proposed)
    iteration: int
    accepted: bool
        whether params was accepted at this iteration
    """

    __slots__ = ()


###############################
# proposals
###############################


class RandomWalk:
    """Gaussian random walk centred at params (see `parameters.perturb`)."""

    def __init__(self, params, delta):
        self.params = params
        self.delta = delta

    def rvs(self, rng=None):
        return prm.perturb(self.params, self.delta, rng=rng)


class MvnRandomWalk:
    """Gaussian random walk with covariance chol * chol^T."""

    def __init__(self, params, chol):
        self.params = params
        self.chol = chol

    def rvs(self, rng=None):
        return prm.perturb_mvn(self.params, self.chol, rng=rng)


class EigenRandomWalk:
    """Gaussian random walk, covariance given by its eigen-decomposition."""

    def __init__(self, params, eigvals, eigvecs, scale=1.):
        self.params = params
        self.eigvals = eigvals
        self.eigvecs = eigvecs
        self.scale = scale

    def rvs(self, rng=None):
        return prm.perturb_mvn_eigen(self.params, self.eigvals, self.eigvecs,
                                     scale=self.scale, rng=rng)


class PointMass:
    """Distribution that always returns params."""

    def __init__(self, params):
        self.params = params

    def rvs(self, rng=None):
        return self.params


def perturb(delta):
    """Proposal: independent N(0, delta^2) increments on every parameter."""
    return lambda params: RandomWalk(params, delta)


def perturb_mvn(chol):
    """Proposal: N(0, chol chol^T) increment on the flattened parameters."""
    chol = np.atleast_2d(chol)
    return lambda params: MvnRandomWalk(params, chol)


def perturb_mvn_eigen(cov, scale=1.):
    """Proposal: N(0, scale^2 cov) increment on the flattened parameters.

    Unlike the Cholesky factorisation, the eigen-decomposition also works
    for a singular (e.g. estimated) covariance matrix.
    """
    eigvals, eigvecs = np.linalg.eigh(np.atleast_2d(cov))
    return lambda params: EigenRandomWalk(params, eigvals, eigvecs,
                                          scale=scale)


def propose_identity(params):
    return PointMass(params)


def rw_chol(samples, scale=1.):
    """Cholesky factor of a random walk covariance, from previous samples.

    The covariance is scale^2 * (2.38^2 / d) times the empirical covariance
    of the samples (the optimal scaling for Gaussian targets). If the
    empirical covariance is singular, its diagonal is used instead.

    Parameters
    ----------
    samples: list of parameter trees
        e.g. the output of a pilot chain
    scale: float
    """
    cov = prm.covariance(samples)
    d = cov.shape[0]
    optim_scale = scale * 2.38 / np.sqrt(d)
    try:
        L = cholesky(cov, lower=True)
    except LinAlgError:
        L = np.diag(np.sqrt(np.maximum(np.diag(cov), 0.)))
    return optim_scale * L


###############################
# PMMH
###############################


def flat_prior(params):
    return 0.


class PMMH:
    """Particle marginal Metropolis-Hastings.

    Parameters
    ----------
    loglik: callable
        maps parameters to an (unbiased) estimate of the log-likelihood, such
        as the output of `filtering.log_likelihood`
    initial_params: Tree
        starting point of the chain
    proposal: callable
        maps parameters to a distribution over parameters, see e.g. `perturb`
    prior: callable (default: flat prior)
        log-density of the prior
    seed: int, numpy Generator or None
        source of randomness of the proposals and acceptance steps
    verbose: int (default=0)
        print some info every `verbose` iterations (never if 0)

    Attributes
    ----------
    state: MetropState object
        current state of the chain (None before the first iteration)
    nacc: int
        number of accepted proposals
    chain: list of MetropState objects
        output of the last call to `run`
    cpu_time: float
        CPU time of the last call to `run`
    """

    def __init__(self, loglik=None, initial_params=None, proposal=None,
                 prior=None, seed=None, verbose=0):
        if loglik is None or proposal is None:
            raise ValueError('PMMH: loglik and proposal are required')
        self.loglik = loglik
        self.initial_params = initial_params
        self.proposal = proposal
        self.prior = flat_prior if prior is None else prior
        self.rng = np.random.default_rng(seed)
        self.verbose = verbose
        self.state = None
        self.nacc = 0
        self.chain = []

    def step0(self):
        lp = self.prior(self.initial_params)
        if not np.isfinite(lp):
            raise ValueError('PMMH: the prior density is zero at the initial '
                             'parameters')
        return MetropState(params=self.initial_params,
                           ll=self.loglik(self.initial_params), iteration=0,
                           accepted=True)

    def acceptance_log_ratio(self, state, params, ll):
        """Log of the Metropolis-Hastings ratio, for proposed params with
        log-likelihood estimate ll."""
        return (ll + self.prior(params)) - (state.ll + self.prior(state.params))

    def step(self, state):
        """One iteration of PMMH, from state.

        The particle filter is not run when the prior density is zero at the
        proposed point (the proposal is then rejected).
        """
        prop = self.proposal(state.params).rvs(rng=self.rng)
        if np.isfinite(self.prior(prop)):
            ll = self.loglik(prop)
            lp_acc = self.acceptance_log_ratio(state, prop, ll)
            if np.log(self.rng.uniform()) < lp_acc:  # accept
                self.nacc += 1
                return MetropState(params=prop, ll=ll,
                                   iteration=state.iteration + 1,
                                   accepted=True)
        return MetropState(params=state.params, ll=state.ll,
                           iteration=state.iteration + 1, accepted=False)

    def __next__(self):
        if self.state is None:
            self.state = self.step0()
        else:
            self.state = self.step(self.state)
        n = self.state.iteration
        if self.verbose > 0 and n % self.verbose == 0:
            self.print_progress(self.state)
        return self.state

    def __iter__(self):
        return self

    @property
    def acc_rate(self):
        n = 0 if self.state is None else self.state.iteration
        return self.nacc / n if n > 0 else 0.

    def print_progress(self, state):
        msg = 'Iteration %i' % state.iteration
        if state.iteration > 0:
            msg += ', acc. rate=%.3f' % self.acc_rate
        msg += ', loglik=%.3f' % state.ll
        for name, v in zip(prm.names(state.params),
                           prm.flatten(state.params)):
            msg += ', %s=%.3f' % (name, v)
        print(msg)

    def mean_sq_jump_dist(self, discard_frac=0.1):
        """Mean squared jumping distance estimated from the chain.

        Parameters
        ----------
        discard_frac: float
            fraction of iterations to discard at the beginning (as a burn-in)

        Returns
        -------
        float
        """
        discard = int(len(self.chain) * discard_frac)
        return msjd([s.params for s in self.chain[discard:]])

    @utils.timer
    def run(self, niter):
        """Run niter iterations (continuing from the current state, if any).

        Returns
        -------
        list of MetropState objects
        """
        self.chain = list(itertools.islice(self, niter))
        return self.chain


###############################
# parallel chains and pilot runs
###############################


def pmmh_chain(model=None, data=None, initial_params=None, proposal=None,
               niter=100, N=100, prior=None, rng=None, verbose=0,
               **filter_opts):
    """Run one PMMH chain, whose likelihood estimates come from a particle
    filter with N particles.

    Returns
    -------
    list of MetropState objects
    """
    rng = np.random.default_rng(rng)
    loglik = filtering.log_likelihood(model, data, N=N, rng=rng,
                                      **filter_opts)
    sampler = PMMH(loglik=loglik, initial_params=initial_params,
                   proposal=proposal, prior=prior, seed=rng, verbose=verbose)
    return sampler.run(niter)


def pmmh_chains(model=None, data=None, initial_params=None, proposal=None,
                niter=100, N=100, prior=None, nchains=4, nprocs=0, seed=None,
                **filter_opts):
    """Run independent PMMH chains in parallel.

    Each chain has its own random generator (the seeds are distinct) and its
    own particle filter.

    Returns
    -------
    list of nchains lists of MetropState objects
    """
    results = utils.multiplexer(f=pmmh_chain, nruns=nchains, nprocs=nprocs,
                                seeding=True,
                                protected_args={'model': model, 'data': data,
                                                'initial_params':
                                                    initial_params,
                                                'proposal': proposal,
                                                'prior': prior},
                                rng=seed, niter=niter, N=N, **filter_opts)
    return [r['output'] for r in results]


def pilot_run(model=None, params=None, data=None, particles=(100, 200, 500,
                                                             1000),
              nruns=20, nprocs=0, seed=None, **filter_opts):
    """Variance of the log-likelihood estimate, for several numbers of
    particles.

    Parameters
    ----------
    model, params, data:
        see `filtering.ParticleFilter`
    particles: sequence of int
        numbers of particles to try
    nruns: int
        number of runs of the filter for each number of particles
    nprocs: int
        number of processes (0: all cores)
    seed: int, numpy Generator or None
        used to generate the seeds of the runs

    Returns
    -------
    list of (N, variance) tuples, in the order of `particles`
    """
    results = filtering.multi_filter(model=model, params=params, data=data,
                                     N=list(particles), nruns=nruns,
                                     nprocs=nprocs, out_func=_ll_of,
                                     rng=seed, **filter_opts)
    out = []
    for N in particles:
        lls = [r['output'] for r in results if r['N'] == N]
        out.append((N, np.var(lls, ddof=1)))
    return out


def _ll_of(pf):
    return pf.ll


def choose_particles(results, target=1.):
    """Smallest number of particles whose log-likelihood variance is at most
    target (the largest number tried if there is none).

    Parameters
    ----------
    results: list of (N, variance) tuples
        output of `pilot_run`
    target: float (default=1.)
    """
    if not results:
        raise ValueError('choose_particles: no results')
    ok = [N for N, v in results if v <= target]
    return min(ok) if ok else max(N for N, _ in results)

"""
Summaries of particle clouds: means, credible intervals, filter output.

Credible intervals are computed from order statistics: for probability p and
N sorted values x_(0) <= ... <= x_(N-1), the interval is::

    [x_(N - floor(N p)), x_(floor(N p))]

(ranks are clipped to the valid range 0, ..., N-1). For instance, p=0.975
and N=1000 gives [x_(25), x_(975)], i.e. an equal-tailed interval of
probability 2p - 1 = 0.95. Intervals are computed independently for each
scalar component of the state.

"""

import collections

import numpy as np

from pomp import tree as tr


class CredibleInterval(collections.namedtuple('CredibleInterval',
                                              ['lower', 'upper'])):
    __slots__ = ()

    def __str__(self):
        return '%s, %s' % (self.lower, self.upper)


def _ranks(N, p):
    k = int(np.floor(N * p))
    return min(max(N - k, 0), N - 1), min(max(k, 0), N - 1)


def order_statistic(samples, p):
    """Credible interval from the order statistics of samples.

    Parameters
    ----------
    samples: (N,) array-like
    p: float (in (0.5, 1))
        upper probability, e.g. 0.975

    Returns
    -------
    CredibleInterval
    """
    x = np.sort(np.asarray(samples, dtype=float))
    lo, hi = _ranks(x.shape[0], p)
    return CredibleInterval(x[lo], x[hi])


def credible_intervals(X, p):
    """Credible intervals of each scalar component of a particle cloud.

    Parameters
    ----------
    X: Tree
        particles (leaves of shape (N, d))
    p: float
        upper probability

    Returns
    -------
    list of CredibleInterval objects, in the same order as `tree.flatten`
    """
    x = np.sort(tr.concat(X), axis=0)
    lo, hi = _ranks(x.shape[0], p)
    return [CredibleInterval(a, b) for a, b in zip(x[lo], x[hi])]


def weighted_mean(X, W=None):
    """Weighted mean of a particle cloud (a tree with the shape of a single
    state)."""
    return tr.tree_map(lambda x: np.average(x, weights=W, axis=0), X)


class PfOut(collections.namedtuple('PfOut', [
        't', 'observation', 'eta', 'eta_interval', 'state',
        'state_intervals', 'ess', 'log_likelihood'])):
    """Output of the particle filter at one observation time.

    Attributes
    ----------
    t: float
    observation: observation at time t (None if there is none)
    eta: float
        mean of eta
    eta_interval: CredibleInterval
    state: Tree
        mean of the filtering distribution
    state_intervals: list of CredibleInterval
        one per scalar component of the state
    ess: int
        effective sample size, before resampling
    log_likelihood: float
        log-likelihood estimate of the data up to time t
    """

    __slots__ = ()

    def row(self):
        """List of scalars; an observation equal to None is rendered as 'NA'.
        """
        out = [self.t, 'NA' if self.observation is None else self.observation,
               self.eta, self.eta_interval.lower, self.eta_interval.upper]
        out.extend(tr.flatten(self.state))
        for ci in self.state_intervals:
            out.extend([ci.lower, ci.upper])
        out.extend([self.ess, self.log_likelihood])
        return out

    def __str__(self):
        return ', '.join(str(v) for v in self.row())

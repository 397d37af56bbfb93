"""
Resampling and related numerical algorithms.

Overview
========

This module implements resampling schemes, plus some basic numerical
functions related to weights and weighted data (ESS, weighted mean, etc).
The recommended import is::

    from pomp import resampling as rs

Resampling schemes
==================

All the resampling schemes are implemented as functions with the following
signature::

    A = rs.scheme(W, M=None, rng=None)

where:

  * ``W`` is a vector of N normalised weights (i.e. positive and summing to
    one).

  * ``M`` (int) is the number of resampled indices that must be generated;
    (optional, set to N if not provided).

  * ``rng`` is a source of randomness (a `numpy.random.Generator`, a seed, or
    None), see `numpy.random.default_rng`.

  * ``A`` is a ndarray containing the M resampled indices
    (i.e. ints in the range 0, ..., N-1).

Here the list of currently implemented resampling schemes:

* `multinomial`
* `residual`
* `stratified`
* `systematic`
* `tree_stratified`
* `tree_systematic`
* `parallel_systematic`

The default scheme of the particle filter is systematic.

All schemes that invert the empirical CDF of the weights follow the same
rule: a uniform u is mapped to the *first* index n such that
W[0] + ... + W[n] > u (strict inequality). In particular, a particle with
zero weight is never selected. The `tree_*` schemes compute the CDF through
a balanced binary reduction (`blelloch_cumsum`) and invert it through binary
search; they generate the same distribution as their sequential
counterparts.

Every scheme checks that the weights are valid: if their sum is zero, NaN or
infinite, `NumericalDegeneracy` is raised. Degenerate weights are a fatal
error; they are never silently replaced by uniform weights.

To resample a cloud of particles stored as a tree (see module `tree`), use::

    X = rs.resample('systematic', X, W, rng)

Weights objects
===============

Objects of class `Weights` store N log-weights, and automatically compute:

* `W`: the N normalised weights (sum equals one)
* `ESS`: the effective sample size (1/sum(W^2))
* `log_mean`: the log of the mean of the un-normalised weights

For instance::

    wgts = rs.Weights(lw=rng.standard_normal(10))
    print(wgts.W)  # the normalised weights have been computed automatically
    print(wgts.ESS)  # and so the ESS

Other functions of interest
===========================

Importance weights and similar quantities are always computed and stored on
the log-scale, to avoid numerical overflow. This module also contains a few
basic functions to deal with log-weights:

* `essl`
* `exp_and_normalise`
* `log_mean_exp`
* `log_sum_exp`
* `wmean_and_var`

"""

import functools

import joblib
import numpy as np
from numba import jit

from pomp import tree as tr
from pomp.errors import NumericalDegeneracy


def exp_and_normalise(lw):
    """Exponentiate, then normalise (so that sum equals one).

    Arguments
    ---------
    lw: ndarray
        log weights.

    Returns
    -------
    W: ndarray of the same shape as lw
        W = exp(lw) / sum(exp(lw))

    Note
    ----
    uses the log_sum_exp trick to avoid overflow (i.e. subtract the max
    before exponentiating)

    See also
    --------
    log_sum_exp
    log_mean_exp

    """
    w = np.exp(lw - lw.max())
    return w / w.sum()


def essl(lw):
    """ESS (Effective sample size) computed from log-weights.

    Parameters
    ----------
    lw: (N,) ndarray
        log-weights

    Returns
    -------
    float
        the ESS of weights w = exp(lw), i.e. the quantity
        sum(w**2) / (sum(w))**2

    Note
    ----
    The ESS is a popular criterion to determine how *uneven* are the weights.
    Its value is in the range [1, N], it equals N when weights are constant,
    and 1 if all weights but one are zero.

    """
    w = np.exp(lw - lw.max())
    return (w.sum()) ** 2 / np.sum(w ** 2)


class Weights:
    """ A class to store N log-weights, and automatically compute normalised
    weights, their ESS, and the log of their mean.

    Parameters
    ----------
    lw: (N,) array or None
        log-weights (if None, object represents a set of equal weights)

    Attributes
    ----------
    lw: (N), array
        log-weights (un-normalised)
    W: (N,) array
        normalised weights
    ESS: scalar
        the ESS (effective sample size) of the weights
    log_mean: scalar
        log of the mean of exp(lw), computed with the log-sum-exp trick

    Raises
    ------
    NumericalDegeneracy
        if the largest log-weight is not finite (all weights are zero, or
        some are +inf)

    Warning
    -------
    Objects of this class should be considered as immutable; in particular,
    method add returns a *new* object.

    """

    def __init__(self, lw=None):
        self.lw = lw
        if lw is not None:
            self.lw = np.where(np.isnan(lw), -np.inf, lw)
            m = self.lw.max()
            if not np.isfinite(m):
                raise NumericalDegeneracy('log-weights have a non-finite '
                                          'maximum (%s)' % m)
            w = np.exp(self.lw - m)
            s = w.sum()
            self.log_mean = m + np.log(s / self.N)
            self.W = w / s
            self.ESS = 1.0 / np.sum(self.W ** 2)

    @property
    def N(self):
        return 0 if self.lw is None else self.lw.shape[0]


def log_sum_exp(v):
    """Log of the sum of the exp of the arguments.

    Parameters
    ----------
    v: ndarray

    Returns
    -------
    l: float
        l = log(sum(exp(v)))

    Note
    ----
    use the log_sum_exp trick to avoid overflow: i.e. we remove the max of v
    before exponentiating, then we add it back

    See also
    --------
    log_mean_exp

    """
    m = v.max()
    return m + np.log(np.sum(np.exp(v - m)))


def log_mean_exp(v, W=None):
    """Returns log of (weighted) mean of exp(v).

    Parameters
    ----------
    v: ndarray
        data, should be such that v.shape[0] = N

    W: (N,) ndarray, optional
         normalised weights (>=0, sum to one)

    Returns
    -------
    ndarray
        mean (or weighted mean, if W is provided) of vector exp(v)

    See also
    --------
    log_sum_exp

    """
    m = v.max()
    V = np.exp(v - m)
    if W is None:
        return m + np.log(np.mean(V))
    else:
        return m + np.log(np.average(V, weights=W))


def wmean_and_var(W, x):
    """Component-wise weighted mean and variance.

    Parameters
    ----------
    W: (N,) ndarray
        normalised weights (must be >=0 and sum to one).
    x: ndarray (such that shape[0]==N)
        data

    Returns
    -------
    dictionary
        {'mean':weighted_means, 'var':weighted_variances}
    """
    m = np.average(x, weights=W, axis=0)
    m2 = np.average(x ** 2, weights=W, axis=0)
    v = m2 - m ** 2
    return {"mean": m, "var": v}


def check_weights(W):
    """Check that W may be used for resampling, and normalise it.

    Raises
    ------
    NumericalDegeneracy
        if some weights are negative or NaN, or if their sum is zero or
        infinite
    """
    W = np.asarray(W, dtype=float)
    s = W.sum()
    if not np.isfinite(s) or s <= 0.:
        raise NumericalDegeneracy('invalid sum of weights (%s)' % s)
    if np.any(W < 0.):
        raise NumericalDegeneracy('negative weights')
    return W / s


####################
# Resampling schemes
####################

rs_funcs = {}  # populated by the decorator below

# generic docstring of resampling schemes; assigned by decorator below
rs_doc = """\

    Parameters
    ----------
    W: (N,) ndarray
     normalized weights (>=0, sum to one)
    M: int, optional (set to N if missing)
     number of resampled points.
    rng: numpy Generator, int or None
     source of randomness

    Returns
    -------
    (M,) ndarray
     M ancestor variables, drawn from range 0, ..., N-1
"""


def resampling_scheme(func):
    """Decorator for resampling schemes."""

    @functools.wraps(func)
    def modif_func(W, M=None, rng=None):
        W = check_weights(W)
        M = W.shape[0] if M is None else M
        return func(W, M, np.random.default_rng(rng))

    rs_funcs[func.__name__] = modif_func
    modif_func.__doc__ = func.__doc__ + rs_doc
    return modif_func


def resampling(scheme, W, M=None, rng=None):
    try:
        func = rs_funcs[scheme]
    except KeyError:
        raise ValueError("%s: not a valid resampling scheme" % scheme)
    return func(W, M=M, rng=rng)


def resample(scheme, X, W, rng=None):
    """Resample a cloud of particles.

    Parameters
    ----------
    scheme: str
        name of the resampling scheme (a key of `rs_funcs`)
    X: Tree
        particles; each leaf is an array such that shape[0] == N
    W: (N,) ndarray
        normalised weights
    rng: numpy Generator, int or None

    Returns
    -------
    Tree
        the resampled particles (same shape as X, unweighted)
    """
    A = resampling(scheme, W, rng=rng)
    return tr.tree_map(lambda x: x[A], X)


@jit(nopython=True)
def inverse_cdf(su, W):
    """Inverse CDF algorithm for a finite distribution.

    Parameters
    ----------
    su: (M,) ndarray
        M sorted uniform variates (i.e. M ordered points in [0,1]).
    W: (N,) ndarray
        a vector of N normalized weights (>=0 and sum to one)

    Returns
    -------
    A: (M,) ndarray
        a vector of M indices in range 0, ..., N-1; A[m] is the first index
        such that W[0] + ... + W[A[m]] > su[m]
    """
    j = 0
    s = W[0]
    M = su.shape[0]
    last = W.shape[0] - 1
    while last > 0 and W[last] <= 0.:
        last -= 1
    A = np.empty(M, dtype=np.int64)
    for n in range(M):
        # round-off may leave W[0] + ... + W[last] < su[n]
        while su[n] >= s and j < last:
            j += 1
            s += W[j]
        A[n] = j
    return A


def uniform_spacings(N, rng=None):
    """Generate ordered uniform variates in O(N) time.

    Parameters
    ----------
    N: int (>0)
        the expected number of uniform variates
    rng: numpy Generator, int or None

    Returns
    -------
    (N,) float ndarray
        the N ordered variates (ascending order)

    Note
    ----
    This is equivalent to::

        u = np.sort(rng.uniform(size=N))

    but the line above has complexity O(N*log(N)), whereas the algorithm
    used here has complexity O(N).

    """
    rng = np.random.default_rng(rng)
    z = np.cumsum(-np.log(rng.uniform(size=N + 1)))
    return z[:-1] / z[-1]


def blelloch_cumsum(W):
    """Inclusive prefix sum computed by a balanced binary reduction.

    The up-sweep builds partial sums over a binary tree of depth log2(N),
    the down-sweep propagates them back to the leaves. Each level is a
    single vectorised operation, so the depth of the computation is
    logarithmic in N.

    Parameters
    ----------
    W: (N,) ndarray

    Returns
    -------
    (N,) ndarray
        same as np.cumsum(W), up to round-off error
    """
    N = W.shape[0]
    P = 1
    while P < N:
        P *= 2
    a = np.zeros(P)
    a[:N] = W
    # up-sweep
    d = 1
    while d < P:
        a[2 * d - 1::2 * d] += a[d - 1::2 * d]
        d *= 2
    total = a[-1]
    # down-sweep (exclusive scan)
    a[-1] = 0.
    d = P // 2
    while d >= 1:
        left = a[d - 1::2 * d].copy()
        a[d - 1::2 * d] = a[2 * d - 1::2 * d]
        a[2 * d - 1::2 * d] += left
        d //= 2
    incl = np.empty(P)
    incl[:-1] = a[1:]
    incl[-1] = total
    return incl[:N]


def _last_positive(W):
    return np.flatnonzero(W > 0.)[-1]


def _tree_inverse_cdf(su, W):
    cdf = blelloch_cumsum(W)
    A = np.searchsorted(cdf, su, side='right')
    return np.minimum(A, _last_positive(W))


@resampling_scheme
def multinomial(W, M, rng):
    """Multinomial resampling.

    Popular resampling scheme, which amounts to sample N independently from
    the multinomial distribution that generates n with probability W^n.

    This resampling scheme is *not* recommended for various reasons; basically
    schemes like stratified / systematic tends to introduce less noise,
    and may be faster too (in particular systematic).
    """
    return inverse_cdf(uniform_spacings(M, rng), W)


@resampling_scheme
def stratified(W, M, rng):
    """Stratified resampling."""
    su = (rng.uniform(size=M) + np.arange(M)) / M
    return inverse_cdf(su, W)


@resampling_scheme
def systematic(W, M, rng):
    """Systematic resampling."""
    su = (rng.uniform(size=1) + np.arange(M)) / M
    return inverse_cdf(su, W)


@resampling_scheme
def residual(W, M, rng):
    """Residual resampling."""
    N = W.shape[0]
    A = np.empty(M, dtype=np.int64)
    MW = M * W
    intpart = np.floor(MW).astype(np.int64)
    sip = np.sum(intpart)
    res = MW - intpart
    sres = M - sip
    A[:sip] = np.arange(N).repeat(intpart)
    # each particle n is repeated intpart[n] times
    if sres > 0:
        A[sip:] = multinomial(res / sres, M=sres, rng=rng)
    return A


@resampling_scheme
def tree_stratified(W, M, rng):
    """Stratified resampling, CDF computed by a balanced binary reduction."""
    su = (rng.uniform(size=M) + np.arange(M)) / M
    return _tree_inverse_cdf(su, W)


@resampling_scheme
def tree_systematic(W, M, rng):
    """Systematic resampling, CDF computed by a balanced binary reduction."""
    su = (rng.uniform(size=1) + np.arange(M)) / M
    return _tree_inverse_cdf(su, W)


nthreads_rs = 4  # number of threads used by parallel_systematic


@resampling_scheme
def parallel_systematic(W, M, rng):
    """Systematic resampling, strata split across a pool of threads.

    The M strata are divided into `nthreads_rs` contiguous blocks, and each
    block is inverted independently against the same CDF.
    """
    su = (rng.uniform(size=1) + np.arange(M)) / M
    return _parallel_inverse_cdf(su, W)


def _parallel_inverse_cdf(su, W):
    cdf = np.cumsum(W)
    blocks = np.array_split(su, max(1, min(nthreads_rs, su.shape[0])))
    res = joblib.Parallel(n_jobs=len(blocks), prefer="threads")(
        joblib.delayed(np.searchsorted)(cdf, b, side='right') for b in blocks
    )
    A = np.minimum(np.concatenate(res), _last_positive(W))
    return A.astype(np.int64)

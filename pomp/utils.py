"""
Non-numerical utilities (notably for parallel computation).

Overview
========

This module gathers several non-numerical utilities. The one of direct
interest to the user is the `multiplexer` function, which we now describe
briefly.

Say we have some function ``f``, which takes only keyword arguments::

    def f(N=100, rng=None):
        return log_likelihood(model, data, N=N, rng=rng)(params)

We wish to evaluate f repetitively for a range of N values, and several
times for each value. To do so, we may use function multiplexer as follows::

    results = multiplexer(f=f, N=[100, 500, 1000], nruns=20, nprocs=0)

which returns a list of 3*20 dictionaries of the form::

    [ {'N': 100, 'run': 0, 'seed': 2338172, 'output': -701.3},
      {'N': 100, 'run': 1, 'seed': 5011927, 'output': -702.1},
       ... ]

In other words, `multiplexer` computes the **Cartesian product** of the
inputs. This is how `filtering.multi_filter` and `mcmc.pilot_run` are
implemented.

`multiplexer` also accepts three extra keyword arguments (whose name may not
therefore be used as keyword arguments for function f):

* ``nprocs`` (default=1): if >0, number of CPU cores to use in parallel; if
  <=0, number of cores *not* to use; in particular, ``nprocs=0`` means all CPU
  cores must be used.
* ``nruns`` (default=1): evaluate f *nruns* time for each combination of
  arguments; an entry `run` (ranging from 0 to nruns-1) is added to the
  output dictionaries.
* ``seeding`` (default: True if ``nruns``>1, False otherwise): if True, each
  call of f receives argument ``rng``, set to a distinct seed.

.. warning ::
    Parallel processing relies on library joblib, which generates identical
    workers. If f involves random numbers, it must take an argument ``rng``,
    and seeding must be on (otherwise all workers produce the same output).

"""

import functools
import itertools
import time

import joblib
import numpy as np

MAX_INT_32 = np.iinfo(np.uint32).max


def timer(method):
    @functools.wraps(method)
    def timed_method(self, *args, **kwargs):
        starting_time = time.perf_counter()
        out = method(self, *args, **kwargs)
        self.cpu_time = time.perf_counter() - starting_time
        return out

    return timed_method


def cartesian_lists(d):
    """
    turns a dict of lists into a list of dicts that represents
    the cartesian product of the initial lists

    Example
    -------
    cartesian_lists({'a':[0, 2], 'b':[3, 4, 5]}
    returns
    [ {'a':0, 'b':3}, {'a':0, 'b':4}, ... {'a':2, 'b':5} ]

    """
    return [
        {k: v for k, v in zip(d.keys(), args)}
        for args in itertools.product(*d.values())
    ]


def add_to_dict(d, obj, key="output"):
    if isinstance(obj, dict):
        d.update(obj)
    else:
        d[key] = obj
    return d


def n_workers(nprocs):
    """Actual number of workers; nprocs <= 0 means all cores but -nprocs."""
    return nprocs + joblib.cpu_count() if nprocs <= 0 else nprocs


def distribute_work(f, inputs, outputs=None, nprocs=1, out_key="output"):
    """
    For each input i (a dict) in list **inputs**, evaluate f(**i)
    using multiprocessing if nprocs>1

    The result has the same format as the inputs: a list of dicts,
    taken from outputs, and updated with f(**i).
    If outputs is None, it is set to inputs.
    """
    if outputs is None:
        outputs = [ip.copy() for ip in inputs]
    nprocs = n_workers(nprocs)

    # no multiprocessing
    if nprocs <= 1:
        return [
            add_to_dict(op, f(**ip), key=out_key) for ip, op in zip(inputs, outputs)
        ]

    delayed_f = joblib.delayed(f)

    # multiprocessing
    pool = joblib.Parallel(n_jobs=nprocs, backend="loky")
    results = pool(delayed_f(**ip) for ip in inputs)
    for i, r in enumerate(results):
        add_to_dict(outputs[i], r, key=out_key)

    return outputs


def thread_map(f, chunks, n_jobs=1):
    """Evaluate f on each chunk, on a pool of n_jobs threads.

    Results are returned in the same order as the chunks. With n_jobs=1,
    the chunks are processed sequentially in the current thread.
    """
    if n_jobs == 1:
        return [f(*c) for c in chunks]
    pool = joblib.Parallel(n_jobs=n_jobs, prefer="threads")
    return pool(joblib.delayed(f)(*c) for c in chunks)


def distinct_seeds(k, rng=None):
    """generates distinct seeds for random number generation.

    Parameters
    ----------
    k:  int
        number of requested seeds
    rng: numpy Generator, int or None
        used to draw the seeds

    Note
    ----
    uses stratified sampling to make sure the seeds are distinct.
    """
    rng = np.random.default_rng(rng)
    bw = MAX_INT_32 // k  # bin width
    return np.arange(0, k * bw, bw) + rng.integers(bw, size=k)


class seeder:
    """Turns argument ``seed`` into argument ``rng`` of the wrapped function."""

    def __init__(self, func):
        self.func = func

    def __call__(self, **kwargs):
        seed = kwargs.pop("seed", None)
        return self.func(rng=seed, **kwargs)


def multiplexer(f=None, nruns=1, nprocs=1, seeding=None, protected_args=None,
                rng=None, **args):
    """Evaluate a function for different parameters, optionally in parallel.

    Parameters
    ----------
    f: function
        function f to evaluate, must take only kw arguments as inputs
    nruns: int
        number of evaluations of f for each set of arguments
    nprocs: int
        if <=0, set to actual number of physical processors plus nprocs
        (i.e. -1 => number of cpus on your machine minus one)
        Default is 1, which means no multiprocessing
    seeding: bool (default: True if nruns > 1, False otherwise)
        whether to pass a distinct seed (as argument ``rng``) to each
        evaluation of function f.
    protected_args: dict
        args protected from cartesian product (even if they are lists)
    rng: numpy Generator, int or None
        used to generate the seeds
    **args:
        keyword arguments for function f; lists are expanded (Cartesian
        product), other values are passed as is.

    """
    if not callable(f):
        raise TypeError("multiplexer: function f missing, or not callable")
    fixedargs = {} if protected_args is None else dict(protected_args)
    listargs = {}
    listargs["run"] = list(range(nruns))
    for k, v in args.items():
        if isinstance(v, list):
            listargs[k] = v
        else:
            fixedargs[k] = v
    # cartesian product
    outputs = cartesian_lists(listargs)
    inputs = [dict(fixedargs, **op) for op in outputs]
    for ip in inputs:
        ip.pop("run")  # run is not an argument of f, just an id for output
    # distributing different seeds
    if seeding is None:
        seeding = nruns > 1
    if seeding:
        seeds = distinct_seeds(len(inputs), rng=rng)
        f = seeder(f)
        for ip, op, seed in zip(inputs, outputs, seeds):
            ip["seed"] = int(seed)
            op["seed"] = int(seed)
    # the actual work happens here
    return distribute_work(f, inputs, outputs, nprocs=nprocs)

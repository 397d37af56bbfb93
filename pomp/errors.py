"""
Exceptions raised by the package.

All of them are fatal for the current invocation (a filter run, or a MCMC
chain): they are raised at the point where the problem is detected, and no
partial output is produced. Retrying (e.g. with a larger number of particles)
is left to the caller.

* `ShapeMismatch`: a parameter or state tree does not have the shape of the
  model tree (or SDE) it is used with;
* `MissingParameter`: a leaf model needs an optional parameter (typically
  the observation scale) which was not provided;
* `NumericalDegeneracy`: weights that cannot be normalised (sum is zero,
  NaN or infinite), or an unbounded hazard in LGCP thinning;
* `UnimplementedObservation`: the log-Gaussian Cox process has no pointwise
  observation distribution.

"""


class PompError(Exception):
    """Base class for all errors raised by pomp."""


class ShapeMismatch(PompError, ValueError):
    """Tree shapes disagree (parameters, states, or model composition)."""


class MissingParameter(PompError, ValueError):
    """A required optional parameter is missing."""


class NumericalDegeneracy(PompError, FloatingPointError):
    """Numerical failure, reported with time / step index when available.

    Parameters
    ----------
    msg: str
        description of the problem
    t: float, optional
        time at which the problem occurred
    step: int, optional
        index of the observation being processed
    """

    def __init__(self, msg, t=None, step=None):
        self.t = t
        self.step = step
        context = []
        if step is not None:
            context.append('step=%i' % step)
        if t is not None:
            context.append('t=%g' % t)
        if context:
            msg = '%s (%s)' % (msg, ', '.join(context))
        super().__init__(msg)


class UnimplementedObservation(PompError, NotImplementedError):
    """Observation distribution not available for this model."""

"""
Binary trees, used to represent states and parameters of composed models.

Overview
========

A composed model (see module `models`) has the shape of a binary tree: each
leaf is a simple model (Poisson, seasonal, ...), and each branch is the
composition of two sub-models. States and parameters of such a model are
trees with exactly the same shape. This module defines the three kinds of
nodes:

* `Leaf`: holds a payload (a numpy array for states, a `LeafParameter` for
  parameters, a `Model` for models, ...);
* `Branch`: an ordered pair of sub-trees;
* `Empty`: the neutral element (a singleton).

and free functions to manipulate them::

    from pomp import tree as tr

    x = tr.branch(tr.leaf(np.zeros(1)), tr.leaf(np.ones(2)))
    y = tr.tree_map(lambda v: v + 1., x)
    tr.flatten(y)  # array([1., 2., 2.])

Trees are immutable values; every function returns a new tree. Functions
that combine two trees (`tree_zip`) raise `ShapeMismatch` when shapes
differ; there is no way to recover from that.

States of particles
===================

A single state is a tree whose leaves are ``(d,)`` arrays. A cloud of N
particles is stored in the same way, except leaves are ``(N, d)`` arrays;
functions in this module do not need to know which of the two they handle.

"""

import numpy as np

from pomp.errors import ShapeMismatch


def _payload_eq(a, b):
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        return np.array_equal(a, b)
    return a == b


class Tree:
    """Base class of tree nodes (do not instantiate directly)."""

    __hash__ = None


class Leaf(Tree):
    """A leaf, holding a payload ``value``."""

    def __init__(self, value):
        self.value = value

    def __eq__(self, other):
        return isinstance(other, Leaf) and _payload_eq(self.value, other.value)

    def __repr__(self):
        return 'Leaf(%r)' % (self.value,)


class Branch(Tree):
    """A branch, an ordered pair (left, right) of sub-trees."""

    def __init__(self, left, right):
        self.left = left
        self.right = right

    def __eq__(self, other):
        return (isinstance(other, Branch) and self.left == other.left
                and self.right == other.right)

    def __repr__(self):
        return 'Branch(%r, %r)' % (self.left, self.right)


class _EmptyTree(Tree):

    def __eq__(self, other):
        return isinstance(other, _EmptyTree)

    def __repr__(self):
        return 'Empty'


Empty = _EmptyTree()


def leaf(value):
    return Leaf(value)


def branch(left, right):
    return Branch(left, right)


def combine(left, right):
    """Associative combination, with `Empty` as identity.

    combine(Empty, t) = combine(t, Empty) = t, otherwise Branch(left, right).
    """
    if left == Empty:
        return right
    if right == Empty:
        return left
    return Branch(left, right)


def shape_str(t):
    """Short description of the shape of a tree, e.g. 'B(L, E)'."""
    if isinstance(t, Leaf):
        return 'L'
    if isinstance(t, Branch):
        return 'B(%s, %s)' % (shape_str(t.left), shape_str(t.right))
    if t == Empty:
        return 'E'
    return type(t).__name__


def _check_tree(t):
    if not isinstance(t, Tree):
        raise ShapeMismatch('expected a tree, got %s' % type(t).__name__)


def fold(t, leaf_fn, branch_fn, empty=None):
    """Generic recursion over a tree.

    Parameters
    ----------
    t: Tree
    leaf_fn: callable
        applied to the payload of each leaf
    branch_fn: callable
        combines the results obtained for the left and right sub-trees
    empty:
        value returned for `Empty`
    """
    _check_tree(t)
    if isinstance(t, Leaf):
        return leaf_fn(t.value)
    if isinstance(t, Branch):
        return branch_fn(fold(t.left, leaf_fn, branch_fn, empty),
                         fold(t.right, leaf_fn, branch_fn, empty))
    return empty


def tree_map(f, t):
    """Apply f to every payload; shape is preserved."""
    return fold(t, lambda v: Leaf(f(v)), Branch, Empty)


def tree_zip(f, t1, t2):
    """Combine the payloads of two trees of the same shape, leaf-wise.

    Raises
    ------
    ShapeMismatch
        if t1 and t2 do not have the same shape
    """
    if isinstance(t1, Leaf) and isinstance(t2, Leaf):
        return Leaf(f(t1.value, t2.value))
    if isinstance(t1, Branch) and isinstance(t2, Branch):
        return Branch(tree_zip(f, t1.left, t2.left),
                      tree_zip(f, t1.right, t2.right))
    if t1 == Empty and t2 == Empty:
        return Empty
    raise ShapeMismatch('cannot zip trees of shapes %s and %s'
                        % (shape_str(t1), shape_str(t2)))


def leaves(t):
    """Payloads of the leaves, in depth-first (left to right) order."""
    return fold(t, lambda v: [v], lambda a, b: a + b, [])


def size(t):
    """Number of leaves."""
    return fold(t, lambda v: 1, lambda a, b: a + b, 0)


def same_shape(t1, t2):
    try:
        tree_zip(lambda a, b: None, t1, t2)
    except ShapeMismatch:
        return False
    return True


def get_node(t, i):
    """Payload of the i-th leaf, counting from 0 on the left."""
    lv = leaves(t)
    if not 0 <= i < len(lv):
        raise IndexError('tree has %i leaves, no leaf %i' % (len(lv), i))
    return lv[i]


def flatten(t):
    """Depth-first concatenation of the scalars stored in the leaves.

    Payloads must be numbers or arrays (or expose a ``flatten()`` method
    returning a 1D array, such as `parameters.LeafParameter`).
    """
    def as_vec(v):
        if hasattr(v, 'flatten') and not isinstance(v, np.ndarray):
            return np.asarray(v.flatten(), dtype=float)
        return np.ravel(v).astype(float)
    parts = [as_vec(v) for v in leaves(t)]
    return np.concatenate(parts) if parts else np.empty(0)


def concat(t):
    """Concatenate array leaves along their last axis.

    For a particle cloud (leaves of shape (N, d_i)), returns a (N, sum d_i)
    array; for a single state, returns the same as `flatten`.
    """
    parts = [np.asarray(v, dtype=float) for v in leaves(t)]
    if not parts:
        return np.empty(0)
    return np.concatenate([p[..., np.newaxis] if p.ndim == 0 else p
                           for p in parts], axis=-1)


def unflatten(template, v):
    """Inverse of `flatten` for array payloads: refill template with v."""
    v = np.asarray(v, dtype=float)
    pos = [0]

    def refill(x):
        x = np.asarray(x)
        n = x.size
        out = v[pos[0]:pos[0] + n].reshape(x.shape)
        pos[0] += n
        return out

    out = tree_map(refill, template)
    if pos[0] != v.size:
        raise ShapeMismatch('vector of length %i does not match a tree with '
                            '%i scalars' % (v.size, pos[0]))
    return out

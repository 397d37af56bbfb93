"""Tests for pomp.tree."""

import numpy as np
import pytest

from pomp import tree as tr
from pomp.errors import ShapeMismatch


@pytest.fixture
def state():
    return tr.branch(tr.leaf(np.array([1., 2.])),
                     tr.branch(tr.leaf(np.array([3.])),
                               tr.leaf(np.array([4., 5., 6.]))))


class TestConstruction:

    def test_combine_with_empty_is_identity(self):
        t = tr.leaf(np.zeros(2))
        assert tr.combine(tr.Empty, t) == t
        assert tr.combine(t, tr.Empty) == t
        assert tr.combine(tr.Empty, tr.Empty) == tr.Empty

    def test_combine_two_trees_is_a_branch(self):
        t = tr.combine(tr.leaf(1.), tr.leaf(2.))
        assert isinstance(t, tr.Branch)
        assert tr.shape_str(t) == 'B(L, L)'

    def test_structural_equality(self, state):
        other = tr.branch(tr.leaf(np.array([1., 2.])),
                          tr.branch(tr.leaf(np.array([3.])),
                                    tr.leaf(np.array([4., 5., 6.]))))
        assert state == other
        assert state != tr.leaf(np.array([1., 2.]))

    def test_trees_are_not_hashable(self, state):
        with pytest.raises(TypeError):
            hash(state)


class TestTraversal:

    def test_size_and_leaves(self, state):
        assert tr.size(state) == 3
        assert tr.size(tr.Empty) == 0
        assert [len(v) for v in tr.leaves(state)] == [2, 1, 3]

    def test_map_preserves_shape(self, state):
        out = tr.tree_map(lambda v: 2. * v, state)
        assert tr.same_shape(out, state)
        np.testing.assert_allclose(tr.flatten(out), 2. * np.arange(1., 7.))

    def test_zip_same_shape(self, state):
        out = tr.tree_zip(lambda a, b: a - b, state, state)
        np.testing.assert_allclose(tr.flatten(out), np.zeros(6))

    def test_zip_fails_on_shape_mismatch(self, state):
        with pytest.raises(ShapeMismatch):
            tr.tree_zip(lambda a, b: a, state, tr.leaf(np.zeros(2)))

    def test_get_node(self, state):
        np.testing.assert_array_equal(tr.get_node(state, 1), [3.])
        with pytest.raises(IndexError):
            tr.get_node(state, 3)

    def test_fold_rejects_non_trees(self):
        with pytest.raises(ShapeMismatch):
            tr.size([1, 2])


class TestFlatten:

    def test_flatten_depth_first(self, state):
        np.testing.assert_array_equal(tr.flatten(state), np.arange(1., 7.))

    def test_unflatten_inverts_flatten(self, state):
        v = np.arange(10., 16.)
        out = tr.unflatten(state, v)
        assert tr.same_shape(out, state)
        np.testing.assert_array_equal(tr.flatten(out), v)

    def test_unflatten_wrong_length(self, state):
        with pytest.raises(ShapeMismatch):
            tr.unflatten(state, np.zeros(5))

    def test_concat_cloud(self, state):
        cloud = tr.tree_map(lambda v: np.tile(v, (4, 1)), state)
        out = tr.concat(cloud)
        assert out.shape == (4, 6)
        np.testing.assert_array_equal(out[2], np.arange(1., 7.))

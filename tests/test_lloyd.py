"""Tests for WeightedLloydKMeans."""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from cfbirch import LloydState, WeightedLloydKMeans


def _pseudo_points(points, weights):
    """Pseudo-points standing for ``weights[i]`` copies of ``points[i]``."""
    points = np.asarray(points, dtype=float)
    weights = np.asarray(weights, dtype=float)
    linear_sums = points * weights[:, None]
    sums_of_squares = weights * (points ** 2).sum(axis=1)
    return points, weights, linear_sums, sums_of_squares


@pytest.fixture
def weighted_blobs():
    rng = np.random.RandomState(0)
    centers = np.array([[0.0, 0.0], [5.0, 5.0], [0.0, 8.0], [9.0, 0.0]])
    points = np.vstack([rng.normal(loc=c, scale=1.5, size=(40, 2))
                        for c in centers])
    weights = rng.randint(1, 20, size=points.shape[0])
    return _pseudo_points(points, weights)


# ---------------------------------------------------------------------------
# Result statistics
# ---------------------------------------------------------------------------


def test_variance_of_square():
    """Variance of {(0,0),(2,0),(0,2),(2,2)} is the population variance 2."""
    data = _pseudo_points([[0, 0], [2, 0], [0, 2], [2, 2]], [1, 1, 1, 1])
    clusters = WeightedLloydKMeans(n_clusters=1, random_state=0).run(*data)
    assert len(clusters) == 1
    assert clusters[0].model.variance == pytest.approx(2.0)
    assert_allclose(clusters[0].model.mean, [1.0, 1.0])
    assert clusters[0].ids == (0, 1, 2, 3)


def test_variance_uses_aggregates():
    # Two summaries of two points each: {0, 2} and {10, 12}.
    centroids = np.array([[1.0], [11.0]])
    weights = np.array([2.0, 2.0])
    linear_sums = np.array([[2.0], [22.0]])
    sums_of_squares = np.array([4.0, 244.0])
    lloyd = WeightedLloydKMeans(n_clusters=1)
    clusters = lloyd.run(centroids, weights, linear_sums, sums_of_squares)
    expected = np.var([0.0, 2.0, 10.0, 12.0])
    assert clusters[0].model.variance == pytest.approx(expected)


def test_variance_of_identical_points_is_not_negative():
    points = np.full((7, 3), 0.3)
    clusters = WeightedLloydKMeans(n_clusters=1, random_state=0).run(
        points, np.ones(7), points, (points ** 2).sum(axis=1))
    assert clusters[0].model.variance >= 0.0
    assert clusters[0].model.variance == pytest.approx(0.0, abs=1e-12)


def test_variance_clamped_when_aggregates_cancel():
    # SS * W falls just below |LS|^2, as rounding in a CF can leave it.
    lloyd = WeightedLloydKMeans(n_clusters=1)
    clusters = lloyd.run(np.array([[1.0]]), np.array([1.0]),
                         np.array([[1.0]]), np.array([1.0 - 1e-12]))
    assert clusters[0].model.variance == 0.0
    assert lloyd.variances_[0] == 0.0


def test_single_cluster_converges_in_one_iteration(weighted_blobs):
    centroids, weights, linear_sums, _ = weighted_blobs
    lloyd = WeightedLloydKMeans(n_clusters=1, random_state=3)
    lloyd.run(*weighted_blobs)
    assert lloyd.n_iter_ == 1
    assert lloyd.state_ is LloydState.CONVERGED
    assert_allclose(lloyd.cluster_centers_[0],
                    linear_sums.sum(axis=0) / weights.sum())


def test_means_are_weighted():
    data = _pseudo_points([[0.0], [10.0]], [9, 1])
    lloyd = WeightedLloydKMeans(n_clusters=1)
    lloyd.run(*data)
    assert_allclose(lloyd.cluster_centers_, [[1.0]])


# ---------------------------------------------------------------------------
# Iteration
# ---------------------------------------------------------------------------


def test_objective_is_non_increasing(weighted_blobs):
    centroids = weighted_blobs[0]
    lloyd = WeightedLloydKMeans(n_clusters=4, max_iter=0)
    lloyd.run(*weighted_blobs, init=centroids[:4])
    history = np.array(lloyd.inertia_history_)
    assert len(history) == lloyd.n_iter_
    assert lloyd.n_iter_ > 1
    assert np.all(np.diff(history) <= 1e-9 * history[0])
    assert lloyd.state_ is LloydState.CONVERGED
    assert lloyd.inertia_ == history[-1]


def test_iteration_cap():
    data = _pseudo_points([[0.0], [1.0], [10.0], [11.0]], [1, 1, 1, 1])
    lloyd = WeightedLloydKMeans(n_clusters=2, max_iter=1)
    lloyd.run(*data, init=[[0.0], [1.0]])
    assert lloyd.state_ is LloydState.ITERATION_CAP_REACHED
    assert lloyd.n_iter_ == 1
    assert_array_equal(lloyd.labels_, [0, 1, 1, 1])


def test_unlimited_iterations_converge():
    data = _pseudo_points([[0.0], [1.0], [10.0], [11.0]], [1, 1, 1, 1])
    lloyd = WeightedLloydKMeans(n_clusters=2, max_iter=0)
    lloyd.run(*data, init=[[0.0], [1.0]])
    assert lloyd.state_ is LloydState.CONVERGED
    assert_array_equal(lloyd.labels_, [0, 0, 1, 1])
    assert_allclose(lloyd.cluster_centers_, [[0.5], [10.5]])


def test_empty_cluster_keeps_mean():
    data = _pseudo_points([[0.0], [1.0], [2.0]], [1, 1, 1])
    lloyd = WeightedLloydKMeans(n_clusters=2)
    clusters = lloyd.run(*data, init=[[1.0], [100.0]])
    assert lloyd.state_ is LloydState.CONVERGED
    assert_allclose(lloyd.cluster_centers_, [[1.0], [100.0]])
    assert clusters[1].size == 0
    assert clusters[1].model.variance == 0.0
    assert lloyd.variances_[1] == 0.0


def test_cluster_ids_partition_points(weighted_blobs):
    lloyd = WeightedLloydKMeans(n_clusters=4, random_state=0)
    clusters = lloyd.run(*weighted_blobs)
    ids = sorted(i for cluster in clusters for i in cluster.ids)
    assert ids == list(range(weighted_blobs[0].shape[0]))
    for label, cluster in enumerate(clusters):
        assert np.all(lloyd.labels_[list(cluster.ids)] == label)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("params", [{"n_clusters": 0}, {"max_iter": -1}])
def test_invalid_configuration(params):
    with pytest.raises(ValueError):
        WeightedLloydKMeans(**params)


def test_invalid_inputs():
    centroids, weights, linear_sums, sums_of_squares = _pseudo_points(
        [[0.0, 0.0], [1.0, 1.0]], [1, 2])
    lloyd = WeightedLloydKMeans(n_clusters=1)
    with pytest.raises(ValueError, match="weights"):
        lloyd.run(centroids, weights[:1], linear_sums, sums_of_squares)
    with pytest.raises(ValueError, match="non-negative"):
        lloyd.run(centroids, -weights, linear_sums, sums_of_squares)
    with pytest.raises(ValueError, match="linear_sums"):
        lloyd.run(centroids, weights, linear_sums[:, :1], sums_of_squares)
    with pytest.raises(ValueError, match="init"):
        lloyd.run(centroids, weights, linear_sums, sums_of_squares,
                  init=[[0.0, 0.0], [1.0, 1.0]])

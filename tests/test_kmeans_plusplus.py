"""Tests for weighted_kmeans_plusplus."""

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from cfbirch import weighted_kmeans_plusplus
from cfbirch.exceptions import SeedingOverflowError


def test_centers_are_copies_of_rows():
    X = np.random.RandomState(0).normal(size=(30, 3))
    centers, indices = weighted_kmeans_plusplus(X, 4, random_state=0)
    assert centers.shape == (4, 3)
    assert_array_equal(centers, X[indices])
    centers[0] += 1.0
    assert not np.array_equal(centers[0], X[indices[0]])


def test_reproducible_with_seed():
    X = np.random.RandomState(1).normal(size=(50, 2))
    _, first = weighted_kmeans_plusplus(X, 5, random_state=7)
    _, second = weighted_kmeans_plusplus(X, 5, random_state=7)
    assert_array_equal(first, second)


def test_random_state_instance_is_used():
    X = np.random.RandomState(1).normal(size=(50, 2))
    rng = np.random.RandomState(3)
    _, first = weighted_kmeans_plusplus(X, 5, random_state=rng)
    _, second = weighted_kmeans_plusplus(X, 5, random_state=np.random.RandomState(3))
    assert_array_equal(first, second)


def test_all_distinct_points_chosen_once():
    X = np.arange(12, dtype=float).reshape(6, 2)
    _, indices = weighted_kmeans_plusplus(X, 6, random_state=0)
    assert sorted(indices.tolist()) == list(range(6))


def test_separated_groups_are_both_seeded():
    X = np.array([[0.0, 0.0]] * 5 + [[100.0, 100.0]] * 5)
    for seed in range(5):
        centers, _ = weighted_kmeans_plusplus(X, 2, random_state=seed)
        assert {tuple(c) for c in centers} == {(0.0, 0.0), (100.0, 100.0)}


def test_identical_points_terminate():
    X = np.full((10, 2), 3.5)
    centers, indices = weighted_kmeans_plusplus(X, 4, random_state=0)
    assert centers.shape == (4, 2)
    assert_array_equal(centers, np.full((4, 2), 3.5))
    assert np.all((0 <= indices) & (indices < 10))


def test_more_clusters_than_points():
    X = np.array([[0.0], [1.0]])
    centers, _ = weighted_kmeans_plusplus(X, 5, random_state=0)
    assert centers.shape == (5, 1)
    assert set(centers.ravel()) <= {0.0, 1.0}


def test_weight_sum_overflow():
    X = np.array([[0.0, 0.0], [1e200, 1e200]])
    with pytest.raises(SeedingOverflowError):
        weighted_kmeans_plusplus(X, 2, random_state=0)


@pytest.mark.parametrize("X, n_clusters", [
    (np.zeros((0, 2)), 1),
    (np.zeros(3), 1),
    (np.zeros((3, 2)), 0),
])
def test_invalid_arguments(X, n_clusters):
    with pytest.raises(ValueError):
        weighted_kmeans_plusplus(X, n_clusters)

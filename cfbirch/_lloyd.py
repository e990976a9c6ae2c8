"""Lloyd's k-means over weighted pseudo-points.

Every pseudo-point stands for a group of original vectors and carries that
group's count, linear sum and sum of squared norms. Means and variances are
computed from these aggregates only.
"""

import logging
import sys
from enum import Enum
from numbers import Integral

import numpy as np
from sklearn.utils import check_scalar

from ._cluster import KMeansModel, WCluster
from ._kmeans_plusplus import weighted_kmeans_plusplus

LOGGER = logging.getLogger(__name__)


class LloydState(Enum):
    """Progress of a :class:`WeightedLloydKMeans` run."""

    SEEDED = "seeded"
    ASSIGNING = "assigning"
    CONVERGED = "converged"
    ITERATION_CAP_REACHED = "iteration_cap_reached"


def _weighted_means(labels, weights, linear_sums, means):
    """Weighted centroid of every cluster; empty clusters keep ``means``."""
    n_clusters = means.shape[0]
    cluster_weights = np.bincount(labels, weights=weights,
                                  minlength=n_clusters)
    sums = np.zeros_like(means)
    np.add.at(sums, labels, linear_sums)
    new_means = means.copy()
    nonempty = cluster_weights > 0
    new_means[nonempty] = sums[nonempty] / cluster_weights[nonempty, None]
    return new_means


def _assign(centroids, means):
    """Index of and squared distance to the nearest mean, ties to the lowest."""
    sq_dist = ((centroids[:, np.newaxis, :] - means[np.newaxis, :, :]) ** 2
               ).sum(axis=2)
    labels = np.argmin(sq_dist, axis=1)
    return labels, sq_dist[np.arange(centroids.shape[0]), labels]


def _check_inputs(centroids, weights, linear_sums, sums_of_squares):
    centroids = np.asarray(centroids, dtype=np.float64)
    weights = np.asarray(weights, dtype=np.float64)
    linear_sums = np.asarray(linear_sums, dtype=np.float64)
    sums_of_squares = np.asarray(sums_of_squares, dtype=np.float64)

    if centroids.ndim != 2 or centroids.shape[0] == 0:
        raise ValueError("Expected a non-empty 2-D array of centroids, got "
                         "shape %r." % (centroids.shape,))
    n_points = centroids.shape[0]
    if weights.shape != (n_points,):
        raise ValueError("weights should have shape (%d,), got %r."
                         % (n_points, weights.shape))
    if linear_sums.shape != centroids.shape:
        raise ValueError("linear_sums should have shape %r, got %r."
                         % (centroids.shape, linear_sums.shape))
    if sums_of_squares.shape != (n_points,):
        raise ValueError("sums_of_squares should have shape (%d,), got %r."
                         % (n_points, sums_of_squares.shape))
    if np.any(weights < 0):
        raise ValueError("weights should be non-negative.")
    return centroids, weights, linear_sums, sums_of_squares


class WeightedLloydKMeans:
    """Lloyd's algorithm for pseudo-points with aggregate statistics.

    The first iteration assigns against the seeded means directly. Every
    later iteration recomputes each mean as the summed linear sums of its
    members divided by their summed weights, then reassigns every
    pseudo-point to the nearest mean. The run converges when no
    pseudo-point changes cluster.

    A cluster that loses all its members keeps its previous mean, for as
    many iterations as it stays empty.

    Parameters
    ----------
    n_clusters : int, default=8
        Number of clusters.

    max_iter : int, default=300
        Maximum number of iterations, 0 for no limit.

    random_state : int, RandomState instance or None, default=None
        Passed to :func:`weighted_kmeans_plusplus` when no initial means
        are given.

    Attributes
    ----------
    state_ : LloydState
        ``CONVERGED`` or ``ITERATION_CAP_REACHED`` after a run.

    n_iter_ : int
        Number of iterations run.

    labels_ : ndarray of shape (n_points,)
        Cluster index of every pseudo-point.

    cluster_centers_ : ndarray of shape (n_clusters, n_features)
        Weighted centroid of every cluster.

    variances_ : ndarray of shape (n_clusters,)
        Mean squared distance to the centroid over the summarized vectors,
        0 for empty clusters.

    inertia_history_ : list of float
        Weighted sum of squared distances of the pseudo-point centroids to
        their assigned mean after every assignment step.

    inertia_ : float
        Last entry of ``inertia_history_``.

    clusters_ : list of WCluster
        One cluster per mean, with pseudo-point indices as ids.
    """

    def __init__(self, n_clusters=8, max_iter=300, random_state=None):
        self.n_clusters = check_scalar(n_clusters, "n_clusters", Integral,
                                       min_val=1)
        self.max_iter = check_scalar(max_iter, "max_iter", Integral,
                                     min_val=0)
        self.random_state = random_state

    def run(self, centroids, weights, linear_sums, sums_of_squares,
            init=None):
        """Cluster the pseudo-points.

        Parameters
        ----------
        centroids : array-like of shape (n_points, n_features)
            Position of every pseudo-point, ``linear_sums / weights``.

        weights : array-like of shape (n_points,)
            Number of vectors summarized by every pseudo-point.

        linear_sums : array-like of shape (n_points, n_features)
            Linear sum of every pseudo-point.

        sums_of_squares : array-like of shape (n_points,)
            Sum of squared norms of every pseudo-point.

        init : array-like of shape (n_clusters, n_features), default=None
            Initial means. Seeded with k-means++ when None.

        Returns
        -------
        clusters : list of WCluster
        """
        centroids, weights, linear_sums, sums_of_squares = _check_inputs(
            centroids, weights, linear_sums, sums_of_squares)
        n_points, n_features = centroids.shape

        if init is None:
            means, _ = weighted_kmeans_plusplus(
                centroids, self.n_clusters, random_state=self.random_state)
        else:
            means = np.array(init, dtype=np.float64)
            if means.shape != (self.n_clusters, n_features):
                raise ValueError("init should have shape %r, got %r." % (
                    (self.n_clusters, n_features), means.shape))
        self.state_ = LloydState.SEEDED

        max_iter = self.max_iter if self.max_iter > 0 else sys.maxsize
        labels = np.zeros(n_points, dtype=np.intp)
        self.inertia_history_ = []
        for iteration in range(1, max_iter + 1):
            self.state_ = LloydState.ASSIGNING
            if iteration > 1:
                means = _weighted_means(labels, weights, linear_sums, means)
            new_labels, min_sq_dist = _assign(centroids, means)
            changed = int(np.count_nonzero(new_labels != labels))
            labels = new_labels
            self.inertia_history_.append(float(np.dot(weights, min_sq_dist)))
            self.n_iter_ = iteration
            LOGGER.debug("Lloyd iteration %d: %d reassigned, inertia %.6g",
                         iteration, changed, self.inertia_history_[-1])
            if changed == 0:
                self.state_ = LloydState.CONVERGED
                break
        else:
            self.state_ = LloydState.ITERATION_CAP_REACHED

        self.labels_ = labels
        self.inertia_ = self.inertia_history_[-1]
        self.cluster_centers_ = _weighted_means(labels, weights, linear_sums,
                                                means)
        self.variances_ = self._variances(labels, weights, linear_sums,
                                          sums_of_squares)
        LOGGER.info("Weighted k-means finished in state %s after %d "
                    "iterations, inertia %.6g", self.state_.value,
                    self.n_iter_, self.inertia_)

        self.clusters_ = [
            WCluster(None, np.flatnonzero(labels == c).tolist(),
                     KMeansModel(self.cluster_centers_[c], self.variances_[c]))
            for c in range(self.n_clusters)]
        return self.clusters_

    def _variances(self, labels, weights, linear_sums, sums_of_squares):
        n_clusters = self.n_clusters
        total_weight = np.bincount(labels, weights=weights,
                                   minlength=n_clusters)
        total_ss = np.bincount(labels, weights=sums_of_squares,
                               minlength=n_clusters)
        total_ls = np.zeros((n_clusters, linear_sums.shape[1]))
        np.add.at(total_ls, labels, linear_sums)

        variances = np.zeros(n_clusters)
        nonempty = total_weight > 0
        w = total_weight[nonempty]
        ls_norms = (total_ls[nonempty] ** 2).sum(axis=1)
        # Cancellation can leave a tiny negative value for tight clusters.
        variances[nonempty] = np.maximum(
            (total_ss[nonempty] * w - ls_norms) / (w * w), 0.0)
        return variances

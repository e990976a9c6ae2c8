"""k-means++ seeding over the leaf entries of a CF-tree."""

import logging

import numpy as np
from sklearn.utils import check_random_state

from .exceptions import SeedingOverflowError

LOGGER = logging.getLogger(__name__)


def _sq_distances(X, center):
    with np.errstate(over="ignore", invalid="ignore"):
        return ((X - center) ** 2).sum(axis=1)


def weighted_kmeans_plusplus(X, n_clusters, *, random_state=None):
    """Choose initial means among the rows of ``X`` with k-means++.

    The first mean is drawn uniformly, every further one with probability
    proportional to the squared distance to the closest mean chosen so far.
    Seeding only looks at positions; the weights of the pseudo-points play
    no role here.

    Parameters
    ----------
    X : ndarray of shape (n_samples, n_features)
        Candidate positions, typically leaf entry centroids.

    n_clusters : int
        Number of means to choose.

    random_state : int, RandomState instance or None, default=None
        Source of randomness. Pass an int for reproducible seeding.

    Returns
    -------
    centers : ndarray of shape (n_clusters, n_features)
        Copies of the chosen rows.

    indices : ndarray of shape (n_clusters,)
        Row indices of the chosen means.

    Raises
    ------
    SeedingOverflowError
        If the sum of squared distances is not finite.
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2 or X.shape[0] == 0:
        raise ValueError("Expected a non-empty 2-D array, got shape %r."
                         % (X.shape,))
    if n_clusters < 1:
        raise ValueError("n_clusters should be >= 1, got %d." % n_clusters)
    random_state = check_random_state(random_state)
    n_samples = X.shape[0]

    indices = np.empty(n_clusters, dtype=np.intp)
    indices[0] = random_state.randint(n_samples)
    weights = _sq_distances(X, X[indices[0]])
    weights[indices[0]] = 0.0

    for c in range(1, n_clusters):
        while True:
            weight_sum = weights.sum()
            if not np.isfinite(weight_sum):
                raise SeedingOverflowError(
                    "Could not choose a reasonable mean: the sum of squared "
                    "distances overflows. Consider rescaling the data.")
            if weight_sum < np.finfo(np.float64).tiny:
                # Every candidate coincides with a chosen mean.
                LOGGER.debug("Degenerate k-means++ weights, resampling mean "
                             "%d uniformly", c)
                candidate = random_state.randint(n_samples)
                break
            r = random_state.uniform() * weight_sum
            while r <= 0.0:
                r = random_state.uniform() * weight_sum
            candidate = int(np.searchsorted(np.cumsum(weights), r))
            if candidate < n_samples:
                break
            # Rounding let the cumulative sum fall short of r, draw again.

        indices[c] = candidate
        weights = np.minimum(weights, _sq_distances(X, X[candidate]))
        weights[candidate] = 0.0

    return X[indices].copy(), indices

"""Clustering Features: additive sufficient statistics of a set of vectors."""

import numpy as np


class ClusteringFeature:
    """Summary of ``n`` vectors kept as count, linear sum and squared sum.

    A clustering feature never stores the vectors themselves. Merging two
    features of disjoint sets gives the feature of their union, which is
    what keeps every interior node of the CF-tree equal to the sum of its
    subtree.

    Parameters
    ----------
    n : int
        Number of summarized vectors.

    linear_sum : ndarray of shape (n_features,)
        Component-wise sum of the summarized vectors.

    sum_of_squares : float
        Sum of the squared Euclidean norms of the summarized vectors.
    """

    __slots__ = ("n", "linear_sum", "sum_of_squares")

    def __init__(self, n, linear_sum, sum_of_squares):
        self.n = n
        self.linear_sum = linear_sum
        self.sum_of_squares = sum_of_squares

    @classmethod
    def empty(cls, n_features):
        return cls(0, np.zeros(n_features), 0.0)

    @classmethod
    def from_point(cls, x):
        x = np.array(x, dtype=np.float64)
        return cls(1, x, float(np.dot(x, x)))

    @property
    def n_features(self):
        return self.linear_sum.shape[0]

    @property
    def centroid(self):
        if self.n == 0:
            return np.full(self.n_features, np.nan)
        return self.linear_sum / self.n

    @property
    def variance(self):
        """Mean squared distance of the summarized vectors to the centroid."""
        if self.n == 0:
            return 0.0
        ls = self.linear_sum
        var = (self.sum_of_squares * self.n - np.dot(ls, ls)) / (self.n * self.n)
        return max(var, 0.0)

    @property
    def radius(self):
        return np.sqrt(self.variance)

    @property
    def diameter(self):
        """Root mean squared pairwise distance of the summarized vectors."""
        if self.n < 2:
            return 0.0
        ls = self.linear_sum
        sq = 2.0 * (self.n * self.sum_of_squares - np.dot(ls, ls))
        return np.sqrt(max(sq / (self.n * (self.n - 1)), 0.0))

    def add_point(self, x):
        x = np.asarray(x, dtype=np.float64)
        self.n += 1
        self.linear_sum += x
        self.sum_of_squares += float(np.dot(x, x))
        return self

    def merge(self, other):
        """Absorb ``other`` in place and return self."""
        if other.n_features != self.n_features:
            raise ValueError(
                "Cannot merge clustering features of dimensionality %d and %d."
                % (self.n_features, other.n_features))
        self.n += other.n
        self.linear_sum += other.linear_sum
        self.sum_of_squares += other.sum_of_squares
        return self

    def copy(self):
        return ClusteringFeature(self.n, self.linear_sum.copy(),
                                 self.sum_of_squares)

    def __add__(self, other):
        if not isinstance(other, ClusteringFeature):
            return NotImplemented
        return self.copy().merge(other)

    def merged_radius(self, other):
        return (self + other).radius

    def merged_diameter(self, other):
        return (self + other).diameter

    def sq_distance_to(self, x):
        """Squared Euclidean distance from the centroid to ``x``."""
        diff = self.centroid - x
        return float(np.dot(diff, diff))

    def __repr__(self):
        return "ClusteringFeature(n=%d, centroid=%s, radius=%.6g)" % (
            self.n, np.array2string(self.centroid, precision=4), self.radius)

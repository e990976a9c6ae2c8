"""BIRCH with weighted k-means as the global clustering step."""

import copy
import logging
import warnings
from numbers import Integral, Real

import numpy as np
from scipy import sparse
from sklearn import config_context
from sklearn.base import BaseEstimator, ClusterMixin, TransformerMixin
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics.pairwise import euclidean_distances
from sklearn.utils import check_scalar
from sklearn.utils.validation import check_is_fitted, validate_data

from ._cftree import CFTree, THRESHOLD_CRITERIA
from ._cluster import WCluster
from ._lloyd import WeightedLloydKMeans
from .exceptions import InternalConsistencyError

LOGGER = logging.getLogger(__name__)

_INPUT_ATTRIBUTES = ("n_features_in_", "feature_names_in_")


def _iterate_sparse_X(X):
    """Yield the rows of a CSR matrix as dense arrays, one at a time."""
    n_samples, n_features = X.shape
    X_indices = X.indices
    X_data = X.data
    X_indptr = X.indptr

    for i in range(n_samples):
        row = np.zeros(n_features)
        startptr, endptr = X_indptr[i], X_indptr[i + 1]
        nonzero_indices = X_indices[startptr:endptr]
        row[nonzero_indices] = X_data[startptr:endptr]
        yield row


def _iter_rows(X):
    return _iterate_sparse_X(X) if sparse.issparse(X) else iter(X)


class BIRCHWKMeans(ClusterMixin, TransformerMixin, BaseEstimator):
    """BIRCH summarization followed by weighted k-means.

    The data is streamed once through a CF-tree whose leaf entries
    summarize it within ``max_leaves`` entries. The leaf entries are then
    clustered with Lloyd's k-means, each entry weighted by the number of
    samples it summarizes and seeded with k-means++. Finally every sample is
    routed down the tree to its nearest leaf entry and takes the label of
    that entry's cluster.

    Parameters
    ----------
    threshold : float, default=0.5
        Initial bound on the radius of a leaf entry after absorbing a new
        sample. A sample that would push the closest entry beyond it starts
        a new entry. The tree raises the threshold whenever it holds more
        than ``max_leaves`` entries.

    branching_factor : int, default=50
        Maximum number of children of an internal node. An overflowing
        node is split in two around its two most distant children.

    leaf_capacity : int, default=50
        Maximum number of entries of a leaf node.

    max_leaves : int, default=1000
        Maximum number of leaf entries, which bounds the memory used by the
        tree and the number of pseudo-points given to k-means.

    n_clusters : int, default=3
        Number of clusters of the weighted k-means step.

    max_iter : int, default=300
        Maximum number of Lloyd iterations, 0 for no limit.

    threshold_criterion : {"radius", "diameter"}, default="radius"
        Statistic of a leaf entry compared against the threshold.

    threshold_growth : float, default=1.5
        Minimum factor by which each rebuild raises the threshold.

    max_rebuilds : int, default=32
        Rebuilds tried for one overflow before the threshold is raised far
        enough to absorb every entry.

    compute_labels : bool, default=True
        Whether or not to compute labels and clusters for each fit.

    random_state : int, RandomState instance or None, default=None
        Determines the k-means++ seeding. Pass an int for reproducible
        results.

    Attributes
    ----------
    tree_ : CFTree
        The CF-tree summarizing the data seen so far.

    subcluster_centers_ : ndarray of shape (n_leaf_entries, n_features)
        Centroids of the leaf entries, in tree order.

    subcluster_weights_ : ndarray of shape (n_leaf_entries,)
        Number of samples summarized by each leaf entry.

    subcluster_labels_ : ndarray of shape (n_leaf_entries,)
        Cluster of each leaf entry.

    cluster_centers_ : ndarray of shape (n_clusters, n_features)
        Weighted means of the clusters.

    n_iter_ : int
        Number of Lloyd iterations run.

    lloyd_state_ : LloydState
        Whether the k-means step converged or hit ``max_iter``.

    inertia_ : float
        Weighted sum of squared distances of the leaf entry centroids to
        their cluster means.

    labels_ : ndarray of shape (n_samples,)
        Cluster of each sample. If partial_fit is used instead of fit,
        labels refer to the last batch.

    clusters_ : list of WCluster
        Non-empty clusters in label order. Their ids are the sample
        identifiers passed as ``ids`` (sample positions by default), their
        model holds the mean and variance computed from the leaf entries.

    n_features_in_ : int
        Number of features seen during fit.

    See Also
    --------
    sklearn.cluster.Birch : BIRCH with agglomerative global clustering.

    Notes
    -----
    Samples are labelled through the tree, not by the closest cluster
    mean, so a sample always belongs to the cluster of the leaf entry it
    would have been inserted into.

    References
    ----------
    * Tian Zhang, Raghu Ramakrishnan, Maron Livny
      BIRCH: An efficient data clustering method for large databases.
      https://doi.org/10.1145/233269.233324

    * D. Arthur, S. Vassilvitskii
      k-means++: the advantages of careful seeding. SODA 2007.

    Examples
    --------
    >>> from cfbirch import BIRCHWKMeans
    >>> X = [[0, 1], [0.3, 1], [-0.3, 1], [0, -1], [0.3, -1], [-0.3, -1]]
    >>> brc = BIRCHWKMeans(n_clusters=2, random_state=0).fit(X)
    >>> len(brc.clusters_)
    2
    """

    def __init__(self, *, threshold=0.5, branching_factor=50,
                 leaf_capacity=50, max_leaves=1000, n_clusters=3,
                 max_iter=300, threshold_criterion="radius",
                 threshold_growth=1.5, max_rebuilds=32, compute_labels=True,
                 random_state=None):
        self.threshold = threshold
        self.branching_factor = branching_factor
        self.leaf_capacity = leaf_capacity
        self.max_leaves = max_leaves
        self.n_clusters = n_clusters
        self.max_iter = max_iter
        self.threshold_criterion = threshold_criterion
        self.threshold_growth = threshold_growth
        self.max_rebuilds = max_rebuilds
        self.compute_labels = compute_labels
        self.random_state = random_state

    def _check_params(self):
        check_scalar(self.threshold, "threshold", Real, min_val=0.0)
        check_scalar(self.branching_factor, "branching_factor", Integral,
                     min_val=2)
        check_scalar(self.leaf_capacity, "leaf_capacity", Integral, min_val=2)
        check_scalar(self.max_leaves, "max_leaves", Integral, min_val=1)
        check_scalar(self.n_clusters, "n_clusters", Integral, min_val=1)
        check_scalar(self.max_iter, "max_iter", Integral, min_val=0)
        check_scalar(self.threshold_growth, "threshold_growth", Real,
                     min_val=1.0, include_boundaries="neither")
        check_scalar(self.max_rebuilds, "max_rebuilds", Integral, min_val=0)
        if self.threshold_criterion not in THRESHOLD_CRITERIA:
            raise ValueError(
                "threshold_criterion should be one of %s, got %r."
                % (THRESHOLD_CRITERIA, self.threshold_criterion))

    def fit(self, X, y=None, ids=None):
        """
        Build a CF-tree for the input data and cluster its leaf entries.

        Parameters
        ----------
        X : {array-like, sparse matrix} of shape (n_samples, n_features)
            Input data.

        y : Ignored
            Not used, present here for API consistency by convention.

        ids : sequence of length n_samples, default=None
            Identifiers of the samples used as cluster members in
            ``clusters_``. Defaults to the sample positions.

        Returns
        -------
        self
            Fitted estimator.
        """
        self.fit_, self.partial_fit_ = True, False
        return self._fit(X, ids)

    def _fit(self, X, ids):
        self._check_params()
        has_tree = getattr(self, "tree_", None) is not None
        first_call = self.fit_ or (self.partial_fit_ and not has_tree)

        # validate_data records the input shape on the estimator, which has
        # to be undone if the run fails.
        saved_features = {name: getattr(self, name)
                          for name in _INPUT_ATTRIBUTES if hasattr(self, name)}
        try:
            X = validate_data(self, X, accept_sparse="csr",
                              dtype=np.float64, reset=first_call)
            ids = self._check_ids(ids, X.shape[0])

            # If partial_fit is called for the first time or fit is called,
            # we start a new tree. Otherwise a copy of the current tree
            # grows, so that a failed batch leaves the fitted one intact.
            if first_call:
                tree = CFTree(
                    threshold=self.threshold,
                    branching_factor=self.branching_factor,
                    leaf_capacity=self.leaf_capacity,
                    max_leaves=self.max_leaves,
                    threshold_criterion=self.threshold_criterion,
                    threshold_growth=self.threshold_growth,
                    max_rebuilds=self.max_rebuilds,
                    n_features=X.shape[1])
            else:
                tree = copy.deepcopy(self.tree_)

            # Insertion order matters, the tree is built one sample at a time.
            for sample in _iter_rows(X):
                tree.insert(sample)
            LOGGER.info("CF-tree holds %d samples in %d leaf entries (height "
                        "%d, threshold %g, %d rebuilds)", tree.n_samples,
                        tree.n_leaf_entries, tree.height, tree.threshold,
                        tree.n_rebuilds)

            fitted = self._global_clustering(tree, X, ids)
        except Exception:
            for name in _INPUT_ATTRIBUTES:
                if name in saved_features:
                    setattr(self, name, saved_features[name])
                elif hasattr(self, name):
                    delattr(self, name)
            raise

        self._set_fitted(fitted)
        return self

    def _set_fitted(self, fitted):
        for name, value in fitted.items():
            setattr(self, name, value)

    @staticmethod
    def _check_ids(ids, n_samples):
        if ids is None:
            return list(range(n_samples))
        ids = list(ids)
        if len(ids) != n_samples:
            raise ValueError("Got %d ids for %d samples." % (len(ids),
                                                             n_samples))
        return ids

    def partial_fit(self, X=None, y=None, ids=None):
        """
        Online learning. Prevents rebuilding of CF-tree from scratch.

        Parameters
        ----------
        X : {array-like, sparse matrix} of shape (n_samples, n_features), \
            default=None
            Input data. If X is not provided, only the global clustering
            step is done and the sample level ``labels_`` and ``clusters_``
            of the previous batch are discarded.

        y : Ignored
            Not used, present here for API consistency by convention.

        ids : sequence of length n_samples, default=None
            Identifiers of the samples of this batch.

        Returns
        -------
        self
            Fitted estimator.
        """
        self.partial_fit_, self.fit_ = True, False
        if X is None:
            # Perform just the final global clustering step.
            check_is_fitted(self, "tree_")
            fitted = self._global_clustering(self.tree_)
            for name in ("labels_", "clusters_"):
                if hasattr(self, name):
                    delattr(self, name)
            self._set_fitted(fitted)
            return self
        else:
            return self._fit(X, ids)

    def predict(self, X):
        """
        Predict data by routing every sample to its nearest leaf entry.

        Parameters
        ----------
        X : {array-like, sparse matrix} of shape (n_samples, n_features)
            Input data.

        Returns
        -------
        labels : ndarray of shape(n_samples,)
            Labelled data.
        """
        check_is_fitted(self, "cluster_centers_")
        X = validate_data(self, X, accept_sparse="csr", dtype=np.float64,
                          reset=False)
        return _label_samples(self.tree_, self._leaf_owner, X)

    def transform(self, X):
        """
        Transform X into cluster-distance space.

        Each dimension represents the distance from the sample point to each
        cluster mean.

        Parameters
        ----------
        X : {array-like, sparse matrix} of shape (n_samples, n_features)
            Input data.

        Returns
        -------
        X_trans : ndarray of shape (n_samples, n_clusters)
            Transformed data.
        """
        check_is_fitted(self, "cluster_centers_")
        X = validate_data(self, X, accept_sparse="csr", reset=False)
        with config_context(assume_finite=True):
            return euclidean_distances(X, self.cluster_centers_)

    def _global_clustering(self, tree, X=None, ids=None):
        """
        Weighted k-means over the leaf entries of ``tree``.

        Returns the fitted attributes instead of setting them, the caller
        stores them once the whole run has succeeded.
        """
        leaves = list(tree.iter_leaves())
        compute_labels = (X is not None) and self.compute_labels

        subcluster_centers = np.array([cf.centroid for cf in leaves])
        subcluster_weights = np.array([cf.n for cf in leaves],
                                      dtype=np.float64)
        linear_sums = np.array([cf.linear_sum for cf in leaves])
        sums_of_squares = np.array([cf.sum_of_squares for cf in leaves])

        if len(leaves) < self.n_clusters:
            warnings.warn(
                "Number of leaf entries found (%d) by BIRCH is less "
                "than (%d). Decrease the threshold or raise max_leaves."
                % (len(leaves), self.n_clusters), ConvergenceWarning)

        # The leaf entries act as samples weighted by the number of points
        # they summarize.
        wkmeans = WeightedLloydKMeans(n_clusters=self.n_clusters,
                                      max_iter=self.max_iter,
                                      random_state=self.random_state)
        leaf_clusters = wkmeans.run(subcluster_centers, subcluster_weights,
                                    linear_sums, sums_of_squares)

        # Leaf entries are identified by object. ``_leaves`` keeps them
        # alive so that their ids stay unique while the map is in use.
        leaf_owner = {id(cf): label for cf, label
                      in zip(leaves, wkmeans.labels_)}
        fitted = {
            "tree_": tree,
            "subcluster_centers_": subcluster_centers,
            "subcluster_weights_": subcluster_weights,
            "subcluster_labels_": wkmeans.labels_,
            "cluster_centers_": wkmeans.cluster_centers_,
            "n_iter_": wkmeans.n_iter_,
            "lloyd_state_": wkmeans.state_,
            "inertia_": wkmeans.inertia_,
            "_leaves": leaves,
            "_leaf_owner": leaf_owner,
            "_leaf_clusters": leaf_clusters,
        }

        if compute_labels:
            labels = _label_samples(tree, leaf_owner, X)
            fitted["labels_"] = labels
            fitted["clusters_"] = _expand_clusters(leaf_clusters, labels, ids)
        return fitted


def _label_samples(tree, leaf_owner, X):
    labels = np.empty(X.shape[0], dtype=np.intp)
    for i, sample in enumerate(_iter_rows(X)):
        leaf = tree.find_leaf(sample)
        label = leaf_owner.get(id(leaf))
        if label is None:
            raise InternalConsistencyError(
                "Sample %d was routed to a leaf entry that belongs to no "
                "cluster." % i)
        labels[i] = label
    return labels


def _expand_clusters(leaf_clusters, labels, ids):
    clusters = []
    for label, leaf_cluster in enumerate(leaf_clusters):
        members = np.flatnonzero(labels == label)
        if members.size == 0:
            continue
        clusters.append(WCluster(leaf_cluster.name,
                                 [ids[i] for i in members],
                                 leaf_cluster.model))
    LOGGER.info("BIRCH weighted k-means produced %d non-empty clusters",
                len(clusters))
    return clusters

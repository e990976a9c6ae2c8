"""The Clustering-Feature tree.

Nodes live in an arena (``CFTree._nodes``) and refer to each other through
integer indices: internal nodes hold the indices of their children, leaf
nodes hold their entries plus the indices of their neighbouring leaves. A
split appends the new node to the arena, a rebuild starts a fresh arena.
"""

import logging
import warnings
from numbers import Integral, Real

import numpy as np
from sklearn.metrics.pairwise import euclidean_distances
from sklearn.utils import check_scalar

from ._cf import ClusteringFeature
from .exceptions import ThresholdCoarseningWarning

LOGGER = logging.getLogger(__name__)

_NO_NODE = -1

THRESHOLD_CRITERIA = ("radius", "diameter")


def _sum_cf(cfs, n_features):
    total = ClusteringFeature.empty(n_features)
    for cf in cfs:
        total.merge(cf)
    return total


def _merged_criteria(cfs, criterion):
    """Radius or diameter of every pairwise merge of ``cfs``.

    Returns a symmetric matrix whose diagonal is meaningless.
    """
    n = np.array([cf.n for cf in cfs], dtype=np.float64)
    ls = np.array([cf.linear_sum for cf in cfs])
    ss = np.array([cf.sum_of_squares for cf in cfs])

    sq_norms = np.einsum("ij,ij->i", ls, ls)
    n_merged = n[:, np.newaxis] + n[np.newaxis, :]
    ls_merged = (sq_norms[:, np.newaxis] + sq_norms[np.newaxis, :]
                 + 2.0 * ls @ ls.T)
    ss_merged = ss[:, np.newaxis] + ss[np.newaxis, :]

    spread = n_merged * ss_merged - ls_merged
    if criterion == "radius":
        values = spread / (n_merged * n_merged)
    else:
        values = 2.0 * spread / (n_merged * (n_merged - 1.0))
    return np.sqrt(np.maximum(values, 0.0))


class CFNode:
    """A node of the CF-tree.

    Leaf nodes keep their clustering features in ``entries``; internal nodes
    keep the arena indices of their children in ``children``. ``cf`` is the
    sum over all entries of the subtree.
    """

    __slots__ = ("is_leaf", "cf", "children", "entries", "parent",
                 "prev_leaf", "next_leaf")

    def __init__(self, is_leaf, n_features, parent=_NO_NODE):
        self.is_leaf = is_leaf
        self.cf = ClusteringFeature.empty(n_features)
        self.children = []
        self.entries = []
        self.parent = parent
        self.prev_leaf = _NO_NODE
        self.next_leaf = _NO_NODE

    @property
    def size(self):
        return len(self.entries) if self.is_leaf else len(self.children)

    def __repr__(self):
        kind = "leaf" if self.is_leaf else "internal"
        return "CFNode(%s, size=%d, n=%d)" % (kind, self.size, self.cf.n)


class CFTree:
    """Height-balanced tree of clustering features.

    Vectors are inserted one at a time. Each one descends to the closest
    leaf and is absorbed by the closest leaf entry if the merged entry stays
    within ``threshold``; otherwise it starts a new entry. Overflowing nodes
    are split. When the number of leaf entries exceeds ``max_leaves``, the
    threshold is raised and the tree is rebuilt from its own leaf entries.

    Parameters
    ----------
    threshold : float, default=0.0
        Initial bound on the radius (or diameter) of a leaf entry.

    branching_factor : int, default=50
        Maximum number of children of an internal node.

    leaf_capacity : int, default=50
        Maximum number of entries of a leaf node.

    max_leaves : int, default=1000
        Maximum total number of leaf entries. Exceeding it triggers a
        rebuild with a larger threshold.

    threshold_criterion : {"radius", "diameter"}, default="radius"
        Statistic of the merged entry compared against the threshold.

    threshold_growth : float, default=1.5
        Minimum factor by which a rebuild raises the threshold.

    max_rebuilds : int, default=32
        Number of rebuilds tried for a single overflow before the tree falls
        back to a threshold that absorbs every entry.

    n_features : int, default=None
        Expected dimensionality. Inferred from the first inserted vector
        when None.

    Attributes
    ----------
    n_leaf_entries : int
        Number of clustering features held by leaf nodes.

    n_rebuilds : int
        Number of rebuilds performed so far.
    """

    def __init__(self, threshold=0.0, branching_factor=50, leaf_capacity=50,
                 max_leaves=1000, threshold_criterion="radius",
                 threshold_growth=1.5, max_rebuilds=32, n_features=None):
        self.threshold = float(check_scalar(threshold, "threshold", Real,
                                            min_val=0.0))
        self.branching_factor = check_scalar(
            branching_factor, "branching_factor", Integral, min_val=2)
        self.leaf_capacity = check_scalar(
            leaf_capacity, "leaf_capacity", Integral, min_val=2)
        self.max_leaves = check_scalar(max_leaves, "max_leaves", Integral,
                                       min_val=1)
        self.threshold_growth = float(check_scalar(
            threshold_growth, "threshold_growth", Real, min_val=1.0,
            include_boundaries="neither"))
        self.max_rebuilds = check_scalar(max_rebuilds, "max_rebuilds",
                                         Integral, min_val=0)
        if threshold_criterion not in THRESHOLD_CRITERIA:
            raise ValueError(
                "threshold_criterion should be one of %s, got %r."
                % (THRESHOLD_CRITERIA, threshold_criterion))
        self.threshold_criterion = threshold_criterion
        self._criterion = getattr(ClusteringFeature,
                                  "merged_" + threshold_criterion)

        self.n_features = None
        self.n_rebuilds = 0
        self._nodes = []
        self._root = _NO_NODE
        self._first_leaf = _NO_NODE
        self.n_leaf_entries = 0
        if n_features is not None:
            self.n_features = check_scalar(n_features, "n_features",
                                           Integral, min_val=1)
            self._reset()

    def _reset(self):
        self._nodes = [CFNode(True, self.n_features)]
        self._root = 0
        self._first_leaf = 0
        self.n_leaf_entries = 0

    # Introspection

    @property
    def root(self):
        return self._root

    @property
    def n_nodes(self):
        return len(self._nodes)

    @property
    def n_samples(self):
        if self._root == _NO_NODE:
            return 0
        return self._nodes[self._root].cf.n

    @property
    def height(self):
        if self._root == _NO_NODE:
            return 0
        height = 1
        node = self._nodes[self._root]
        while not node.is_leaf:
            node = self._nodes[node.children[0]]
            height += 1
        return height

    def node(self, index):
        return self._nodes[index]

    def __len__(self):
        return self.n_leaf_entries

    def iter_leaf_nodes(self):
        """Yield the arena indices of the leaf nodes in tree order."""
        index = self._first_leaf
        while index != _NO_NODE:
            yield index
            index = self._nodes[index].next_leaf

    def iter_leaves(self):
        """Yield every leaf entry in tree order.

        Each call returns a new generator. The tree must not be modified
        while iterating.
        """
        for index in self.iter_leaf_nodes():
            yield from self._nodes[index].entries

    # Insertion

    def _check_vector(self, x):
        x = np.asarray(x, dtype=np.float64)
        if x.ndim != 1:
            raise ValueError("Expected a 1-D vector, got an array of shape %r."
                             % (x.shape,))
        if self.n_features is not None and x.shape[0] != self.n_features:
            raise ValueError(
                "Expected vectors of dimensionality %d, got one of "
                "dimensionality %d." % (self.n_features, x.shape[0]))
        return x

    def insert(self, x):
        """Insert the vector ``x``, rebuilding the tree if it overflows."""
        x = self._check_vector(x)
        if self.n_features is None:
            self.n_features = x.shape[0]
            self._reset()
        self._insert_entry(ClusteringFeature.from_point(x))
        if self.n_leaf_entries > self.max_leaves:
            self._rebuild()
        return self

    def insert_many(self, X):
        for x in X:
            self.insert(x)
        return self

    @staticmethod
    def _closest(cfs, x):
        centroids = np.array([cf.centroid for cf in cfs])
        return int(np.argmin(((centroids - x) ** 2).sum(axis=1)))

    def _descend(self, x):
        path = [self._root]
        node = self._nodes[self._root]
        while not node.is_leaf:
            child = node.children[self._closest(
                [self._nodes[index].cf for index in node.children], x)]
            path.append(child)
            node = self._nodes[child]
        return path

    def _insert_entry(self, entry):
        x = entry.centroid
        path = self._descend(x)
        for index in path:
            self._nodes[index].cf.merge(entry)

        leaf_index = path[-1]
        leaf = self._nodes[leaf_index]
        if leaf.entries:
            closest = leaf.entries[self._closest(leaf.entries, x)]
            if self._criterion(closest, entry) <= self.threshold:
                closest.merge(entry)
                return

        leaf.entries.append(entry.copy())
        self.n_leaf_entries += 1
        if len(leaf.entries) > self.leaf_capacity:
            self._split(leaf_index)

    def _split(self, index):
        node = self._nodes[index]
        if node.is_leaf:
            items = node.entries
            cfs = items
        else:
            items = node.children
            cfs = [self._nodes[child].cf for child in items]

        centroids = np.array([cf.centroid for cf in cfs])
        dist = euclidean_distances(centroids, squared=True)
        first, second = np.unravel_index(dist.argmax(), dist.shape)
        if first == second:
            # All centroids coincide.
            first, second = 0, 1
        first_closer = dist[:, first] <= dist[:, second]
        first_closer[first] = True
        first_closer[second] = False

        keep = [item for item, closer in zip(items, first_closer) if closer]
        move = [item for item, closer in zip(items, first_closer)
                if not closer]

        new_index = len(self._nodes)
        new_node = CFNode(node.is_leaf, self.n_features, parent=node.parent)
        self._nodes.append(new_node)
        if node.is_leaf:
            node.entries = keep
            new_node.entries = move
            node.cf = _sum_cf(keep, self.n_features)
            new_node.cf = _sum_cf(move, self.n_features)

            new_node.prev_leaf = index
            new_node.next_leaf = node.next_leaf
            if node.next_leaf != _NO_NODE:
                self._nodes[node.next_leaf].prev_leaf = new_index
            node.next_leaf = new_index
        else:
            node.children = keep
            new_node.children = move
            for child in move:
                self._nodes[child].parent = new_index
            node.cf = _sum_cf([self._nodes[c].cf for c in keep],
                              self.n_features)
            new_node.cf = _sum_cf([self._nodes[c].cf for c in move],
                                  self.n_features)

        if node.parent == _NO_NODE:
            root_index = len(self._nodes)
            root = CFNode(False, self.n_features)
            root.children = [index, new_index]
            root.cf = node.cf + new_node.cf
            self._nodes.append(root)
            node.parent = new_node.parent = root_index
            self._root = root_index
            return

        parent = self._nodes[node.parent]
        parent.children.insert(parent.children.index(index) + 1, new_index)
        if len(parent.children) > self.branching_factor:
            self._split(node.parent)

    # Rebuilding

    def _estimate_threshold(self):
        """Median over leaf nodes of their cheapest pairwise merge."""
        candidates = []
        for index in self.iter_leaf_nodes():
            entries = self._nodes[index].entries
            if len(entries) < 2:
                continue
            merged = _merged_criteria(entries, self.threshold_criterion)
            upper = np.triu_indices(len(entries), k=1)
            candidates.append(merged[upper].min())
        estimate = float(np.median(candidates)) if candidates else 0.0
        return max(estimate, self.threshold * self.threshold_growth)

    def _coarsening_threshold(self):
        # Any subset lies within twice the largest distance to the global
        # centroid, which is at most sqrt(n * variance).
        cf = self._nodes[self._root].cf
        spread = max(cf.sum_of_squares
                     - np.dot(cf.linear_sum, cf.linear_sum) / cf.n, 0.0)
        slack = np.sqrt(np.finfo(np.float64).eps * cf.sum_of_squares / cf.n)
        bound = 2.0 * np.sqrt(spread) * (1.0 + 1e-6) + slack
        return max(bound, self.threshold * self.threshold_growth)

    def _rebuild(self):
        attempts = 0
        while self.n_leaf_entries > self.max_leaves:
            attempts += 1
            new_threshold = None
            if attempts <= self.max_rebuilds:
                new_threshold = self._estimate_threshold()
                if not new_threshold > self.threshold:
                    new_threshold = None
            if new_threshold is None:
                new_threshold = self._coarsening_threshold()
                warnings.warn(
                    "CF-tree rebuild could not reduce %d leaf entries below "
                    "max_leaves=%d after %d attempts; raising the threshold "
                    "to %g so that all entries are absorbed."
                    % (self.n_leaf_entries, self.max_leaves, attempts,
                       new_threshold), ThresholdCoarseningWarning)

            LOGGER.debug("Rebuilding CF-tree with %d leaf entries, threshold "
                         "%g -> %g", self.n_leaf_entries, self.threshold,
                         new_threshold)
            entries = list(self.iter_leaves())
            self.threshold = new_threshold
            self._reset()
            for entry in entries:
                self._insert_entry(entry)
            self.n_rebuilds += 1

        LOGGER.debug("CF-tree rebuilt to %d leaf entries in %d nodes",
                     self.n_leaf_entries, self.n_nodes)

    # Lookup

    def find_leaf(self, x):
        """Return the leaf entry closest to ``x`` without modifying the tree.

        The descent is the same greedy one used for insertion, so the
        result is not necessarily the globally closest leaf entry.
        """
        x = self._check_vector(x)
        if self.n_leaf_entries == 0:
            raise ValueError("Cannot look up a vector in an empty CF-tree.")
        leaf = self._nodes[self._descend(x)[-1]]
        return leaf.entries[self._closest(leaf.entries, x)]

"""
cfbirch - BIRCH clustering with a weighted k-means global step.

The data is summarized in a bounded CF-tree of clustering features and the
leaf entries of the tree are clustered with weighted Lloyd k-means seeded by
k-means++.

- BIRCHWKMeans: scikit-learn estimator running the whole pipeline
- CFTree, ClusteringFeature: the summarization stage
- weighted_kmeans_plusplus, WeightedLloydKMeans: the weighted k-means stage
- WCluster, KMeansModel: result types
"""

__version__ = "0.1.0"

from ._birch import BIRCHWKMeans
from ._cf import ClusteringFeature
from ._cftree import CFNode, CFTree
from ._cluster import KMeansModel, WCluster
from ._kmeans_plusplus import weighted_kmeans_plusplus
from ._lloyd import LloydState, WeightedLloydKMeans

__all__ = [
    "BIRCHWKMeans",
    "CFNode",
    "CFTree",
    "ClusteringFeature",
    "KMeansModel",
    "LloydState",
    "WCluster",
    "WeightedLloydKMeans",
    "weighted_kmeans_plusplus",
]

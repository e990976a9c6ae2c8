"""
The :mod:`cfbirch.exceptions` module includes all custom warnings and error
classes used across cfbirch.
"""

__all__ = [
    "InternalConsistencyError",
    "SeedingOverflowError",
    "ThresholdCoarseningWarning",
]


class InternalConsistencyError(RuntimeError):
    """Raised when a record's nearest leaf entry is owned by no cluster.

    The leaf entries of a fitted tree are partitioned among the final
    clusters, so this points at a broken tree or a corrupted assignment
    rather than at bad input.
    """


class SeedingOverflowError(OverflowError):
    """Raised when the k-means++ weight sum is not representable.

    This happens for pathological input scales where the squared distances
    overflow the floating point range.
    """


class ThresholdCoarseningWarning(UserWarning):
    """Warning used when the CF-tree gives up estimating thresholds.

    The tree then raises its threshold to a bound that absorbs every leaf
    entry, which keeps memory bounded at the cost of a very coarse summary.
    Decrease ``threshold_growth`` or raise ``max_leaves`` to avoid it.
    """

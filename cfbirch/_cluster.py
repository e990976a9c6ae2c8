"""Result types of the weighted k-means stage."""

from dataclasses import dataclass
from typing import Any, Optional, TextIO, Tuple

import numpy as np


@dataclass(frozen=True, eq=False)
class KMeansModel:
    """Mean vector and variance of a cluster."""

    mean: np.ndarray
    variance: float

    def __post_init__(self):
        mean = np.array(self.mean, dtype=np.float64)
        mean.setflags(write=False)
        object.__setattr__(self, "mean", mean)
        object.__setattr__(self, "variance", float(self.variance))

    def write_to_text(self, out: TextIO, label: Optional[str] = None) -> None:
        prefix = "%s " % label if label else ""
        out.write("# %sMean: %s\n" % (
            prefix, " ".join(repr(float(v)) for v in self.mean)))
        out.write("# %sVariance: %r\n" % (prefix, self.variance))


@dataclass(frozen=True, eq=False)
class WCluster:
    """A final cluster: member identifiers and the model describing them.

    Parameters
    ----------
    name : str or None
        Cluster name, ``None`` for an automatic one.

    ids : tuple
        Member identifiers, in order. For the k-means stage these are
        pseudo-point indices, after re-expansion they are record ids.

    model : KMeansModel
        Mean and variance of the cluster.
    """

    name: Optional[str]
    ids: Tuple[Any, ...]
    model: KMeansModel

    def __post_init__(self):
        object.__setattr__(self, "ids", tuple(self.ids))

    @property
    def size(self) -> int:
        return len(self.ids)

    def __len__(self):
        return len(self.ids)

    @property
    def name_automatic(self) -> str:
        return self.name if self.name is not None else "Cluster"

    def write_to_text(self, out: TextIO, label: Optional[str] = None) -> None:
        """Write name, size and model as comment lines to ``out``.

        Writing the members is left to the caller.
        """
        out.write("# Cluster name: %s\n" % self.name_automatic)
        out.write("# Cluster size: %d\n" % self.size)
        if self.model is not None:
            self.model.write_to_text(out, label)

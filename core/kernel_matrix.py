"""
Kernel Matrix Module

Binds a kernel to concrete source and target point sets.
"""

from typing import Optional
import numpy as np

from .direct import matvec
from .operators import ExpansionKernel
from .tree import as_point_array


class KernelMatrix:
    """
    The implicit matrix ``A[i, j] = G(sources[j], targets[i])``.

    When no targets are given the sources double as targets and the same
    array object is used for both.
    """

    def __init__(self, kernel: ExpansionKernel, sources: np.ndarray,
                 targets: Optional[np.ndarray] = None):
        """
        Args:
            kernel: Kernel implementing the expansion operator contract
            sources: Source points (n_s x dimension)
            targets: Target points (n_t x dimension), defaults to sources

        Raises:
            ValueError: for empty or non-finite point sets, or points whose
                dimension does not match the kernel's
        """
        self.kernel = kernel
        self.sources = as_point_array(sources, "sources")
        if targets is None:
            self.targets = self.sources
        else:
            self.targets = as_point_array(targets, "targets")

        for name, points in (("sources", self.sources), ("targets", self.targets)):
            if points.shape[1] != kernel.dimension:
                raise ValueError(f"{name} have dimension {points.shape[1]}, "
                                 f"kernel expects {kernel.dimension}")

    @property
    def shape(self):
        return len(self.targets), len(self.sources)

    @property
    def num_sources(self) -> int:
        return len(self.sources)

    @property
    def num_targets(self) -> int:
        return len(self.targets)

    def has_identical_points(self) -> bool:
        """True when sources and targets are the same point set, element-wise."""
        if self.sources is self.targets:
            return True
        return (self.sources.dtype == self.targets.dtype and
                self.sources.shape == self.targets.shape and
                bool(np.array_equal(self.sources, self.targets)))

    def matvec(self, charges: np.ndarray) -> np.ndarray:
        """Exact O(n_s * n_t) product with a charge vector."""
        return matvec(self.kernel, self.sources, charges, self.targets)

    def plan(self, config=None):
        """Build an evaluation plan for this matrix (see ``make_plan``)."""
        from .plan import make_plan
        return make_plan(self, config)

    def __repr__(self) -> str:
        return (f"KernelMatrix({type(self.kernel).__name__}, "
                f"sources={self.num_sources}, targets={self.num_targets})")

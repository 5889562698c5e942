"""
Expansion Module

Defines the series expansion containers used by the evaluator.

The coefficients' meaning belongs to the kernel that fills them; this module
only tracks the state every expansion shares: center, truncation order,
dimension and whether the expansion has been initialized.
"""

from typing import Optional
import numpy as np


class ExpansionStateError(RuntimeError):
    """An operator was applied to an expansion in an invalid state.

    This signals a programming error in the caller of the operator
    contract, never a recoverable condition.
    """


class Expansion:
    """
    Base class for FMM expansions.

    An expansion starts out uninitialized. ``initialize`` fixes its center,
    order and coefficient storage exactly once; the center and order stay
    fixed for the lifetime of the object.
    """

    kind = "expansion"

    def __init__(self, dimension: int):
        """
        Args:
            dimension: Spatial dimension of the expansion center
        """
        self.dimension = dimension
        self.center: Optional[np.ndarray] = None
        self.order: Optional[int] = None
        self.coefficients: Optional[np.ndarray] = None

    @property
    def initialized(self) -> bool:
        return self.coefficients is not None

    @property
    def num_coefficients(self) -> int:
        self.require_initialized()
        return len(self.coefficients)

    def initialize(self, center: np.ndarray, order: int, num_coefficients: int,
                   dtype=np.float64):
        """
        Fix center and order and allocate zeroed coefficients.

        Raises:
            ExpansionStateError: if the expansion was already initialized
            ValueError: if order is not positive or the center has the wrong
                dimension
        """
        if self.initialized:
            raise ExpansionStateError(f"{self!r} is already initialized")
        center = np.array(center, dtype=np.float64)
        if center.shape != (self.dimension,):
            raise ValueError(f"Expansion center must have shape ({self.dimension},), "
                             f"got {center.shape}")
        if order <= 0:
            raise ValueError("Expansion order must be positive")
        center.setflags(write=False)
        self.center = center
        self.order = int(order)
        self.coefficients = np.zeros(num_coefficients, dtype=dtype)

    def require_initialized(self):
        """Raise ExpansionStateError unless the expansion is initialized."""
        if not self.initialized:
            raise ExpansionStateError(f"{self.kind} expansion used before initialization")

    def add(self, other: 'Expansion'):
        """Add another expansion with the same center and order to this one."""
        self.require_initialized()
        other.require_initialized()
        if (type(other) is not type(self) or other.order != self.order or
                not np.array_equal(other.center, self.center)):
            raise ExpansionStateError("Cannot add expansions with different "
                                      "kind, order or center")
        self.coefficients += other.coefficients

    def __repr__(self) -> str:
        if not self.initialized:
            return f"{type(self).__name__}(uninitialized, dim={self.dimension})"
        return (f"{type(self).__name__}(center={self.center}, order={self.order}, "
                f"n={len(self.coefficients)})")


class MultipoleExpansion(Expansion):
    """
    Multipole expansion summarizing the sources of a box.

    Valid OUTSIDE the box that created it.
    """

    kind = "multipole"


class LocalExpansion(Expansion):
    """
    Local expansion accumulating far-field contributions at a target box.

    Valid INSIDE the box it represents.
    """

    kind = "local"

"""
Operators Module

The expansion operator contract a kernel must fulfil to be evaluated by the
plan:

- INITM / INITL: create a zeroed multipole / local expansion at a box
- P2M: Particle to Multipole
- M2M: Multipole to Multipole (child to parent)
- M2L: Multipole to Local (far-field conversion)
- L2L: Local to Local (parent to child)
- M2P: Multipole to Particle (direct evaluation of a multipole)
- L2P: Local to Particle
- direct: exact pointwise kernel evaluation (near field)

The public methods check the contract and dispatch to the kernel-specific
``_p2m``, ``_m2m``, ... implementations. Point arguments are batches of shape
(k, dimension); by linearity a batch call is the sum of single-point calls.
Results are accumulated in place.
"""

from abc import ABC, abstractmethod
import numpy as np

from .expansion import Expansion, ExpansionStateError, LocalExpansion, MultipoleExpansion


def _check_expansion(expansion: Expansion, kind: type, role: str):
    if not isinstance(expansion, kind):
        raise ExpansionStateError(f"{role} must be a {kind.__name__}, "
                                  f"got {type(expansion).__name__}")
    expansion.require_initialized()


def _check_center(expansion: Expansion, center: np.ndarray):
    center = np.asarray(center, dtype=np.float64)
    if center.shape != expansion.center.shape or not np.allclose(
            center, expansion.center, rtol=1e-12, atol=1e-12):
        raise ExpansionStateError(f"Center {center} does not match "
                                  f"{expansion.kind} center {expansion.center}")


def _check_offset(origin: Expansion, destination: Expansion, offset: np.ndarray):
    if origin.order != destination.order:
        raise ExpansionStateError(f"Order mismatch: {origin.kind} order {origin.order}, "
                                  f"{destination.kind} order {destination.order}")
    offset = np.asarray(offset, dtype=np.float64)
    expected = destination.center - origin.center
    scale = max(float(np.max(np.abs(expected))), 1.0)
    if offset.shape != expected.shape or not np.allclose(
            offset, expected, rtol=1e-9, atol=1e-12 * scale):
        raise ExpansionStateError(f"Offset {offset} is not destination.center - "
                                  f"origin.center = {expected}")


def _check_points(points: np.ndarray, dimension: int, role: str) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64)
    if points.ndim == 1:
        points = points.reshape(1, -1)
    if points.ndim != 2 or points.shape[1] != dimension:
        raise ValueError(f"{role} must have shape (k, {dimension}), got {points.shape}")
    return points


def _check_results(results: np.ndarray, count: int):
    if not isinstance(results, np.ndarray) or results.shape != (count,):
        raise ValueError(f"Results buffer must be an ndarray of shape ({count},)")


def _check_order(order: int):
    if order <= 0:
        raise ValueError(f"Expansion order must be positive, got {order}")


class ExpansionKernel(ABC):
    """
    Abstract base class for kernels with multipole/local expansions.

    Subclasses define ``dimension``, the coefficient layout and the
    translation operators. Operators must depend only on their arguments.
    """

    dimension: int = 3
    charge_dtype = np.float64
    result_dtype = np.float64
    coefficient_dtype = np.float64

    @abstractmethod
    def __call__(self, x: np.ndarray, y: np.ndarray) -> float:
        """
        Evaluate kernel G(x, y).

        Args:
            x: Source point coordinates
            y: Target point coordinates
        """
        pass

    @abstractmethod
    def direct(self, sources: np.ndarray, targets: np.ndarray) -> np.ndarray:
        """
        Kernel matrix block.

        Args:
            sources: Source points (n_s x dimension)
            targets: Target points (n_t x dimension)

        Returns:
            Matrix of shape (n_t, n_s) with entry G(sources[j], targets[i])
        """
        pass

    @abstractmethod
    def num_multipole_coefficients(self, order: int) -> int:
        pass

    @abstractmethod
    def num_local_coefficients(self, order: int) -> int:
        pass

    # INITM / INITL

    def init_multipole(self, center: np.ndarray, extent: np.ndarray,
                       order: int) -> MultipoleExpansion:
        """Create a zeroed multipole expansion for a box."""
        _check_order(order)
        multipole = MultipoleExpansion(self.dimension)
        multipole.initialize(center, order, self.num_multipole_coefficients(order),
                             dtype=self.coefficient_dtype)
        return multipole

    def init_local(self, center: np.ndarray, extent: np.ndarray,
                   order: int) -> LocalExpansion:
        """Create a zeroed local expansion for a box."""
        _check_order(order)
        local = LocalExpansion(self.dimension)
        local.initialize(center, order, self.num_local_coefficients(order),
                         dtype=self.coefficient_dtype)
        return local

    # Checked operators

    def p2m(self, sources: np.ndarray, charges: np.ndarray, center: np.ndarray,
            multipole: MultipoleExpansion):
        """Accumulate the sources' contribution into a multipole about ``center``."""
        _check_expansion(multipole, MultipoleExpansion, "P2M destination")
        _check_center(multipole, center)
        sources = _check_points(sources, self.dimension, "sources")
        charges = np.asarray(charges).reshape(-1)
        if len(charges) != len(sources):
            raise ValueError("P2M needs one charge per source")
        self._p2m(sources, charges, multipole)

    def m2m(self, child: MultipoleExpansion, parent: MultipoleExpansion,
            offset: np.ndarray):
        """Translate a child multipole into its parent; offset = parent - child."""
        _check_expansion(child, MultipoleExpansion, "M2M source")
        _check_expansion(parent, MultipoleExpansion, "M2M destination")
        _check_offset(child, parent, offset)
        self._m2m(child, parent, np.asarray(offset, dtype=np.float64))

    def m2l(self, multipole: MultipoleExpansion, local: LocalExpansion,
            offset: np.ndarray):
        """Convert a multipole into a local expansion; offset = target - source."""
        _check_expansion(multipole, MultipoleExpansion, "M2L source")
        _check_expansion(local, LocalExpansion, "M2L destination")
        _check_offset(multipole, local, offset)
        self._m2l(multipole, local, np.asarray(offset, dtype=np.float64))

    def l2l(self, parent: LocalExpansion, child: LocalExpansion,
            offset: np.ndarray):
        """Translate a parent local into a child local; offset = child - parent."""
        _check_expansion(parent, LocalExpansion, "L2L source")
        _check_expansion(child, LocalExpansion, "L2L destination")
        _check_offset(parent, child, offset)
        self._l2l(parent, child, np.asarray(offset, dtype=np.float64))

    def m2p(self, multipole: MultipoleExpansion, center: np.ndarray,
            targets: np.ndarray, results: np.ndarray):
        """Evaluate a multipole at the targets, accumulating into ``results``."""
        _check_expansion(multipole, MultipoleExpansion, "M2P source")
        _check_center(multipole, center)
        targets = _check_points(targets, self.dimension, "targets")
        _check_results(results, len(targets))
        self._m2p(multipole, targets, results)

    def l2p(self, local: LocalExpansion, center: np.ndarray,
            targets: np.ndarray, results: np.ndarray):
        """Evaluate a local expansion at the targets, accumulating into ``results``."""
        _check_expansion(local, LocalExpansion, "L2P source")
        _check_center(local, center)
        targets = _check_points(targets, self.dimension, "targets")
        _check_results(results, len(targets))
        self._l2p(local, targets, results)

    # Kernel-specific implementations

    @abstractmethod
    def _p2m(self, sources: np.ndarray, charges: np.ndarray,
             multipole: MultipoleExpansion):
        pass

    @abstractmethod
    def _m2m(self, child: MultipoleExpansion, parent: MultipoleExpansion,
             offset: np.ndarray):
        pass

    @abstractmethod
    def _m2l(self, multipole: MultipoleExpansion, local: LocalExpansion,
             offset: np.ndarray):
        pass

    @abstractmethod
    def _l2l(self, parent: LocalExpansion, child: LocalExpansion,
             offset: np.ndarray):
        pass

    @abstractmethod
    def _m2p(self, multipole: MultipoleExpansion, targets: np.ndarray,
             results: np.ndarray):
        pass

    @abstractmethod
    def _l2p(self, local: LocalExpansion, targets: np.ndarray,
             results: np.ndarray):
        pass

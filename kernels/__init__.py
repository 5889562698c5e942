"""
FMM Kernels Module

Reference kernels implementing the expansion operator contract.

- LaplaceKernel: 3D Laplace, G(x, y) = 1/(4*pi*|x - y|), Cartesian Taylor
  expansions over multi-indices of total degree <= order
- LaplaceKernel2D: 2D Laplace, G(x, y) = -log(|x - y|)/(2*pi), complex
  multipole/local series
"""

from functools import lru_cache
from itertools import product
from typing import Dict, Tuple
import numpy as np
from scipy.special import comb

from ..core.expansion import LocalExpansion, MultipoleExpansion
from ..core.operators import ExpansionKernel


# ============================================================================
# 3D Laplace, Cartesian Taylor expansions
# ============================================================================

class _CartesianTables:
    """
    Multi-index bookkeeping for Cartesian expansions of a given order.

    Multi-indices are graded: every index of total degree n precedes every
    index of degree n + 1, so ``indices[:num_coefficients]`` are exactly the
    indices of degree <= order and each degree is a contiguous slice.

    Conventions, with T_k(x) = (-1)^|k| D^k (1/|x|) / k!:
        multipole  M_a = sum_j q_j (s_j - c)^a,   phi(t) = sum_a M_a T_a(t - c)
        local      phi(t) = sum_b L_b (t - c)^b
    """

    def __init__(self, dimension: int, order: int):
        self.dimension = dimension
        self.order = order

        # Indices up to 2*order are needed by M2L
        indices = sorted(
            (k for k in product(range(2 * order + 1), repeat=dimension)
             if sum(k) <= 2 * order),
            key=lambda k: (sum(k), tuple(-x for x in k)),
        )
        self.indices = np.array(indices, dtype=np.int64)
        self.degrees = self.indices.sum(axis=1)
        self.lookup: Dict[Tuple[int, ...], int] = {k: i for i, k in enumerate(indices)}
        self.num_coefficients = int(np.sum(self.degrees <= order))
        self.degree_slices = [
            slice(int(np.searchsorted(self.degrees, n, side='left')),
                  int(np.searchsorted(self.degrees, n, side='right')))
            for n in range(2 * order + 1)
        ]

        # Recurrence neighbours k - e_i and k - 2e_i; a missing neighbour
        # points at the zero sentinel column len(indices)
        sentinel = len(indices)
        self.minus_one = np.full((sentinel, dimension), sentinel, dtype=np.int64)
        self.minus_two = np.full((sentinel, dimension), sentinel, dtype=np.int64)
        for pos, k in enumerate(indices):
            for i in range(dimension):
                if k[i] >= 1:
                    self.minus_one[pos, i] = self.lookup[k[:i] + (k[i] - 1,) + k[i + 1:]]
                if k[i] >= 2:
                    self.minus_two[pos, i] = self.lookup[k[:i] + (k[i] - 2,) + k[i + 1:]]

        self._build_translation_tables()

    def _build_translation_tables(self):
        n = self.num_coefficients
        small_indices = [tuple(int(x) for x in k) for k in self.indices[:n]]

        # (big, small, big - small, C(big, small)) for small <= big componentwise
        big, small, diff, coef = [], [], [], []
        for a, ka in enumerate(small_indices):
            for b, kb in enumerate(small_indices):
                if all(x >= y for x, y in zip(ka, kb)):
                    big.append(a)
                    small.append(b)
                    diff.append(self.lookup[tuple(x - y for x, y in zip(ka, kb))])
                    coef.append(np.prod([comb(x, y, exact=True) for x, y in zip(ka, kb)]))
        self.shift_big = np.array(big, dtype=np.int64)
        self.shift_small = np.array(small, dtype=np.int64)
        self.shift_diff = np.array(diff, dtype=np.int64)
        self.shift_coef = np.array(coef, dtype=np.float64)

        # M2L: L_b = (-1)^|b| sum_a C(a + b, a) M_a T_{a+b}(R), stored as [b, a]
        self.m2l_sum = np.empty((n, n), dtype=np.int64)
        self.m2l_coef = np.empty((n, n), dtype=np.float64)
        for b, kb in enumerate(small_indices):
            sign = -1.0 if sum(kb) % 2 else 1.0
            for a, ka in enumerate(small_indices):
                self.m2l_sum[b, a] = self.lookup[tuple(x + y for x, y in zip(ka, kb))]
                self.m2l_coef[b, a] = sign * np.prod(
                    [comb(x + y, x, exact=True) for x, y in zip(ka, kb)])

    def monomials(self, y: np.ndarray) -> np.ndarray:
        """y^k for every point row of y and every index of degree <= order."""
        indices = self.indices[:self.num_coefficients]
        return np.prod(y[:, None, :] ** indices[None, :, :], axis=2)

    def taylor_coefficients(self, x: np.ndarray, max_degree: int) -> np.ndarray:
        """
        T_k(x) for all indices of degree <= max_degree.

        Uses the recurrence
            |k| r^2 T_k = (2|k| - 1) sum_i x_i T_{k - e_i} - (|k| - 1) sum_i T_{k - 2e_i}

        Args:
            x: Points (m x dimension), none at the origin
            max_degree: Highest total degree needed (<= 2 * order)

        Returns:
            Array of shape (m, number of indices of degree <= max_degree)
        """
        m = x.shape[0]
        r2 = np.sum(x * x, axis=1)
        stop = self.degree_slices[max_degree].stop
        coeffs = np.zeros((m, len(self.indices) + 1))
        coeffs[:, 0] = 1.0 / np.sqrt(r2)

        for n in range(1, max_degree + 1):
            sel = self.degree_slices[n]
            s1 = np.zeros((m, sel.stop - sel.start))
            s2 = np.zeros_like(s1)
            for i in range(self.dimension):
                s1 += x[:, i, None] * coeffs[:, self.minus_one[sel, i]]
                s2 += coeffs[:, self.minus_two[sel, i]]
            coeffs[:, sel] = ((2 * n - 1) * s1 - (n - 1) * s2) / (n * r2[:, None])

        return coeffs[:, :stop]


@lru_cache(maxsize=None)
def _cartesian_tables(dimension: int, order: int) -> _CartesianTables:
    return _CartesianTables(dimension, order)


class LaplaceKernel(ExpansionKernel):
    """
    Laplace kernel (Green's function for Laplace equation) in 3D.

    G(x, y) = 1/(4*pi*|x - y|)

    Expansions are Cartesian Taylor series truncated at total degree
    ``order``; a multipole of order p has C(p + 3, 3) coefficients.
    """

    dimension = 3

    def __init__(self):
        self._scale = 1.0 / (4.0 * np.pi)

    def __call__(self, x: np.ndarray, y: np.ndarray) -> float:
        """Evaluate Laplace kernel."""
        r = np.linalg.norm(np.asarray(x) - np.asarray(y))

        if r < 1e-14:
            return 0.0  # Self-interaction

        return self._scale / r

    def direct(self, sources: np.ndarray, targets: np.ndarray) -> np.ndarray:
        diff = targets[:, None, :] - sources[None, :, :]
        r = np.sqrt(np.sum(diff * diff, axis=2))
        nonzero = r >= 1e-14
        return np.where(nonzero, self._scale / np.where(nonzero, r, 1.0), 0.0)

    def num_multipole_coefficients(self, order: int) -> int:
        return _cartesian_tables(self.dimension, order).num_coefficients

    def num_local_coefficients(self, order: int) -> int:
        return _cartesian_tables(self.dimension, order).num_coefficients

    def _p2m(self, sources: np.ndarray, charges: np.ndarray,
             multipole: MultipoleExpansion):
        tables = _cartesian_tables(self.dimension, multipole.order)
        multipole.coefficients += charges @ tables.monomials(sources - multipole.center)

    def _m2m(self, child: MultipoleExpansion, parent: MultipoleExpansion,
             offset: np.ndarray):
        # M'_a = sum_{b <= a} C(a, b) M_b (c_child - c_parent)^(a - b)
        tables = _cartesian_tables(self.dimension, child.order)
        shift = tables.monomials(-offset[None, :])[0]
        contrib = tables.shift_coef * child.coefficients[tables.shift_small] * shift[tables.shift_diff]
        np.add.at(parent.coefficients, tables.shift_big, contrib)

    def _m2l(self, multipole: MultipoleExpansion, local: LocalExpansion,
             offset: np.ndarray):
        tables = _cartesian_tables(self.dimension, multipole.order)
        taylor = tables.taylor_coefficients(offset[None, :], 2 * multipole.order)[0]
        translation = tables.m2l_coef * taylor[tables.m2l_sum]
        local.coefficients += translation @ multipole.coefficients

    def _l2l(self, parent: LocalExpansion, child: LocalExpansion,
             offset: np.ndarray):
        # L'_g = sum_{b >= g} C(b, g) L_b (c_child - c_parent)^(b - g)
        tables = _cartesian_tables(self.dimension, parent.order)
        shift = tables.monomials(offset[None, :])[0]
        contrib = tables.shift_coef * parent.coefficients[tables.shift_big] * shift[tables.shift_diff]
        np.add.at(child.coefficients, tables.shift_small, contrib)

    def _m2p(self, multipole: MultipoleExpansion, targets: np.ndarray,
             results: np.ndarray):
        tables = _cartesian_tables(self.dimension, multipole.order)
        taylor = tables.taylor_coefficients(targets - multipole.center, multipole.order)
        results += self._scale * (taylor @ multipole.coefficients)

    def _l2p(self, local: LocalExpansion, targets: np.ndarray,
             results: np.ndarray):
        tables = _cartesian_tables(self.dimension, local.order)
        results += self._scale * (tables.monomials(targets - local.center) @ local.coefficients)


# ============================================================================
# 2D Laplace, complex series
# ============================================================================

class LaplaceKernel2D(ExpansionKernel):
    """
    Laplace kernel in 2D.

    G(x, y) = -log(|x - y|)/(2*pi)

    Points are treated as complex numbers z. With psi(z) = sum_j q_j log(z - z_j)
    the potential is -Re(psi)/(2*pi). A multipole of order p about c is
        psi(z) = a_0 log(z - c) + sum_{k=1}^p a_k / (z - c)^k
    and a local expansion is psi(z) = sum_{l=0}^p b_l (z - c)^l.
    Charges must be real.
    """

    dimension = 2
    coefficient_dtype = np.complex128

    def __init__(self):
        self._scale = -1.0 / (2.0 * np.pi)

    @staticmethod
    def _to_complex(points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64)
        return points[..., 0] + 1j * points[..., 1]

    def __call__(self, x: np.ndarray, y: np.ndarray) -> float:
        """Evaluate Laplace kernel."""
        r = np.linalg.norm(np.asarray(x) - np.asarray(y))

        if r < 1e-14:
            return 0.0  # Self-interaction

        return self._scale * np.log(r)

    def direct(self, sources: np.ndarray, targets: np.ndarray) -> np.ndarray:
        diff = targets[:, None, :] - sources[None, :, :]
        r = np.sqrt(np.sum(diff * diff, axis=2))
        nonzero = r >= 1e-14
        return np.where(nonzero, self._scale * np.log(np.where(nonzero, r, 1.0)), 0.0)

    def num_multipole_coefficients(self, order: int) -> int:
        return order + 1

    def num_local_coefficients(self, order: int) -> int:
        return order + 1

    def _p2m(self, sources: np.ndarray, charges: np.ndarray,
             multipole: MultipoleExpansion):
        z = self._to_complex(sources) - self._to_complex(multipole.center)
        a = multipole.coefficients
        a[0] += np.sum(charges)
        zk = np.ones_like(z)
        for k in range(1, multipole.order + 1):
            zk = zk * z
            a[k] -= np.sum(charges * zk) / k

    def _m2m(self, child: MultipoleExpansion, parent: MultipoleExpansion,
             offset: np.ndarray):
        a = child.coefficients
        b = parent.coefficients
        p = child.order
        z0 = -self._to_complex(offset)
        powers = z0 ** np.arange(p + 1)

        b[0] += a[0]
        for l in range(1, p + 1):
            k = np.arange(1, l + 1)
            b[l] += (-a[0] * powers[l] / l +
                     np.sum(a[k] * powers[l - k] * comb(l - 1, k - 1)))

    def _m2l(self, multipole: MultipoleExpansion, local: LocalExpansion,
             offset: np.ndarray):
        a = multipole.coefficients
        b = local.coefficients
        p = multipole.order
        # Multipole center relative to the local center
        z0 = -self._to_complex(offset)
        k = np.arange(1, p + 1)
        terms = a[k] * (-1.0) ** k / z0 ** k

        b[0] += a[0] * np.log(-z0) + np.sum(terms)
        for l in range(1, p + 1):
            b[l] += (-a[0] / (l * z0 ** l) +
                     np.sum(terms * comb(l + k - 1, k - 1)) / z0 ** l)

    def _l2l(self, parent: LocalExpansion, child: LocalExpansion,
             offset: np.ndarray):
        a = parent.coefficients
        b = child.coefficients
        p = parent.order
        d = self._to_complex(offset)
        powers = d ** np.arange(p + 1)

        for l in range(p + 1):
            k = np.arange(l, p + 1)
            b[l] += np.sum(a[k] * comb(k, l) * powers[k - l])

    def _m2p(self, multipole: MultipoleExpansion, targets: np.ndarray,
             results: np.ndarray):
        a = multipole.coefficients
        z = self._to_complex(targets) - self._to_complex(multipole.center)
        psi = a[0] * np.log(z)
        inv = 1.0 / z
        inv_k = np.ones_like(z)
        for k in range(1, multipole.order + 1):
            inv_k = inv_k * inv
            psi += a[k] * inv_k
        results += self._scale * psi.real

    def _l2p(self, local: LocalExpansion, targets: np.ndarray,
             results: np.ndarray):
        b = local.coefficients
        z = self._to_complex(targets) - self._to_complex(local.center)
        # Horner's scheme
        psi = np.full_like(z, b[-1])
        for l in range(local.order - 1, -1, -1):
            psi = psi * z + b[l]
        results += self._scale * psi.real


def create_kernel(name: str, **kwargs) -> ExpansionKernel:
    """
    Factory function to create kernel instances.

    Args:
        name: Kernel type name ('laplace')
        **kwargs: Kernel-specific parameters (``dimension``: 2 or 3)

    Returns:
        Kernel instance
    """
    name = name.lower()

    if name == 'laplace':
        dimension = kwargs.get('dimension', 3)
        if dimension == 3:
            return LaplaceKernel()
        if dimension == 2:
            return LaplaceKernel2D()
        raise ValueError("Dimension must be 2 or 3")
    else:
        raise ValueError(f"Unknown kernel type: {name}")


__all__ = [
    'LaplaceKernel',
    'LaplaceKernel2D',
    'create_kernel',
]

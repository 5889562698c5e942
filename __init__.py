"""
Kernel Matrix Evaluation Plans

Approximate evaluation of kernel matrix-vector products
r_i = sum_j G(s_j, t_i) c_j with the Fast Multipole Method.

A plan is built once for a kernel bound to source and target points:
- Arena-based 2^D-tree per point set (one shared tree when sources and
  targets coincide) with the permutation to tree order
- Dual Tree Traversal splitting box pairs into far and near field
- Upward pass (P2M, M2M), interaction pass (M2L or M2P, P2P) and
  downward pass (L2L, L2P)
- FMM and treecode evaluation modes
- Reference Laplace kernels in 2D and 3D

Charges and results are always in the caller's original point order.
"""

from .core import (
    Box,
    Tree,
    TreeConfig,
    Expansion,
    ExpansionStateError,
    MultipoleExpansion,
    LocalExpansion,
    ExpansionKernel,
    KernelMatrix,
    SingleTreeContext,
    DualTreeContext,
    FMMEvaluator,
    TreecodeEvaluator,
    PlanConfig,
    PlanBase,
    Plan,
    make_plan,
    matvec,
)
from .kernels import (
    LaplaceKernel,
    LaplaceKernel2D,
    create_kernel,
)

__version__ = '0.1.0'

__all__ = [
    # Core classes
    'Box',
    'Tree',
    'TreeConfig',
    'Expansion',
    'ExpansionStateError',
    'MultipoleExpansion',
    'LocalExpansion',
    'ExpansionKernel',
    'KernelMatrix',
    'SingleTreeContext',
    'DualTreeContext',
    'FMMEvaluator',
    'TreecodeEvaluator',
    'PlanConfig',
    'PlanBase',
    'Plan',
    'make_plan',
    'matvec',
    # Kernels
    'LaplaceKernel',
    'LaplaceKernel2D',
    'create_kernel',
]

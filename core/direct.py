"""
Direct Evaluation Module

Exact O(N_s * N_t) kernel summation. Used as the reference evaluator for
correctness checks and for the near-field (P2P) interactions of the plan.
"""

from typing import Optional
import numpy as np

from .operators import ExpansionKernel

# Number of targets evaluated per block; bounds the size of the kernel block
_BLOCK_SIZE = 1024


def p2p(kernel: ExpansionKernel, sources: np.ndarray, charges: np.ndarray,
        targets: np.ndarray, results: np.ndarray):
    """
    Accumulate the direct interaction of ``sources`` with ``targets``.

    Args:
        kernel: Kernel providing the ``direct`` block evaluation
        sources: Source points (n_s x dimension)
        charges: Source charges (n_s,)
        targets: Target points (n_t x dimension)
        results: Buffer of shape (n_t,), accumulated in place
    """
    for start in range(0, len(targets), _BLOCK_SIZE):
        stop = start + _BLOCK_SIZE
        results[start:stop] += kernel.direct(sources, targets[start:stop]) @ charges


def matvec(kernel: ExpansionKernel, sources: np.ndarray, charges: np.ndarray,
           targets: np.ndarray, results: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Exact reference product ``results[i] += sum_j G(sources[j], targets[i]) * charges[j]``.

    Args:
        kernel: Kernel to evaluate
        sources: Source points (n_s x dimension)
        charges: Source charges (n_s,)
        targets: Target points (n_t x dimension)
        results: Optional buffer of shape (n_t,) to accumulate into

    Returns:
        The results buffer
    """
    sources = np.asarray(sources, dtype=np.float64)
    targets = np.asarray(targets, dtype=np.float64)
    charges = np.asarray(charges)

    if len(charges) != len(sources):
        raise ValueError(f"Expected {len(sources)} charges, got {len(charges)}")

    if results is None:
        dtype = np.result_type(kernel.result_dtype, charges.dtype)
        results = np.zeros(len(targets), dtype=dtype)
    elif results.shape != (len(targets),):
        raise ValueError(f"Expected a results buffer of shape ({len(targets)},), "
                         f"got {results.shape}")

    p2p(kernel, sources, charges, targets, results)
    return results

"""
Plan Module

The façade callers use: a kernel matrix bound to its trees and evaluator.
"""

from abc import ABC, abstractmethod
from typing import Optional, Type
import logging
import numpy as np
from dataclasses import dataclass

from .context import DualTreeContext, SingleTreeContext, TreeContext
from .evaluator import make_evaluator
from .kernel_matrix import KernelMatrix
from .tree import TreeConfig

logger = logging.getLogger(__name__)

EVALUATION_MODES = ('fmm', 'treecode')


@dataclass
class PlanConfig:
    """Configuration for plan construction."""
    evaluation_mode: str = 'fmm'   # 'fmm' or 'treecode'
    expansion_order: int = 5       # Order of multipole/local expansions
    print_tree: bool = False       # Log the source/target trees at construction
    theta: float = 0.5             # MAC opening parameter
    ncrit: int = 32                # Maximum points per leaf
    max_depth: int = 16            # Maximum tree depth
    force_dual_tree: bool = False  # Build two trees even for identical point sets

    def __post_init__(self):
        """Validate configuration."""
        if self.evaluation_mode not in EVALUATION_MODES:
            raise ValueError(f"Evaluation mode must be one of {EVALUATION_MODES}")
        if (isinstance(self.expansion_order, bool) or
                not isinstance(self.expansion_order, (int, np.integer))):
            raise ValueError("Expansion order must be an integer")
        if self.expansion_order <= 0:
            raise ValueError("Expansion order must be positive")
        if not 0.0 < self.theta <= 1.0:
            raise ValueError("Theta must be in (0, 1]")
        TreeConfig(max_depth=self.max_depth, ncrit=self.ncrit)

    @property
    def tree_config(self) -> TreeConfig:
        return TreeConfig(max_depth=self.max_depth, ncrit=self.ncrit)


class PlanBase(ABC):
    """Interface of an evaluation plan."""

    @abstractmethod
    def execute(self, charges: np.ndarray,
                results: Optional[np.ndarray] = None) -> np.ndarray:
        """Execute this plan."""
        pass

    @abstractmethod
    def sources(self) -> np.ndarray:
        """The potentially reordered sources for this plan."""
        pass

    @abstractmethod
    def targets(self) -> np.ndarray:
        """The potentially reordered targets for this plan."""
        pass


class Plan(PlanBase):
    """
    Evaluation plan for a kernel matrix.

    Trees, permutations and interaction lists are built once at construction;
    ``execute`` may be called repeatedly with different charges. Charges and
    results are always in the caller's original point order.
    """

    def __init__(self, context_type: Type[TreeContext], kernel_matrix: KernelMatrix,
                 config: PlanConfig):
        """
        Args:
            context_type: SingleTreeContext or DualTreeContext
            kernel_matrix: Kernel bound to sources and targets
            config: Plan configuration
        """
        self.log = logging.getLogger(self.__class__.__module__)
        self.config = config
        self.kernel_matrix = kernel_matrix
        self.context = context_type(kernel_matrix, config.tree_config)
        self.evaluator = make_evaluator(self.context, config)

        if config.print_tree:
            self.log.info("Source Tree:\n%s", self.context.source_tree.format())
            self.log.info("Target Tree:\n%s", self.context.target_tree.format())

    @property
    def kernel(self):
        return self.kernel_matrix.kernel

    @property
    def source_permutation(self) -> np.ndarray:
        """``source_permutation[k]`` is the original index of ``sources()[k]``."""
        return self.context.source_permutation

    @property
    def target_permutation(self) -> np.ndarray:
        """``target_permutation[k]`` is the original index of ``targets()[k]``."""
        return self.context.target_permutation

    def execute(self, charges: np.ndarray,
                results: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Compute ``results[i] += sum_j G(sources[j], targets[i]) * charges[j]``.

        Args:
            charges: Charges in original source order
            results: Optional buffer in original target order; accumulated
                into when given, allocated zeroed otherwise

        Returns:
            The results buffer

        Raises:
            ValueError: if the charges or results length does not match, or
                the charges are not castable to the kernel's charge dtype
        """
        charges = np.asarray(charges)
        if results is None:
            results = np.zeros(self.context.num_targets,
                               dtype=self.kernel.result_dtype)
        return self.context.execute(charges, results, self.evaluator)

    def sources(self) -> np.ndarray:
        return np.array(self.context.source_points)

    def targets(self) -> np.ndarray:
        return np.array(self.context.target_points)

    def __repr__(self) -> str:
        return (f"Plan({type(self.context).__name__}, "
                f"{type(self.evaluator).__name__}, {self.kernel_matrix!r})")


def make_plan(kernel_matrix: KernelMatrix,
              config: Optional[PlanConfig] = None) -> Plan:
    """
    Build an evaluation plan, choosing the tree context once.

    A single shared tree is used when the sources and targets are the same
    point set (identical object, or equal dtype, shape and elements);
    otherwise, or when ``config.force_dual_tree`` is set, two trees are built.

    Args:
        kernel_matrix: Kernel bound to sources and targets
        config: Plan configuration (defaults to PlanConfig())

    Returns:
        The constructed plan
    """
    if config is None:
        config = PlanConfig()

    if not config.force_dual_tree and kernel_matrix.has_identical_points():
        logger.info("Using single tree context")
        return Plan(SingleTreeContext, kernel_matrix, config)

    logger.info("Using dual tree context")
    return Plan(DualTreeContext, kernel_matrix, config)

"""
Context Module

Owns the tree(s) built over the source and target points and the
permutations between original order and tree order.

Two variants share one interface:
- SingleTreeContext: sources and targets are the same points, one tree
- DualTreeContext: independent source and target trees
"""

from abc import ABC, abstractmethod
from typing import Dict
import logging
import numpy as np

from .kernel_matrix import KernelMatrix
from .tree import InteractionLists, Tree, TreeConfig, dual_tree_traversal


class TreeContext(ABC):
    """
    Base class for tree contexts.

    The trees and permutations are built once and are read-only afterwards;
    re-executing with new charges reuses them.
    """

    def __init__(self, kernel_matrix: KernelMatrix, tree_config: TreeConfig):
        self.log = logging.getLogger(self.__class__.__module__)
        self.kernel_matrix = kernel_matrix
        self.kernel = kernel_matrix.kernel
        self.tree_config = tree_config
        self._interaction_lists: Dict[float, InteractionLists] = {}

    @property
    @abstractmethod
    def source_tree(self) -> Tree:
        pass

    @property
    @abstractmethod
    def target_tree(self) -> Tree:
        pass

    @property
    @abstractmethod
    def is_single_tree(self) -> bool:
        pass

    @property
    def num_sources(self) -> int:
        return self.source_tree.num_points

    @property
    def num_targets(self) -> int:
        return self.target_tree.num_points

    @property
    def source_points(self) -> np.ndarray:
        """Sources in tree order (read-only)."""
        return self.source_tree.points

    @property
    def target_points(self) -> np.ndarray:
        """Targets in tree order (read-only)."""
        return self.target_tree.points

    @property
    def source_permutation(self) -> np.ndarray:
        """Original source index of each tree-order position."""
        return self.source_tree.permutation

    @property
    def target_permutation(self) -> np.ndarray:
        """Original target index of each tree-order position."""
        return self.target_tree.permutation

    def interaction_lists(self, theta: float) -> InteractionLists:
        """Far/near box pairs for the given opening parameter (cached)."""
        if theta not in self._interaction_lists:
            lists = dual_tree_traversal(self.source_tree, self.target_tree, theta)
            self.log.debug("Interaction lists (theta=%g): %d far pairs, %d near pairs",
                           theta, len(lists.far), len(lists.near))
            self._interaction_lists[theta] = lists
        return self._interaction_lists[theta]

    def execute(self, charges: np.ndarray, results: np.ndarray, evaluator):
        """
        Evaluate the plan for ``charges`` and accumulate into ``results``.

        Charges are permuted into source-tree order, the evaluator fills a
        zero-initialized tree-order buffer, and that buffer is scattered back
        into original target order and ADDED to ``results``. Callers wanting
        plain results pass a zero-initialized buffer.

        Args:
            charges: Charges in original source order (n_s,)
            results: Buffer in original target order (n_t,), accumulated in place
            evaluator: Callable ``evaluator(tree_charges, tree_results)``

        Raises:
            ValueError: if the charges or results length does not match the
                source or target count, or the charges cannot be cast to the
                kernel's charge dtype
        """
        charges = np.asarray(charges)
        if charges.shape != (self.num_sources,):
            raise ValueError(f"Expected {self.num_sources} charges, "
                             f"got array of shape {charges.shape}")
        if not np.can_cast(charges.dtype, self.kernel.charge_dtype, 'same_kind'):
            raise ValueError(f"Charges of dtype {charges.dtype} are not supported, "
                             f"kernel expects {np.dtype(self.kernel.charge_dtype)}")
        if not isinstance(results, np.ndarray) or results.shape != (self.num_targets,):
            raise ValueError(f"Results buffer must be an ndarray of shape "
                             f"({self.num_targets},)")

        tree_charges = charges[self.source_permutation]
        tree_results = np.zeros(self.num_targets, dtype=self.kernel.result_dtype)

        evaluator(tree_charges, tree_results)

        # The permutation is a bijection, so the fancy-indexed add is safe
        results[self.target_permutation] += tree_results
        return results


class SingleTreeContext(TreeContext):
    """Sources and targets are the same points; one tree, one permutation."""

    def __init__(self, kernel_matrix: KernelMatrix, tree_config: TreeConfig):
        super().__init__(kernel_matrix, tree_config)
        self._tree = Tree(kernel_matrix.sources, tree_config)

    @property
    def source_tree(self) -> Tree:
        return self._tree

    @property
    def target_tree(self) -> Tree:
        return self._tree

    @property
    def is_single_tree(self) -> bool:
        return True


class DualTreeContext(TreeContext):
    """Independent trees over the sources and the targets."""

    def __init__(self, kernel_matrix: KernelMatrix, tree_config: TreeConfig):
        super().__init__(kernel_matrix, tree_config)
        self._source_tree = Tree(kernel_matrix.sources, tree_config)
        self._target_tree = Tree(kernel_matrix.targets, tree_config)

    @property
    def source_tree(self) -> Tree:
        return self._source_tree

    @property
    def target_tree(self) -> Tree:
        return self._target_tree

    @property
    def is_single_tree(self) -> bool:
        return False

"""
Evaluator Module

Implements the passes of the Fast Multipole Method over the tree context:

1. Upward pass: P2M at source leaves, M2M up the source tree
2. Interaction pass: far-field pairs through M2L (FMM) or M2P (treecode),
   near-field pairs through direct summation (P2P)
3. Downward pass (FMM only): L2L down the target tree, L2P at target leaves

The evaluation mode is a strategy chosen once per plan: both evaluators share
the upward pass and the near field and differ only in how far-field pairs are
applied.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import logging
import time
import numpy as np

from .context import TreeContext
from .direct import p2p
from .expansion import LocalExpansion, MultipoleExpansion


class Evaluator(ABC):
    """
    Abstract base class for plan evaluators.

    An evaluator is bound to a context; the interaction lists are computed
    once at construction. Calling the evaluator works entirely in tree order.
    Multipole and local expansions live in per-call arenas indexed by box.
    """

    def __init__(self, context: TreeContext, expansion_order: int, theta: float):
        """
        Args:
            context: Tree context owning the source and target trees
            expansion_order: Truncation order of all expansions
            theta: Multipole Acceptance Criterion parameter
        """
        self.log = logging.getLogger(self.__class__.__module__)
        self.context = context
        self.kernel = context.kernel
        self.expansion_order = expansion_order
        self.theta = theta

        self.source_tree = context.source_tree
        self.target_tree = context.target_tree
        self.interactions = context.interaction_lists(theta)

        self._multipole_boxes = self._find_multipole_boxes()
        self.statistics: Dict[str, int] = {}

    def _find_multipole_boxes(self) -> np.ndarray:
        """
        Mark the source boxes that need a multipole expansion.

        A box needs one when it is the source side of a far-field pair, or
        when an ancestor is (its multipole feeds the ancestor's M2M).
        """
        boxes = self.source_tree.boxes
        needed = np.zeros(len(boxes), dtype=bool)
        for s, _ in self.interactions.far:
            needed[s] = True

        # Arena order is breadth-first, so parents come before children
        for box in boxes[1:]:
            if needed[box.parent]:
                needed[box.index] = True
        return needed

    def __call__(self, charges: np.ndarray, results: np.ndarray):
        """
        Evaluate the interaction of all sources with all targets.

        Args:
            charges: Charges in source-tree order
            results: Buffer in target-tree order, accumulated in place
        """
        self.statistics = {op: 0 for op in
                           ('p2m', 'm2m', 'm2l', 'm2p', 'l2l', 'l2p', 'p2p')}

        start = time.perf_counter()
        multipoles = self._upward_pass(charges)
        upward_done = time.perf_counter()

        locals_ = self._interaction_pass(multipoles, charges, results)
        interaction_done = time.perf_counter()

        self._downward_pass(locals_, results)
        downward_done = time.perf_counter()

        self.log.debug(
            "%s: upward %.3fs, interaction %.3fs, downward %.3fs, operators %s",
            type(self).__name__,
            upward_done - start,
            interaction_done - upward_done,
            downward_done - interaction_done,
            self.statistics,
        )

    def _upward_pass(self, charges: np.ndarray) -> List[Optional[MultipoleExpansion]]:
        """
        Upward pass: Build multipole expansions from leaves to root.

        1. P2M: Convert source points to multipole expansions at leaves
        2. M2M: Aggregate children's multipole expansions into the parent

        Levels are processed deepest first, so every child is complete
        before its parent's M2M runs.
        """
        tree = self.source_tree
        points = tree.points
        multipoles: List[Optional[MultipoleExpansion]] = [None] * len(tree.boxes)

        for level in range(tree.get_max_level(), -1, -1):
            for box in tree.get_boxes_at_level(level):
                if not self._multipole_boxes[box.index]:
                    continue

                multipole = self.kernel.init_multipole(box.center, box.extent,
                                                       self.expansion_order)
                if box.is_leaf:
                    self.kernel.p2m(points[box.begin:box.end],
                                    charges[box.begin:box.end],
                                    box.center, multipole)
                    self.statistics['p2m'] += 1
                else:
                    for child_index in box.children:
                        child = tree.boxes[child_index]
                        self.kernel.m2m(multipoles[child_index], multipole,
                                        box.center - child.center)
                        self.statistics['m2m'] += 1

                multipoles[box.index] = multipole

        return multipoles

    def _interaction_pass(self, multipoles: List[Optional[MultipoleExpansion]],
                          charges: np.ndarray,
                          results: np.ndarray) -> List[Optional[LocalExpansion]]:
        """Apply far-field pairs (mode specific) and near-field pairs (P2P)."""
        locals_ = self._far_field(multipoles, results)
        self._near_field(charges, results)
        return locals_

    @abstractmethod
    def _far_field(self, multipoles: List[Optional[MultipoleExpansion]],
                   results: np.ndarray) -> List[Optional[LocalExpansion]]:
        pass

    def _near_field(self, charges: np.ndarray, results: np.ndarray):
        """
        Direct pass: Compute near-field interactions directly.

        P2P between every pair of leaves that is not well separated.
        """
        sources = self.source_tree.points
        targets = self.target_tree.points

        for s, t in self.interactions.near:
            source_box = self.source_tree.boxes[s]
            target_box = self.target_tree.boxes[t]
            p2p(self.kernel,
                sources[source_box.begin:source_box.end],
                charges[source_box.begin:source_box.end],
                targets[target_box.begin:target_box.end],
                results[target_box.begin:target_box.end])
            self.statistics['p2p'] += 1

    def _downward_pass(self, locals_: List[Optional[LocalExpansion]],
                       results: np.ndarray):
        """Downward pass hook; only the FMM evaluator distributes locals."""
        pass


class FMMEvaluator(Evaluator):
    """
    Full Fast Multipole Method.

    Operators: P2M → M2M → M2L → L2L → L2P
    """

    def _far_field(self, multipoles: List[Optional[MultipoleExpansion]],
                   results: np.ndarray) -> List[Optional[LocalExpansion]]:
        """M2L: convert well-separated multipoles into target-box locals."""
        tree = self.target_tree
        locals_: List[Optional[LocalExpansion]] = [None] * len(tree.boxes)

        for s, t in self.interactions.far:
            source_box = self.source_tree.boxes[s]
            target_box = tree.boxes[t]
            if locals_[t] is None:
                locals_[t] = self.kernel.init_local(target_box.center, target_box.extent,
                                                    self.expansion_order)
            self.kernel.m2l(multipoles[s], locals_[t],
                            target_box.center - source_box.center)
            self.statistics['m2l'] += 1

        return locals_

    def _downward_pass(self, locals_: List[Optional[LocalExpansion]],
                       results: np.ndarray):
        """
        Downward pass: Distribute local expansions to the targets.

        1. L2L: Propagate local expansions down the tree
        2. L2P: Evaluate leaf local expansions at the target points

        Levels are processed top-down, so a box's local is complete before
        it is translated into its children.
        """
        tree = self.target_tree
        points = tree.points

        for level in range(tree.num_levels):
            for box in tree.get_boxes_at_level(level):
                local = locals_[box.index]
                if local is None:
                    continue

                if box.is_leaf:
                    self.kernel.l2p(local, box.center,
                                    points[box.begin:box.end],
                                    results[box.begin:box.end])
                    self.statistics['l2p'] += 1
                    continue

                for child_index in box.children:
                    child = tree.boxes[child_index]
                    if locals_[child_index] is None:
                        locals_[child_index] = self.kernel.init_local(
                            child.center, child.extent, self.expansion_order)
                    self.kernel.l2l(local, locals_[child_index],
                                    child.center - box.center)
                    self.statistics['l2l'] += 1

            # Locals of this level are fully consumed
            for index in tree.boxes_by_level[level]:
                locals_[index] = None


class TreecodeEvaluator(Evaluator):
    """
    Treecode: multipoles are evaluated directly at the targets.

    Operators: P2M → M2M → M2P (no local expansions, no downward pass)
    """

    def _far_field(self, multipoles: List[Optional[MultipoleExpansion]],
                   results: np.ndarray) -> List[Optional[LocalExpansion]]:
        """M2P: evaluate well-separated multipoles at every target of the box."""
        points = self.target_tree.points

        for s, t in self.interactions.far:
            source_box = self.source_tree.boxes[s]
            target_box = self.target_tree.boxes[t]
            self.kernel.m2p(multipoles[s], source_box.center,
                            points[target_box.begin:target_box.end],
                            results[target_box.begin:target_box.end])
            self.statistics['m2p'] += 1

        return []


_EVALUATORS = {
    'fmm': FMMEvaluator,
    'treecode': TreecodeEvaluator,
}


def make_evaluator(context: TreeContext, config) -> Evaluator:
    """
    Create the evaluator selected by ``config.evaluation_mode``.

    Args:
        context: Tree context to evaluate over
        config: Plan configuration (mode, expansion order, theta)

    Returns:
        FMMEvaluator or TreecodeEvaluator
    """
    try:
        evaluator_type = _EVALUATORS[config.evaluation_mode]
    except KeyError:
        raise ValueError(f"Unknown evaluation mode: {config.evaluation_mode}") from None
    return evaluator_type(context, config.expansion_order, config.theta)

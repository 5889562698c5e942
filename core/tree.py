"""
Tree Module

Implements the hierarchical 2^D-tree (quadtree/octree in 2D/3D) over a point
set, the permutation between original and tree order, and the dual tree
traversal that splits (source box, target box) pairs into far-field and
near-field interactions.
"""

from collections import deque
from typing import List, NamedTuple, Optional, Tuple
import logging
import numpy as np
from dataclasses import dataclass

from .cell import Box, BoxType

logger = logging.getLogger(__name__)


@dataclass
class TreeConfig:
    """Configuration for tree construction."""
    max_depth: int = 16          # Maximum tree depth
    ncrit: int = 32              # Maximum points per leaf (adaptive refinement)

    def __post_init__(self):
        """Validate configuration."""
        if self.max_depth <= 0:
            raise ValueError("Max depth must be positive")
        if self.ncrit <= 0:
            raise ValueError("Ncrit must be positive")


def as_point_array(points, name: str = "points") -> np.ndarray:
    """
    Convert ``points`` into a validated ``(N, D)`` float64 array.

    Raises:
        ValueError: if the array is not two-dimensional, is empty or holds
            non-finite coordinates
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2:
        raise ValueError(f"{name} must be a 2-D array of shape (N, dimension), "
                         f"got shape {points.shape}")
    if points.shape[0] == 0:
        raise ValueError(f"{name} must contain at least one point")
    if points.shape[1] == 0:
        raise ValueError(f"{name} must have a positive dimension")
    if not np.all(np.isfinite(points)):
        raise ValueError(f"{name} contains non-finite coordinates")
    return points


class Tree:
    """
    Hierarchical tree over a point set.

    Boxes are stored breadth-first in an arena (``self.boxes``), so every
    child index is larger than its parent's and each level is a contiguous
    run of the arena. Points are reordered so that every box covers a
    contiguous range of the tree-ordered points.

    ``permutation[k]`` is the original index of the point stored at tree
    position ``k``; ``inverse_permutation`` maps back.
    """

    def __init__(self, points: np.ndarray, config: Optional[TreeConfig] = None):
        """
        Build the tree.

        Args:
            points: Array of shape (N, dimension)
            config: Tree configuration parameters
        """
        if config is None:
            config = TreeConfig()

        self.config = config
        original = as_point_array(points)
        self.num_points, self.dimension = original.shape

        self.boxes: List[Box] = []
        self.leaves: List[int] = []
        self.boxes_by_level: List[List[int]] = []
        self.permutation = np.arange(self.num_points)

        self._build_tree(original)

        self.inverse_permutation = np.empty_like(self.permutation)
        self.inverse_permutation[self.permutation] = np.arange(self.num_points)

        self.points = original[self.permutation]
        self.points.setflags(write=False)
        self.permutation.setflags(write=False)
        self.inverse_permutation.setflags(write=False)

        self.validate()
        logger.debug("Built %r", self)

    @property
    def root(self) -> Box:
        return self.boxes[0]

    @property
    def num_levels(self) -> int:
        return len(self.boxes_by_level)

    def _compute_bounding_box(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compute a cubic bounding box for all points.

        Returns:
            Tuple of (center, extent) where extent is the half-width along
            each dimension
        """
        min_coords = np.min(points, axis=0)
        max_coords = np.max(points, axis=0)

        center = (min_coords + max_coords) / 2.0
        half_width = np.max(max_coords - min_coords) / 2.0

        if half_width == 0.0:
            half_width = 1.0
        else:
            # Small padding to avoid boundary issues
            half_width *= 1.01

        return center, np.full(self.dimension, half_width)

    def _build_tree(self, points: np.ndarray):
        """Build the box arena breadth-first, reordering points as boxes split."""
        center, extent = self._compute_bounding_box(points)
        self.boxes.append(Box(center=center, extent=extent, level=0, index=0,
                              begin=0, end=self.num_points,
                              box_type=BoxType.ROOT))

        bits = 1 << np.arange(self.dimension)
        num_children = 1 << self.dimension

        queue = deque([0])
        while queue:
            box = self.boxes[queue.popleft()]

            if box.level == len(self.boxes_by_level):
                self.boxes_by_level.append([])
            self.boxes_by_level[box.level].append(box.index)

            should_subdivide = (
                box.num_points > self.config.ncrit and
                box.level < self.config.max_depth
            )
            if not should_subdivide:
                self.leaves.append(box.index)
                continue

            # Child code: bit i set means upper half along axis i
            segment = self.permutation[box.begin:box.end]
            codes = (points[segment] > box.center) @ bits
            order = np.argsort(codes, kind='stable')
            self.permutation[box.begin:box.end] = segment[order]
            counts = np.bincount(codes, minlength=num_children)

            begin = box.begin
            for code in range(num_children):
                if counts[code] == 0:
                    continue
                signs = np.where((code & bits) > 0, 1.0, -1.0)
                child = Box(
                    center=box.center + signs * box.extent / 2.0,
                    extent=box.extent / 2.0,
                    level=box.level + 1,
                    index=len(self.boxes),
                    parent=box.index,
                    begin=begin,
                    end=begin + int(counts[code]),
                )
                begin = child.end
                self.boxes.append(child)
                box.children.append(child.index)
                queue.append(child.index)

            if not box.is_root:
                box.box_type = BoxType.INTERNAL

    def validate(self):
        """
        Check the structural invariants of the tree.

        Raises:
            RuntimeError: if a box has a non-positive extent, holds a point
                outside its bounds, sticks out of its parent, or the leaves
                do not partition the point range
        """
        # Child centers and bounds carry rounding relative to the coordinate magnitude
        scale = max(float(np.max(np.abs(self.root.center)) +
                          np.max(self.root.extent)), 1.0)
        tolerance = 64 * np.finfo(np.float64).eps * scale

        for box in self.boxes:
            if box.extent.shape != (self.dimension,) or np.any(box.extent <= 0):
                raise RuntimeError(f"Malformed box extent: {box!r}")
            if box.num_points <= 0:
                raise RuntimeError(f"Empty box in tree: {box!r}")

            lo, hi = box.bounds
            pts = self.points[box.begin:box.end]
            if np.any(pts < lo - tolerance) or np.any(pts > hi + tolerance):
                raise RuntimeError(f"Box does not bound its points: {box!r}")

            if box.parent is not None:
                parent = self.boxes[box.parent]
                plo, phi = parent.bounds
                if np.any(lo < plo - tolerance) or np.any(hi > phi + tolerance):
                    raise RuntimeError(f"Box is not contained in its parent: {box!r}")
                if box.begin < parent.begin or box.end > parent.end:
                    raise RuntimeError(f"Box range escapes its parent: {box!r}")

        ranges = sorted((self.boxes[i].begin, self.boxes[i].end) for i in self.leaves)
        expected = 0
        for begin, end in ranges:
            if begin != expected:
                raise RuntimeError("Leaves do not partition the point range")
            expected = end
        if expected != self.num_points:
            raise RuntimeError("Leaves do not partition the point range")

    def get_max_level(self) -> int:
        """Return the maximum tree level."""
        return len(self.boxes_by_level) - 1

    def get_boxes_at_level(self, level: int) -> List[Box]:
        """Get all boxes at a specific level."""
        if 0 <= level < len(self.boxes_by_level):
            return [self.boxes[i] for i in self.boxes_by_level[level]]
        return []

    def get_statistics(self) -> dict:
        """
        Compute and return tree statistics.

        Returns:
            Dictionary with tree statistics
        """
        leaf_sizes = [self.boxes[i].num_points for i in self.leaves]

        return {
            'num_points': self.num_points,
            'num_boxes': len(self.boxes),
            'num_leaves': len(self.leaves),
            'max_depth': self.get_max_level(),
            'avg_points_per_leaf': float(np.mean(leaf_sizes)),
            'max_points_per_leaf': max(leaf_sizes),
        }

    def format(self) -> str:
        """Text dump of the tree, one indented line per box."""
        lines = [repr(self)]
        stack = [0]
        while stack:
            box = self.boxes[stack.pop()]
            lines.append(
                f"{'  ' * box.level}[{box.index}] {box.box_type.value} "
                f"level={box.level} center={np.array2string(box.center, precision=4)} "
                f"extent={box.extent[0]:.4g} points=[{box.begin}, {box.end})"
            )
            stack.extend(reversed(box.children))
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        stats = self.get_statistics()
        return (f"Tree(dim={self.dimension}, "
                f"N={stats['num_points']}, "
                f"boxes={stats['num_boxes']}, "
                f"leaves={stats['num_leaves']}, "
                f"depth={stats['max_depth']})")


class InteractionLists(NamedTuple):
    """(source box, target box) index pairs produced by the dual tree traversal."""
    far: List[Tuple[int, int]]
    near: List[Tuple[int, int]]


def dual_tree_traversal(source_tree: Tree, target_tree: Tree,
                        theta: float) -> InteractionLists:
    """
    Dual Tree Traversal (DTT).

    Simultaneously descends the source and target trees starting from the
    pair of roots. A well-separated pair becomes a far-field interaction, a
    pair of leaves that is not well separated becomes a near-field
    interaction, and any other pair is refined by splitting the larger box
    (leaves are never split). Every (source point, target point) pair is
    covered by exactly one of the returned interactions.

    The root pair is always opened, so a source tree and a target tree that
    are both a single leaf are handled by direct evaluation.

    Args:
        source_tree: The source tree
        target_tree: The target tree (may be ``source_tree`` itself)
        theta: Multipole Acceptance Criterion parameter

    Returns:
        InteractionLists with far-field and near-field pairs
    """
    far: List[Tuple[int, int]] = []
    near: List[Tuple[int, int]] = []

    stack = [(0, 0)]
    while stack:
        s, t = stack.pop()
        source_box = source_tree.boxes[s]
        target_box = target_tree.boxes[t]

        is_root_pair = s == 0 and t == 0
        if not is_root_pair and target_box.is_well_separated(source_box, theta):
            far.append((s, t))
            continue

        if source_box.is_leaf and target_box.is_leaf:
            near.append((s, t))
        elif source_box.is_leaf or (not target_box.is_leaf and
                                    target_box.radius >= source_box.radius):
            for child in reversed(target_box.children):
                stack.append((s, child))
        else:
            for child in reversed(source_box.children):
                stack.append((child, t))

    return InteractionLists(far=far, near=near)

"""
Box Module

Represents a box (node) of the hierarchical spatial tree.

Boxes live in an arena owned by the tree; parent and child links are
indices into that arena, so the parent link is purely navigational.
"""

from typing import List, Optional, Tuple
import numpy as np
from dataclasses import dataclass, field
from enum import Enum


class BoxType(Enum):
    """Type of box in the tree."""
    ROOT = "root"
    INTERNAL = "internal"
    LEAF = "leaf"


@dataclass
class Box:
    """
    A box of the hierarchical tree decomposition.

    Every box covers a contiguous range ``[begin, end)`` of the tree-ordered
    points. For an internal box that range is the union of its children's
    ranges.

    Attributes:
        center: Center coordinates of the box
        extent: Half-width of the box along each dimension
        level: Tree level (0 = root)
        index: Position of the box in the tree's arena
        parent: Arena index of the parent box (None for root)
        children: Arena indices of the child boxes
        begin: First tree-order point index covered by the box
        end: One past the last tree-order point index covered by the box
        box_type: Type of box (root, internal, or leaf)
    """
    center: np.ndarray
    extent: np.ndarray
    level: int
    index: int
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    begin: int = 0
    end: int = 0
    box_type: BoxType = BoxType.LEAF

    def __post_init__(self):
        self.center = np.asarray(self.center, dtype=np.float64)
        self.extent = np.asarray(self.extent, dtype=np.float64)
        if self.extent.shape != self.center.shape:
            raise ValueError("Box center and extent must have the same shape")

    @property
    def dimension(self) -> int:
        return len(self.center)

    @property
    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return the minimum and maximum coordinates of the box."""
        return self.center - self.extent, self.center + self.extent

    @property
    def radius(self) -> float:
        """Half diagonal of the box, i.e. radius of its bounding sphere."""
        return float(np.linalg.norm(self.extent))

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def num_points(self) -> int:
        return self.end - self.begin

    def contains(self, point: np.ndarray, tolerance: float = 0.0) -> bool:
        """Check if a point is inside this box."""
        min_bound, max_bound = self.bounds
        return bool(np.all((point >= min_bound - tolerance) &
                           (point <= max_bound + tolerance)))

    def is_well_separated(self, other: 'Box', theta: float = 0.5) -> bool:
        """
        Multipole acceptance criterion.

        Two boxes are well separated when the sum of their bounding-sphere
        radii is smaller than ``theta`` times the distance between centers.
        Coincident centers are never well separated.

        Args:
            other: The other box (may belong to a different tree)
            theta: Opening parameter in (0, 1]

        Returns:
            True if an expansion may stand in for the pair's interaction
        """
        r = np.linalg.norm(self.center - other.center)
        return (self.radius + other.radius) < theta * r

    def __repr__(self) -> str:
        return (f"Box({self.box_type.value}, level={self.level}, idx={self.index}, "
                f"center={self.center}, extent={self.extent}, n={self.num_points})")

"""Line-primitive document model.

The imported drawing is a tree of :class:`GeometryGroup` nodes holding
:class:`LinePrimitive` leaves.  Every node carries a 4x4 local transform;
world coordinates are obtained by chaining the transforms down the tree.
Toolpaths never share primitives with the document: they own clones that
point back at the document primitive through ``source_id``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Union

import numpy as np
import trimesh

NEUTRAL_COLOR = 0x888888


def new_id() -> str:
    return str(uuid.uuid4())


def _identity() -> np.ndarray:
    return np.eye(4)


def _as_vertices(vertices) -> np.ndarray:
    arr = np.asarray(vertices, dtype=np.float64)
    if arr.size == 0:
        return np.zeros((0, 3))
    arr = arr.reshape(len(arr), -1)
    if arr.shape[1] == 2:
        arr = np.column_stack([arr, np.zeros(len(arr))])
    if arr.shape[1] != 3:
        raise ValueError(f"vertices must be (N, 2) or (N, 3), got {arr.shape}")
    return arr


def _as_matrix(matrix) -> np.ndarray:
    if matrix is None:
        return _identity()
    arr = np.asarray(matrix, dtype=np.float64)
    if arr.size != 16:
        raise ValueError(f"transform must have 16 values, got {arr.size}")
    return arr.reshape(4, 4)


@dataclass(eq=False)
class LinePrimitive:
    """An open or closed polyline with its own local transform."""

    vertices: np.ndarray
    matrix: np.ndarray = field(default_factory=_identity)
    id: str = field(default_factory=new_id)
    name: str = ""
    source_id: Optional[str] = None
    color: int = NEUTRAL_COLOR

    def __post_init__(self) -> None:
        self.vertices = _as_vertices(self.vertices)
        self.matrix = _as_matrix(self.matrix)

    @property
    def document_id(self) -> str:
        """Identity of the document primitive this line stands for."""
        return self.source_id or self.id

    @property
    def is_closed(self) -> bool:
        v = self.vertices
        return len(v) > 2 and bool(np.allclose(v[0], v[-1]))

    def world_matrix(self, parent: Optional[np.ndarray] = None) -> np.ndarray:
        if parent is None:
            return self.matrix
        return parent @ self.matrix

    def world_vertices(self, parent: Optional[np.ndarray] = None) -> np.ndarray:
        return world_points(self, self.world_matrix(parent))

    def clone(self, world: Optional[np.ndarray] = None) -> LinePrimitive:
        """Copy with a fresh id and a back-reference to the document primitive.

        *world* is the resolved world transform (see :func:`iter_lines`); it
        replaces the local one so the clone no longer depends on its parents.
        """
        return LinePrimitive(
            vertices=self.vertices.copy(),
            matrix=(self.matrix if world is None else world).copy(),
            name=self.name,
            source_id=self.document_id,
            color=NEUTRAL_COLOR,
        )


@dataclass(eq=False)
class GeometryGroup:
    """Ordered container of primitives and sub-groups.

    ``nested`` holds decoded sub-documents of a computation result
    (``"inflated"`` on the root, ``"pretty"`` on the inflated group).
    """

    children: list = field(default_factory=list)
    matrix: np.ndarray = field(default_factory=_identity)
    id: str = field(default_factory=new_id)
    name: str = ""
    user_data: dict = field(default_factory=dict)
    nested: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.matrix = _as_matrix(self.matrix)

    def add(self, child: Node) -> None:
        self.children.append(child)

    def remove(self, child: Node) -> None:
        self.children.remove(child)

    @property
    def inflated(self) -> Optional[GeometryGroup]:
        return self.nested.get("inflated")

    @property
    def pretty(self) -> Optional[GeometryGroup]:
        return self.nested.get("pretty")

    def lines(self) -> list[LinePrimitive]:
        return [line for line, _ in iter_lines([self])]

    def __len__(self) -> int:
        return len(self.children)

    @property
    def is_empty(self) -> bool:
        return not any(True for _ in iter_lines([self]))


Node = Union[LinePrimitive, GeometryGroup]


def iter_lines(
    objects: Iterable[Node],
    parent: Optional[np.ndarray] = None,
) -> Iterator[tuple[LinePrimitive, np.ndarray]]:
    """Depth-first traversal yielding ``(line, world_matrix)`` pairs.

    The order is the order children appear in, which makes every consumer
    (snapping, G-code) deterministic.
    """
    for obj in objects:
        if isinstance(obj, LinePrimitive):
            yield obj, obj.world_matrix(parent)
        elif isinstance(obj, GeometryGroup):
            world = obj.matrix if parent is None else parent @ obj.matrix
            yield from iter_lines(obj.children, world)


def translation(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    return trimesh.transformations.translation_matrix([x, y, z])


def world_points(line: LinePrimitive, world: np.ndarray) -> np.ndarray:
    """Vertices of *line* under an already-resolved world transform."""
    if len(line.vertices) == 0:
        return line.vertices.copy()
    return trimesh.transform_points(line.vertices, world)

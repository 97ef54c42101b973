"""Interactive tab placement.

Tabs are picked by snapping the pointer to the nearest point on the
toolpath's geometry: the computed result when there is one, else the
source vectors.  A session edits the tab list of exactly one (the active)
toolpath and never triggers a recompute; the caller re-dispatches when the
machined output needs to reflect the new tabs.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional, Union

import numpy as np

from ..config.defaults import TAB_PROXIMITY
from ..core.errors import NoGeometryToSnapToError
from ..core.geometry import GeometryGroup, LinePrimitive, Node, iter_lines, world_points
from ..core.operation import TabLocation
from ..core.registry import ActiveSelection, ToolpathRegistry

# Snap tolerance as a fraction of the camera's viewing distance
SNAP_DISTANCE_FACTOR = 0.02
# Used when there is no camera to scale by
SNAP_RADIUS_FALLBACK = 3.0

_MIN_SEGMENT_LENGTH_SQ = 1e-10


def snap_radius(camera_distance: Optional[float] = None) -> float:
    """Snap tolerance in scene units, roughly constant on screen."""
    if camera_distance is None:
        return SNAP_RADIUS_FALLBACK
    return abs(camera_distance) * SNAP_DISTANCE_FACTOR


def find_nearest_segment(
    geometry: Union[Node, Iterable[Node]],
    px: float,
    py: float,
    radius: float,
) -> Optional[TabLocation]:
    """Closest point to ``(px, py)`` on any segment of *geometry*.

    Every consecutive vertex pair of every line is projected in world XY
    with the projection parameter clamped to the segment.  Returns the
    point with the heading of its segment, or None if nothing lies strictly
    within *radius*.  On exact ties the first segment in traversal order
    wins.
    """
    if isinstance(geometry, (GeometryGroup, LinePrimitive)):
        geometry = [geometry]

    p = np.array([px, py])
    best_dist = math.inf
    best: Optional[TabLocation] = None

    for line, world in iter_lines(geometry):
        pts = world_points(line, world)[:, :2]
        if len(pts) < 2:
            continue
        a = pts[:-1]
        ab = pts[1:] - a
        len2 = np.einsum("ij,ij->i", ab, ab)
        valid = len2 >= _MIN_SEGMENT_LENGTH_SQ
        if not valid.any():
            continue

        safe_len2 = np.where(valid, len2, 1.0)
        t = np.clip(np.einsum("ij,ij->i", p - a, ab) / safe_len2, 0.0, 1.0)
        nearest = a + t[:, None] * ab
        dist = np.hypot(nearest[:, 0] - px, nearest[:, 1] - py)
        dist[~valid] = np.inf

        i = int(np.argmin(dist))   # first minimum on ties
        if dist[i] < best_dist:
            best_dist = float(dist[i])
            best = TabLocation(
                x=float(nearest[i, 0]),
                y=float(nearest[i, 1]),
                angle=math.atan2(ab[i, 1], ab[i, 0]),
            )

    if best is not None and best_dist < radius:
        return best
    return None


class TabPlacementSession:
    """Tab editing on the active toolpath.

    Typical use::

        session = TabPlacementSession(registry, registry.get_active())
        session.enter()
        session.click(x, y)
        session.exit()
    """

    def __init__(
        self,
        registry: ToolpathRegistry,
        selection: ActiveSelection,
        camera_distance: Optional[float] = None,
    ):
        self._registry = registry
        self._selection = selection
        self.camera_distance = camera_distance
        self._target: Optional[GeometryGroup] = None
        self.ghost: Optional[TabLocation] = None

    @property
    def active(self) -> bool:
        return self._target is not None

    @property
    def entry_id(self) -> str:
        return self._selection.require()

    @property
    def tabs(self) -> list[TabLocation]:
        return self._registry.get(self.entry_id).parameters.tabs

    @property
    def snap_radius(self) -> float:
        return snap_radius(self.camera_distance)

    def enter(self) -> None:
        """Start placing tabs.

        Raises NoGeometryToSnapToError if the toolpath has neither a
        computed result nor source vectors.
        """
        entry = self._registry.get(self.entry_id)
        if not entry.has_geometry:
            raise NoGeometryToSnapToError(f"{entry.name} has no geometry to place tabs on")
        # Placing a tab invalidates the computed result, so capture the
        # snap target now.
        if entry.computed_result is not None:
            self._target = entry.computed_result
        else:
            self._target = entry.source_geometry

    def exit(self) -> None:
        if not self.active:
            return
        self._target = None
        self.ghost = None
        self._registry.notify()

    # ------------------------------------------------------------------
    # Pointer interaction
    # ------------------------------------------------------------------

    def hover(self, px: float, py: float) -> Optional[TabLocation]:
        """Update and return the ghost marker for a pointer position."""
        self.ghost = None
        if self.active:
            self.ghost = find_nearest_segment(self._target, px, py, self.snap_radius)
        return self.ghost

    def click(self, px: float, py: float) -> Optional[TabLocation]:
        """Place a tab at the snap point under the pointer, if any."""
        hit = self.hover(px, py)
        if hit is None or not self.place_tab(hit.x, hit.y, hit.angle):
            return None
        return self.tabs[-1]

    # ------------------------------------------------------------------
    # Tab list edits
    # ------------------------------------------------------------------

    def place_tab(self, x: float, y: float, angle: float = 0.0) -> bool:
        """Append a tab unless one already sits within TAB_PROXIMITY.

        Returns True if the tab was added.
        """
        tabs = self.tabs
        if any(t.distance_to(x, y) < TAB_PROXIMITY for t in tabs):
            return False
        tabs.append(TabLocation(round(x, 4), round(y, 4), angle or 0.0))
        self._registry.set_tab_locations(self.entry_id, tabs)
        return True

    def remove_tab(self, index: int) -> TabLocation:
        tabs = self.tabs
        removed = tabs.pop(index)
        self._registry.set_tab_locations(self.entry_id, tabs)
        return removed

    def clear_all_tabs(self) -> None:
        self._registry.set_tab_locations(self.entry_id, [])

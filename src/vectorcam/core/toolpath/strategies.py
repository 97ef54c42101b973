"""Reference cutter-path strategies used by the computation task.

Algorithm
---------
1. Flatten the source geometry to world-space XY: closed polylines become
   Shapely polygons, open ones stay as line strings.
2. Build the 2D cutter paths for the operation (profile offset, pocket
   rings, centre points for drilling, or the source paths unchanged).
3. Repeat the paths at every Z level, dropping the parts that cross a tab
   on levels below the tab top.
4. Package the result: the root holds the 2D paths, ``inflated`` holds one
   line per path per level (Z carried by the line's transform), and
   ``pretty`` holds the swept cutter outline at final depth.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from shapely.geometry import LineString, Point, Polygon
from shapely.ops import unary_union

from ..geometry import GeometryGroup, LinePrimitive, iter_lines, translation, world_points
from ..operation import CutDirection, OperationKind, ToolpathParameters
from .utils import (
    compute_z_levels,
    ensure_polygon,
    iter_linestrings,
    iter_polygons,
    oriented_coords,
    polygon_rings,
)

Path2D = list[tuple[float, float]]


@dataclass
class SourceShapes:
    """Source geometry split into closed regions and open paths."""

    closed: list[Polygon] = field(default_factory=list)
    open: list[LineString] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.closed and not self.open


def collect_shapes(source: GeometryGroup) -> SourceShapes:
    shapes = SourceShapes()
    for line, world in iter_lines([source]):
        pts = world_points(line, world)[:, :2]
        if len(pts) < 2:
            continue
        if line.is_closed and len(pts) >= 4:
            region = ensure_polygon(Polygon(pts))
            shapes.closed.extend(iter_polygons(region))
        else:
            ls = LineString(pts)
            if ls.length > 0:
                shapes.open.append(ls)
    return shapes


def _ring_paths(geom, clockwise: bool) -> list[Path2D]:
    paths = []
    for poly in iter_polygons(ensure_polygon(geom)):
        for ring in polygon_rings(poly):
            paths.append(oriented_coords(ring, clockwise))
    return paths


def _open_paths(shapes: SourceShapes) -> list[Path2D]:
    return [[(x, y) for x, y, *_ in ls.coords] for ls in shapes.open]


def build_paths(shapes: SourceShapes, params: ToolpathParameters) -> list[Path2D]:
    """2D cutter paths for *params.operation*, in cutting order."""
    kind = params.operation
    distance = params.tool_radius + params.offset
    # Conventional milling with a clockwise spindle travels clockwise
    # around outside profiles and counter-clockwise inside them.
    outer_cw = params.direction is CutDirection.CONVENTIONAL

    if kind is OperationKind.DRILL:
        centres = [poly.centroid.coords[0] for poly in shapes.closed]
        centres += [ls.coords[0][:2] for ls in shapes.open]
        return [[(x, y), (x, y)] for x, y in centres]

    if kind is OperationKind.OUTSIDE:
        paths = []
        for poly in shapes.closed:
            paths.extend(_ring_paths(poly.buffer(distance), outer_cw))
        return paths + _open_paths(shapes)

    if kind is OperationKind.INSIDE:
        paths = []
        for poly in shapes.closed:
            paths.extend(_ring_paths(poly.buffer(-distance), not outer_cw))
        return paths + _open_paths(shapes)

    if kind is OperationKind.POCKET:
        step = params.stepover_distance
        if step <= 0:
            raise ValueError("pocket stepover must be positive")
        paths = []
        for poly in shapes.closed:
            rings: list[list[Path2D]] = []
            d = distance
            while True:
                level = _ring_paths(poly.buffer(-d), not outer_cw)
                if not level:
                    break
                rings.append(level)
                d += step
            # Clear from the centre outward; the wall pass comes last
            for level in reversed(rings):
                paths.extend(level)
        return paths + _open_paths(shapes)

    # Engrave / laser: follow the drawing
    paths = []
    for poly in shapes.closed:
        paths.extend(_ring_paths(poly, outer_cw))
    return paths + _open_paths(shapes)


def _tab_zone(params: ToolpathParameters):
    if params.tab_width <= 0 or not params.tabs:
        return None
    radius = params.tab_width / 2.0 + params.tool_radius
    return unary_union([Point(t.x, t.y).buffer(radius) for t in params.tabs])


def _cut_tabs(path: Path2D, zone) -> list[Path2D]:
    remaining = LineString(path).difference(zone)
    return [[(x, y) for x, y, *_ in ls.coords] for ls in iter_linestrings(remaining)]


def _line(path: Path2D, z: float = 0.0) -> LinePrimitive:
    return LinePrimitive(
        vertices=[(x, y, 0.0) for x, y in path],
        matrix=translation(z=z),
    )


def _swept_outline(paths: list[Path2D], params: ToolpathParameters, z: float) -> GeometryGroup:
    radius = params.tool_radius
    shapes = []
    for path in paths:
        if len(path) >= 2 and LineString(path).length > 0:
            shapes.append(LineString(path).buffer(radius))
        elif path:
            shapes.append(Point(path[0]).buffer(radius))
    pretty = GeometryGroup(name="pretty")
    if shapes:
        for ring_path in _ring_paths(unary_union(shapes), clockwise=True):
            pretty.add(_line(ring_path, z))
    return pretty


def compute_toolpath(
    source: GeometryGroup,
    params: ToolpathParameters,
    on_pass: Optional[Callable[[int], None]] = None,
) -> GeometryGroup:
    """Compute the machined path for *source*.

    *on_pass* is called with the zero-based index of each finished Z level.
    """
    paths = build_paths(collect_shapes(source), params)

    if params.operation is OperationKind.LASER:
        z_levels = [0.0]
    else:
        z_levels = compute_z_levels(0.0, -params.depth, params.pass_depth)

    zone = _tab_zone(params)
    tab_top = -(params.depth - params.tab_depth)

    inflated = GeometryGroup(name=f"{source.name} inflated".strip())
    for i, z in enumerate(z_levels):
        in_tabs = (
            zone is not None
            and z < tab_top - 1e-9
            and params.operation is not OperationKind.DRILL
        )
        for path in paths:
            for piece in (_cut_tabs(path, zone) if in_tabs else [path]):
                if len(piece) >= 2:
                    inflated.add(_line(piece, z))
        if on_pass is not None:
            on_pass(i)

    inflated.nested["pretty"] = _swept_outline(paths, params, z_levels[-1])

    result = GeometryGroup(
        children=[_line(p) for p in paths if len(p) >= 2],
        name=source.name,
        user_data=params.to_user_data(),
    )
    result.nested["inflated"] = inflated
    return result

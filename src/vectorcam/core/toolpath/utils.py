"""Geometry helper utilities shared across toolpath strategies."""

from __future__ import annotations

from shapely.geometry import (
    GeometryCollection,
    LinearRing,
    LineString,
    MultiLineString,
    MultiPolygon,
    Polygon,
)
from shapely.ops import unary_union
from shapely.validation import make_valid


def ensure_polygon(geom) -> Polygon | MultiPolygon:
    """Return a valid Polygon or MultiPolygon, or empty Polygon on failure."""
    if geom is None or geom.is_empty:
        return Polygon()
    if not geom.is_valid:
        geom = make_valid(geom)
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    if isinstance(geom, GeometryCollection):
        polys = [g for g in geom.geoms if isinstance(g, (Polygon, MultiPolygon))]
        if polys:
            return unary_union(polys)
    return Polygon()


def iter_polygons(geom: Polygon | MultiPolygon):
    """Yield individual Polygon objects from a possibly Multi geometry."""
    if isinstance(geom, Polygon):
        if not geom.is_empty:
            yield geom
    elif isinstance(geom, MultiPolygon):
        for p in geom.geoms:
            if not p.is_empty:
                yield p


def iter_linestrings(geom):
    """Yield the LineString parts of *geom*.

    Overlay operations on lines sometimes return mixed collections; points
    and polygons in them are dropped.
    """
    if geom is None or geom.is_empty:
        return
    if isinstance(geom, LineString):
        yield geom
    elif isinstance(geom, MultiLineString):
        yield from (g for g in geom.geoms if not g.is_empty)
    else:
        for part in getattr(geom, "geoms", []):
            yield from iter_linestrings(part)


def polygon_rings(polygon: Polygon) -> list[LinearRing]:
    """Exterior ring followed by the interior rings of *polygon*."""
    return [polygon.exterior, *polygon.interiors]


def oriented_coords(
    ring: LinearRing,
    clockwise: bool,
) -> list[tuple[float, float]]:
    """Closed ring coordinates travelling in the requested direction."""
    coords = [(x, y) for x, y, *_ in ring.coords]
    if ring.is_ccw == clockwise:
        coords.reverse()
    return coords


def compute_z_levels(
    z_top: float,
    z_bottom: float,
    step_down: float,
) -> list[float]:
    """Generate Z levels from *z_top* downward by *step_down* increments.

    The first cut is at ``z_top - step_down``.  The final pass is always
    placed exactly at *z_bottom* (floor pass).

    Parameters
    ----------
    z_top:
        Top of stock (0.0 in the work coordinate system).
    z_bottom:
        Deepest cut depth (negative, e.g. -18.0).
    step_down:
        Positive axial depth-of-cut per pass.

    Returns
    -------
    List of Z values in descending order (most shallow first).
    """
    if step_down <= 0:
        raise ValueError("step_down must be positive")
    if z_bottom >= z_top:
        raise ValueError("z_bottom must be less than z_top")

    levels: list[float] = []
    z = z_top - step_down
    while z > z_bottom + 1e-9:
        levels.append(round(z, 10))
        z -= step_down

    # Always include a final floor pass
    levels.append(round(z_bottom, 10))
    return levels

"""Tab placement package."""

from .placement import TabPlacementSession, find_nearest_segment, snap_radius

__all__ = ["TabPlacementSession", "find_nearest_segment", "snap_radius"]

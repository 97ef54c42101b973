"""Cutter-path computation package."""

from .strategies import SourceShapes, build_paths, collect_shapes, compute_toolpath

__all__ = ["SourceShapes", "build_paths", "collect_shapes", "compute_toolpath"]

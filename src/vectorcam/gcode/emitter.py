"""G-code export for a set of toolpath entries.

Output layout::

    G21 ; mm mode
    G90 ; absolute
    G17 ; XY plane

    ; === Toolpath 1 ===
    ; Operation : CNC: Vector (path outside)
    ; Tool dia  : 3.175mm
    ; Cut depth : 18mm
    M3 S18000
    G0 Z5

    G0 X.. Y..          (one block per line primitive)
    G1 Z.. F<plunge>
    G1 X.. Y.. F<feed>
    G0 Z5

    M5 ; spindle off
    G0 Z5

    G0 X0 Y0
    M30

Each line primitive is cut at a single depth: the Z of its first vertex
plus the Z offset of its world transform.  The output carries no timestamp
so the same entries always produce the same text.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from ..config.defaults import DEFAULT_SAFE_Z
from ..core.errors import NoVisibleToolpathsError
from ..core.geometry import iter_lines, world_points
from ..core.registry import ToolpathEntry
from .gcode_writer import comment, fmt, linear, rapid, with_comment

ProgressCallback = Callable[[int], None]


def export_percent(done: int, total: int) -> int:
    """Percentage after *done* of *total* entries, halves rounded up."""
    return int(math.floor(done / total * 100 + 0.5))


@dataclass
class EmitterConfig:
    """Settings that apply to the whole program."""

    safe_z: float = DEFAULT_SAFE_Z


class GCodeEmitter:
    """Serialize visible toolpath entries to G-code text."""

    def __init__(self, config: Optional[EmitterConfig] = None):
        self.config = config or EmitterConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_lines(
        self,
        entries: Iterable[ToolpathEntry],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[str]:
        """Return the program as a list of lines.

        Raises NoVisibleToolpathsError if no entry is visible.
        """
        visible = [e for e in entries if e.visible]
        if not visible:
            raise NoVisibleToolpathsError("No toolpaths to export")

        lines: list[str] = []
        lines.extend(self._preamble())
        for i, entry in enumerate(visible):
            lines.extend(self._entry(entry))
            if on_progress is not None:
                on_progress(export_percent(i + 1, len(visible)))
        lines.extend(self._postamble())
        return lines

    def generate(
        self,
        entries: Iterable[ToolpathEntry],
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        return "\n".join(self.get_lines(entries, on_progress))

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _preamble(self) -> list[str]:
        return [
            with_comment("G21", "mm mode"),
            with_comment("G90", "absolute"),
            with_comment("G17", "XY plane"),
            "",
        ]

    def _entry(self, entry: ToolpathEntry) -> list[str]:
        params = entry.parameters
        safe_z = self.config.safe_z

        lines = [
            comment(f"=== {entry.name} ==="),
            comment(f"Operation : {params.operation.wire_name}"),
            comment(f"Tool dia  : {fmt(params.tool_diameter)}mm"),
            comment(f"Cut depth : {fmt(params.depth)}mm"),
        ]
        if params.spindle > 0:
            lines.append(f"M3 S{params.spindle}")
        lines.append(rapid(z=safe_z))
        lines.append("")

        for line, world in iter_lines([entry.final_geometry]):
            if len(line.vertices) < 2:
                continue
            pts = world_points(line, world)
            cut_z = line.vertices[0][2] + world[2, 3]

            lines.append(rapid(x=pts[0][0], y=pts[0][1]))
            lines.append(linear(z=cut_z, f=params.plunge))
            for x, y, _ in pts[1:]:
                lines.append(linear(x=x, y=y, f=params.feed))
            lines.append(rapid(z=safe_z))
            lines.append("")

        lines.append(with_comment("M5", "spindle off"))
        lines.append(rapid(z=safe_z))
        lines.append("")
        return lines

    def _postamble(self) -> list[str]:
        return [rapid(x=0.0, y=0.0), "M30"]


def generate_gcode(
    entries: Iterable[ToolpathEntry],
    safe_z: float = DEFAULT_SAFE_Z,
    on_progress: Optional[ProgressCallback] = None,
) -> str:
    """Convenience wrapper around :class:`GCodeEmitter`."""
    return GCodeEmitter(EmitterConfig(safe_z=safe_z)).generate(entries, on_progress)

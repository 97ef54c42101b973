"""Default machining parameters, palette and job constants.

Values are in millimetres.  They are conservative starting points for a
1/8" two-flute endmill in plywood; users should adjust to their tooling and
material.
"""

from ..core.operation import CutDirection, OperationKind, ToolpathParameters

# Display colours cycled across new toolpaths (0xRRGGBB)
TOOLPATH_COLORS = (
    0x3B82F6, 0x22C55E, 0xF59E0B, 0xEF4444, 0xA855F7,
    0x06B6D4, 0xF97316, 0x10B981, 0x6366F1, 0xEC4899,
)

DEFAULT_SAFE_Z = 5.0

# Minimum spacing between two tabs on the same toolpath
TAB_PROXIMITY = 2.0


def build_default_parameters() -> ToolpathParameters:
    """Return the parameter record a new toolpath starts with."""
    return ToolpathParameters(
        operation=OperationKind.OUTSIDE,
        tool_diameter=3.175,
        depth=18.0,
        pass_depth=3.0,
        stepover=0.4,
        offset=0.0,
        feed=800.0,
        plunge=400.0,
        spindle=18000,
        tab_width=0.0,
        tab_depth=3.0,
        tab_locations=[],
        direction=CutDirection.CONVENTIONAL,
    )

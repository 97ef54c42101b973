"""Machining parameter record for a toolpath.

``ToolpathParameters`` is what the user edits in the settings form and what
travels to the computation task inside the interchange document.  The task
reads a fixed set of ``cam*`` keys, so the record converts to and from that
wire layout explicitly rather than by field name.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .errors import ConfigError


class OperationKind(Enum):
    OUTSIDE = "outside"
    INSIDE = "inside"
    POCKET = "pocket"
    ENGRAVE = "engrave"
    DRILL = "drill"
    LASER = "laser"

    @property
    def label(self) -> str:
        """Human label shown in the settings form."""
        return self.value.capitalize()

    @property
    def wire_name(self) -> str:
        """Operation string the computation task understands."""
        return _WIRE_NAMES[self]

    @property
    def offsets_path(self) -> bool:
        return self in (OperationKind.OUTSIDE, OperationKind.INSIDE, OperationKind.POCKET)

    @classmethod
    def from_label(cls, label: str) -> OperationKind:
        key = label.strip().lower()
        key = _LABEL_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ConfigError(f"Unknown operation label: {label!r}") from None

    @classmethod
    def from_wire(cls, name: str) -> OperationKind:
        for kind, wire in _WIRE_NAMES.items():
            if wire == name:
                return kind
        raise ConfigError(f"Unknown operation: {name!r}")


_WIRE_NAMES: dict[OperationKind, str] = {
    OperationKind.OUTSIDE: "CNC: Vector (path outside)",
    OperationKind.INSIDE: "CNC: Vector (path inside)",
    OperationKind.POCKET: "CNC: Pocket",
    OperationKind.ENGRAVE: "CNC: Vector (no offset)",
    OperationKind.DRILL: "Drill: Peck (Centered)",
    OperationKind.LASER: "Laser: Vector (no path offset)",
}

# "Fill" is an older form label for a plain no-offset vector cut
_LABEL_ALIASES = {"fill": "engrave"}


class CutDirection(Enum):
    CONVENTIONAL = "conventional"
    CLIMB = "climb"


@dataclass
class TabLocation:
    """A hold-down tab on the cut path.  ``angle`` is the path heading
    (radians) at the tab, used to orient the bridge."""

    x: float
    y: float
    angle: float = 0.0

    def distance_to(self, x: float, y: float) -> float:
        return ((self.x - x) ** 2 + (self.y - y) ** 2) ** 0.5

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "a": self.angle}

    @classmethod
    def from_dict(cls, d: dict) -> TabLocation:
        return cls(
            x=float(d["x"]),
            y=float(d["y"]),
            angle=float(d.get("a", d.get("angle", 0.0)) or 0.0),
        )


@dataclass
class ToolpathParameters:
    """Parameters for a single toolpath.

    ``tab_locations`` of ``None`` means "not specified": an update carrying
    ``None`` keeps the tabs already placed on the entry.
    """

    operation: OperationKind = OperationKind.OUTSIDE

    # Tool
    tool_diameter: float = 3.175

    # Depth (positive values, measured down from Z=0)
    depth: float = 18.0
    pass_depth: float = 3.0

    # Radial
    stepover: float = 0.4     # pocket only; fraction of tool diameter
    offset: float = 0.0       # extra distance added to the tool radius

    # Feeds & speeds
    feed: float = 800.0
    plunge: float = 400.0
    spindle: int = 18000

    # Tabs
    tab_width: float = 0.0
    tab_depth: float = 3.0
    tab_locations: Optional[list[TabLocation]] = None

    direction: CutDirection = CutDirection.CONVENTIONAL

    @property
    def tool_radius(self) -> float:
        return self.tool_diameter / 2.0

    @property
    def stepover_distance(self) -> float:
        """Absolute pocket step-over (XY)."""
        return self.tool_diameter * self.stepover

    @property
    def tabs(self) -> list[TabLocation]:
        return list(self.tab_locations or [])

    def copy(self, **changes) -> ToolpathParameters:
        params = replace(self, **changes)
        if params.tab_locations is not None:
            params.tab_locations = [replace(t) for t in params.tab_locations]
        return params

    def to_user_data(self) -> dict:
        return {
            "camOperation": self.operation.wire_name,
            "camToolDia": self.tool_diameter,
            "camZStart": 0,
            "camZStep": self.pass_depth,
            "camZDepth": self.depth,
            "camStepover": self.stepover,
            "camOffset": self.offset,
            "camFeed": self.feed,
            "camPlunge": self.plunge,
            "camSpindle": self.spindle,
            "camTabWidth": self.tab_width,
            "camTabDepth": self.tab_depth,
            "camTabLocations": [t.to_dict() for t in self.tabs],
            "camDirection": self.direction.value,
            "camUnion": False,
        }

    @classmethod
    def from_user_data(cls, ud: dict) -> ToolpathParameters:
        """Inverse of :meth:`to_user_data`; missing keys take defaults."""
        d = cls()
        try:
            direction = CutDirection(ud.get("camDirection", d.direction.value))
        except ValueError:
            raise ConfigError(
                f"Unknown cut direction: {ud.get('camDirection')!r}"
            ) from None
        operation = ud.get("camOperation")
        return cls(
            operation=OperationKind.from_wire(operation) if operation else d.operation,
            tool_diameter=float(ud.get("camToolDia", d.tool_diameter)),
            depth=float(ud.get("camZDepth", d.depth)),
            pass_depth=float(ud.get("camZStep", d.pass_depth)),
            stepover=float(ud.get("camStepover", d.stepover)),
            offset=float(ud.get("camOffset", d.offset)),
            feed=float(ud.get("camFeed", d.feed)),
            plunge=float(ud.get("camPlunge", d.plunge)),
            spindle=int(ud.get("camSpindle", d.spindle)),
            tab_width=float(ud.get("camTabWidth", d.tab_width)),
            tab_depth=float(ud.get("camTabDepth", d.tab_depth)),
            tab_locations=[
                TabLocation.from_dict(t) for t in ud.get("camTabLocations", [])
            ],
            direction=direction,
        )

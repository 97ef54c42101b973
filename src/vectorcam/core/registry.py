"""Toolpath registry: owns toolpath entries and the active selection.

The registry is only ever touched from the control thread.  It knows
nothing about how results are computed; the compute dispatcher installs a
``task_canceller`` so that deleting or invalidating an entry also stops its
in-flight task.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from ..config.defaults import TOOLPATH_COLORS, build_default_parameters
from .errors import (
    EmptySelectionError,
    InactiveToolpathError,
    NothingToAddError,
    UnknownToolpathError,
)
from .geometry import GeometryGroup, LinePrimitive, Node, iter_lines, new_id
from .operation import TabLocation, ToolpathParameters


class SelectionStatus(Enum):
    """How a selection relates to a toolpath's geometry."""
    NONE = "none"
    ALL_NEW = "all_new"
    ALL_EXISTING = "all_existing"
    MIXED = "mixed"


@dataclass(frozen=True)
class ActiveSelection:
    """Which entry currently accepts edits (``None`` when nothing is)."""
    entry_id: Optional[str] = None

    def __bool__(self) -> bool:
        return self.entry_id is not None

    def require(self) -> str:
        if self.entry_id is None:
            raise InactiveToolpathError("No active toolpath")
        return self.entry_id


@dataclass(eq=False)
class ToolpathEntry:
    """A named, parameterized selection of source geometry."""

    id: str
    name: str
    color: int
    source_geometry: GeometryGroup
    parameters: ToolpathParameters
    computed_result: Optional[GeometryGroup] = None
    visible: bool = True

    @property
    def source_ids(self) -> set[str]:
        return {line.source_id for line in self.source_geometry.lines() if line.source_id}

    @property
    def final_geometry(self) -> GeometryGroup:
        """The machined geometry if one has been computed, else the source."""
        if self.computed_result is not None and self.computed_result.inflated is not None:
            return self.computed_result.inflated
        return self.source_geometry

    @property
    def has_geometry(self) -> bool:
        return self.computed_result is not None or not self.source_geometry.is_empty


@dataclass
class SceneItem:
    """What an external viewer needs to draw one entry."""

    id: str
    name: str
    color: int
    active: bool
    visible: bool
    source_geometry: GeometryGroup
    computed_result: Optional[GeometryGroup]

    @property
    def inflated(self) -> Optional[GeometryGroup]:
        if self.computed_result is None:
            return None
        return self.computed_result.inflated

    @property
    def pretty(self) -> Optional[GeometryGroup]:
        inflated = self.inflated
        return inflated.pretty if inflated is not None else None


def _selection_lines(selected: Iterable[Node]) -> list[tuple[LinePrimitive, object]]:
    """Line primitives reachable from *selected*, deduplicated by the
    document primitive they stand for."""
    seen: set[str] = set()
    lines = []
    for line, world in iter_lines(selected):
        if line.document_id in seen:
            continue
        seen.add(line.document_id)
        lines.append((line, world))
    return lines


class ToolpathRegistry:
    """Ordered set of toolpath entries plus the active pointer."""

    def __init__(self):
        self._entries: list[ToolpathEntry] = []
        self._active: ActiveSelection = ActiveSelection()
        self._color_index = 0
        self._name_counter = 0
        self._listeners: list[Callable[[ToolpathRegistry], None]] = []
        # Installed by the compute dispatcher
        self.task_canceller: Optional[Callable[[str], object]] = None

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def entries(self) -> list[ToolpathEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def __contains__(self, entry_id: str) -> bool:
        return any(e.id == entry_id for e in self._entries)

    def get(self, entry_id: str) -> ToolpathEntry:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        raise UnknownToolpathError(entry_id)

    def index_of(self, entry_id: str) -> int:
        return self._entries.index(self.get(entry_id))

    # ------------------------------------------------------------------
    # Active selection
    # ------------------------------------------------------------------

    def set_active(self, entry_id: Optional[str]) -> ActiveSelection:
        if entry_id is not None:
            self.get(entry_id)
        self._active = ActiveSelection(entry_id)
        self._notify()
        return self._active

    def get_active(self) -> ActiveSelection:
        return self._active

    def active_entry(self) -> Optional[ToolpathEntry]:
        if not self._active:
            return None
        return self.get(self._active.entry_id)

    def _require_active(self, entry_id: str) -> ToolpathEntry:
        entry = self.get(entry_id)
        if self._active.entry_id != entry_id:
            raise InactiveToolpathError(f"{entry.name} is not the active toolpath")
        return entry

    # ------------------------------------------------------------------
    # Creation / geometry edits
    # ------------------------------------------------------------------

    def create_from_selection(
        self,
        selected: Iterable[Node],
        parameters: Optional[ToolpathParameters] = None,
    ) -> str:
        """Clone the selected lines into a new, active toolpath.

        Raises
        ------
        EmptySelectionError:
            If *selected* contains no line primitives.
        """
        lines = _selection_lines(selected)
        if not lines:
            raise EmptySelectionError("Select vectors first")

        params = (parameters or build_default_parameters()).copy()
        if params.tab_locations is None:
            params.tab_locations = []

        self._name_counter += 1
        entry = ToolpathEntry(
            id=new_id(),
            name=f"Toolpath {self._name_counter}",
            color=TOOLPATH_COLORS[self._color_index % len(TOOLPATH_COLORS)],
            source_geometry=GeometryGroup(
                children=[line.clone(world) for line, world in lines],
            ),
            parameters=params,
        )
        entry.source_geometry.name = entry.name
        self._color_index += 1
        self._entries.append(entry)
        self._active = ActiveSelection(entry.id)
        self._notify()
        return entry.id

    def add_geometry(self, entry_id: str, selected: Iterable[Node]) -> int:
        """Add clones of selected lines not already in the toolpath.

        Returns the number added.  Raises NothingToAddError (without
        touching the entry) when every line is already present.
        """
        entry = self.get(entry_id)
        lines = _selection_lines(selected)
        if not lines:
            raise EmptySelectionError("Select vectors first")

        existing = entry.source_ids
        new = [(line, world) for line, world in lines if line.document_id not in existing]
        if not new:
            raise NothingToAddError(f"Selection already in {entry.name}")

        for line, world in new:
            entry.source_geometry.add(line.clone(world))
        self._invalidate(entry)
        return len(new)

    def remove_geometry(self, entry_id: str, selected: Iterable[Node]) -> int:
        """Remove clones matching the selection.

        A selected line matches by its own id (a document original) or by
        its ``source_id`` (a toolpath clone).  Returns the number removed.
        """
        entry = self.get(entry_id)
        targets: set[str] = set()
        for line, _ in iter_lines(selected):
            targets.add(line.id)
            if line.source_id:
                targets.add(line.source_id)

        doomed = [
            child for child in entry.source_geometry.children
            if isinstance(child, LinePrimitive) and child.source_id in targets
        ]
        for child in doomed:
            entry.source_geometry.remove(child)
        if doomed:
            self._invalidate(entry)
        return len(doomed)

    def classify_selection(
        self, entry_id: Optional[str], selected: Iterable[Node]
    ) -> SelectionStatus:
        if entry_id is None or entry_id not in self:
            return SelectionStatus.NONE
        lines = _selection_lines(selected)
        if not lines:
            return SelectionStatus.NONE

        existing = self.get(entry_id).source_ids
        count = sum(1 for line, _ in lines if line.document_id in existing)
        if count == 0:
            return SelectionStatus.ALL_NEW
        if count == len(lines):
            return SelectionStatus.ALL_EXISTING
        return SelectionStatus.MIXED

    # ------------------------------------------------------------------
    # Parameter edits
    # ------------------------------------------------------------------

    def update_parameters(self, entry_id: str, parameters: ToolpathParameters) -> None:
        """Replace the parameter record of the active entry *entry_id*.

        Tabs already placed are kept unless *parameters* carries its own
        ``tab_locations`` list.
        """
        entry = self._require_active(entry_id)
        params = parameters.copy()
        if params.tab_locations is None:
            params.tab_locations = entry.parameters.tabs
        entry.parameters = params
        self._invalidate(entry)

    def set_tab_locations(self, entry_id: str, tabs: list[TabLocation]) -> None:
        entry = self._require_active(entry_id)
        entry.parameters.tab_locations = list(tabs)
        self._invalidate(entry)

    def set_visible(self, entry_id: str, visible: bool) -> None:
        self.get(entry_id).visible = visible
        self._notify()

    def set_computed_result(self, entry_id: str, result: GeometryGroup) -> None:
        """Store a finished computation.  Only the dispatcher calls this."""
        self.get(entry_id).computed_result = result
        self._notify()

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def delete(self, entry_id: str) -> None:
        entry = self.get(entry_id)
        idx = self._entries.index(entry)
        self._entries.pop(idx)
        self._cancel_task(entry_id)

        if self._active.entry_id == entry_id:
            if self._entries:
                nxt = self._entries[min(idx, len(self._entries) - 1)]
                self._active = ActiveSelection(nxt.id)
            else:
                self._active = ActiveSelection()
        self._notify()

    def clear_all(self) -> None:
        removed, self._entries = self._entries, []
        for entry in removed:
            self._cancel_task(entry.id)
        self._active = ActiveSelection()
        self._color_index = 0
        self._name_counter = 0
        self._notify()

    def restore(self, entry: ToolpathEntry) -> None:
        """Re-add a previously saved entry and make it active."""
        if entry.id in self:
            raise ValueError(f"Toolpath {entry.id} already registered")
        entry.computed_result = None
        if entry.parameters.tab_locations is None:
            entry.parameters.tab_locations = []
        self._entries.append(entry)
        self._active = ActiveSelection(entry.id)
        self._color_index += 1
        self._name_counter += 1
        self._notify()

    # ------------------------------------------------------------------
    # Scene synchronisation
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[ToolpathRegistry], None]) -> None:
        """Call *callback* with the registry after every mutation."""
        self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[ToolpathRegistry], None]) -> None:
        self._listeners.remove(callback)

    def scene_snapshot(self) -> list[SceneItem]:
        return [
            SceneItem(
                id=e.id,
                name=e.name,
                color=e.color,
                active=e.id == self._active.entry_id,
                visible=e.visible,
                source_geometry=e.source_geometry,
                computed_result=e.computed_result,
            )
            for e in self._entries
        ]

    def notify(self) -> None:
        """Tell listeners state changed without mutating anything."""
        self._notify()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _invalidate(self, entry: ToolpathEntry) -> None:
        # An in-flight task was started from the old state; its result
        # would be stale on arrival.
        self._cancel_task(entry.id)
        entry.computed_result = None
        self._notify()

    def _cancel_task(self, entry_id: str) -> None:
        if self.task_canceller is not None:
            self.task_canceller(entry_id)

    def _notify(self) -> None:
        for cb in list(self._listeners):
            cb(self)


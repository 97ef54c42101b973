"""Job orchestrator: ties the drawing, its toolpaths and the compute tasks
together.

The Job class is the top-level entry point for the CLI and for embedding
applications.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from ..compute.dispatcher import ComputeDispatcher, DispatchListener
from ..compute.launcher import TaskLauncher
from ..config.defaults import DEFAULT_SAFE_Z
from ..gcode.emitter import EmitterConfig, GCodeEmitter, ProgressCallback
from ..gcode.validate import ValidationResult, validate_parameters
from .errors import ComputeBusyError
from .geometry import GeometryGroup, Node
from .interchange import load_document
from .operation import ToolpathParameters
from .registry import ToolpathRegistry

logger = logging.getLogger(__name__)


@dataclass
class Job:
    """A drawing plus the toolpaths defined on it."""

    name: str = "Untitled"
    document: GeometryGroup = field(default_factory=GeometryGroup)
    launcher: Optional[TaskLauncher] = None
    listener: Optional[DispatchListener] = None
    registry: ToolpathRegistry = field(init=False)
    dispatcher: ComputeDispatcher = field(init=False)

    def __post_init__(self) -> None:
        self.registry = ToolpathRegistry()
        self.dispatcher = ComputeDispatcher(self.registry, self.launcher, self.listener)

    def load_document(self, path: Path) -> GeometryGroup:
        """Replace the drawing.  Existing toolpaths are discarded."""
        self.registry.clear_all()
        self.document = load_document(path)
        if self.name == "Untitled":
            self.name = Path(path).stem
        logger.info("Loaded %s (%d lines)", path, len(self.document.lines()))
        return self.document

    # ------------------------------------------------------------------
    # Toolpaths
    # ------------------------------------------------------------------

    def create_toolpath(
        self,
        selected: Optional[Iterable[Node]] = None,
        parameters: Optional[ToolpathParameters] = None,
    ) -> str:
        """New toolpath from *selected* (default: the whole drawing)."""
        if selected is None:
            selected = [self.document]
        return self.registry.create_from_selection(selected, parameters)

    def validate(self, entry_id: str) -> ValidationResult:
        return validate_parameters(self.registry.get(entry_id).parameters)

    def preview(self, entry_id: Optional[str] = None) -> int:
        """Dispatch a computation for *entry_id* (default: the active one)."""
        if entry_id is None:
            entry_id = self.registry.get_active().require()
        return self.dispatcher.dispatch(entry_id)

    def preview_all(self) -> int:
        for entry in self.registry:
            self.dispatcher.dispatch(entry.id)
        return len(self.registry)

    def delete(self, entry_id: str) -> None:
        self.registry.delete(entry_id)

    def reset(self) -> None:
        self.registry.clear_all()

    def wait(self, timeout: Optional[float] = None) -> None:
        self.dispatcher.wait_idle(timeout)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def generate_gcode(
        self,
        safe_z: float = DEFAULT_SAFE_Z,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """G-code for every visible toolpath.

        Raises
        ------
        ComputeBusyError:
            While any computation task is still in flight.
        NoVisibleToolpathsError:
            If there is nothing visible to export.
        """
        self.dispatcher.poll()
        if self.dispatcher.is_any_busy():
            raise ComputeBusyError("Wait for the toolpath previews to finish")
        emitter = GCodeEmitter(EmitterConfig(safe_z=safe_z))
        return emitter.generate(self.registry.entries, on_progress)

    def write_gcode(
        self,
        output: Path,
        safe_z: float = DEFAULT_SAFE_Z,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        output.write_text(self.generate_gcode(safe_z, on_progress) + "\n")

"""Parameter sanity checks.

Run before dispatching a computation or exporting, so that obviously wrong
settings are reported instead of producing an empty or dangerous program.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..core.operation import OperationKind, ToolpathParameters


@dataclass
class ValidationIssue:
    """A single validation problem found in a parameter record."""

    severity: str  # "error" or "warning"
    message: str
    field: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of validating one or more parameter records."""

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(i.severity == "error" for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        return any(i.severity == "warning" for i in self.issues)

    @property
    def is_ok(self) -> bool:
        return len(self.issues) == 0

    def error(self, message: str, field_name: Optional[str] = None) -> None:
        self.issues.append(ValidationIssue("error", message, field_name))

    def warning(self, message: str, field_name: Optional[str] = None) -> None:
        self.issues.append(ValidationIssue("warning", message, field_name))


def validate_parameters(params: ToolpathParameters) -> ValidationResult:
    """Check *params* for values the computation cannot sensibly use.

    Checks performed:
    - Tool diameter, depth and pass depth are positive
    - Pass depth not deeper than the total depth
    - Pocket stepover within (0, 1]
    - Feed and plunge rates positive
    - Tab depth not deeper than the cut, tab width backed by tab locations
    """
    result = ValidationResult()

    if params.tool_diameter <= 0:
        result.error(f"Tool diameter {params.tool_diameter} must be positive", "tool_diameter")

    if params.operation is not OperationKind.LASER:
        if params.depth <= 0:
            result.error(f"Cut depth {params.depth} must be positive", "depth")
        if params.pass_depth <= 0:
            result.error(f"Pass depth {params.pass_depth} must be positive", "pass_depth")
        elif params.depth > 0 and params.pass_depth > params.depth:
            result.warning(
                f"Pass depth {params.pass_depth} exceeds cut depth {params.depth}; "
                "the cut will be a single pass",
                "pass_depth",
            )

    if params.operation is OperationKind.POCKET and not 0 < params.stepover <= 1:
        result.error(f"Stepover {params.stepover} must be in (0, 1]", "stepover")

    if params.offset and not params.operation.offsets_path:
        result.warning(
            f"Offset {params.offset} is ignored by {params.operation.label} operations",
            "offset",
        )

    if params.feed <= 0:
        result.error(f"Feed rate {params.feed} must be positive", "feed")
    if params.plunge <= 0:
        result.error(f"Plunge rate {params.plunge} must be positive", "plunge")
    if params.spindle < 0:
        result.error(f"Spindle speed {params.spindle} cannot be negative", "spindle")

    if params.tab_width > 0:
        if not params.tabs:
            result.warning("Tab width is set but no tabs have been placed", "tab_width")
        if params.tab_depth > params.depth:
            result.error(
                f"Tab depth {params.tab_depth} is deeper than the cut ({params.depth})",
                "tab_depth",
            )
    elif params.tabs:
        result.warning("Tabs are placed but tab width is 0; they will be ignored", "tab_width")

    return result

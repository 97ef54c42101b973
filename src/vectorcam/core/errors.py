"""Exception hierarchy for the toolpath core.

None of these are fatal: selection and placement errors are raised before
any state changes, and compute failures leave the last good result intact.
"""

from __future__ import annotations


class CamError(Exception):
    """Base class for every recoverable error raised by vectorcam."""


class EmptySelectionError(CamError):
    """The selection holds no line primitives."""


class NothingToAddError(CamError):
    """Every selected primitive is already part of the toolpath."""


class NoGeometryToSnapToError(CamError):
    """Tab placement needs a computed result or source geometry."""


class UnknownToolpathError(CamError, KeyError):
    """No toolpath entry with the given id."""


class InactiveToolpathError(CamError):
    """Edits are only accepted on the active toolpath."""


class ConfigError(CamError, ValueError):
    """Invalid configuration value, e.g. an unknown operation label."""


class InterchangeError(CamError, ValueError):
    """Malformed interchange document."""


class TaskDeserializationError(CamError):
    """A computation task returned a result that could not be applied."""


class EmptyExportError(CamError):
    """Nothing to export."""


class NoVisibleToolpathsError(EmptyExportError):
    """All toolpaths are hidden or none exist."""


class ComputeBusyError(CamError):
    """Export refused while a computation task is in flight."""


class StaleTaskMessage(CamError):
    """Message from a canceled or superseded task.  Never surfaced."""

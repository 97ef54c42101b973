"""Application preferences (persisted to disk)."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from ..core.errors import ConfigError
from ..core.operation import OperationKind, ToolpathParameters
from .defaults import DEFAULT_SAFE_Z, build_default_parameters


@dataclass
class AppSettings:
    """User preferences, serialized to ~/.vectorcam/settings.json.

    Only the starting values of new toolpaths and export live here; the
    parameters of an existing toolpath belong to that toolpath.
    """

    default_safe_z: float = DEFAULT_SAFE_Z
    default_operation: str = OperationKind.OUTSIDE.label
    default_tool_diameter: float = 3.175
    last_open_dir: str = ""
    last_save_dir: str = ""

    @staticmethod
    def _path() -> Path:
        return Path.home() / ".vectorcam" / "settings.json"

    @property
    def operation(self) -> OperationKind:
        """The default operation; raises ConfigError on an unknown label."""
        return OperationKind.from_label(self.default_operation)

    def default_parameters(self) -> ToolpathParameters:
        """Parameter record for a new toolpath."""
        return build_default_parameters().copy(
            operation=self.operation,
            tool_diameter=self.default_tool_diameter,
        )

    def remember_open(self, path: Path) -> None:
        self.last_open_dir = str(Path(path).resolve().parent)

    def remember_save(self, path: Path) -> None:
        self.last_save_dir = str(Path(path).resolve().parent)

    def save(self) -> None:
        p = self._path()
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(asdict(self), indent=2))

    @classmethod
    def load(cls) -> AppSettings:
        """Read the settings file; missing file or keys fall back to defaults.

        Raises ConfigError if the file is not a JSON object or a numeric
        setting is not a number.  Unknown keys are ignored.
        """
        p = cls._path()
        if not p.exists():
            return cls()
        try:
            data = json.loads(p.read_text())
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{p}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{p}: expected a JSON object")

        known = {f.name: f for f in fields(cls)}
        values = {}
        for key, value in data.items():
            if key not in known:
                continue
            if known[key].type == "float":
                try:
                    value = float(value)
                except (TypeError, ValueError):
                    raise ConfigError(f"{p}: {key} must be a number, got {value!r}") from None
            values[key] = value
        return cls(**values)

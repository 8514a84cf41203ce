"""Persisted settings: machine, G-code output and per-operation overrides."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from .defaults import OPERATION_DEFAULTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MachineSettings:
    """Clearance heights and machine accessories."""

    safe_z: float = 5.0           # full clearance, start/end of program
    travel_z: float = 2.0         # clearance between cuts
    coolant: str = "none"         # none | mist | flood
    vacuum: bool = False
    home_x: float = 0.0
    home_y: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "MachineSettings":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class GcodeSettings:
    """Output options passed through to the G-code generator."""

    post_processor: str = "grbl"
    units: str = "mm"
    include_comments: bool = True
    tool_changes: bool = True
    decimals: int = 4
    start_code: Optional[str] = None   # overrides the profile's start block
    end_code: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "GcodeSettings":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class SettingsStore:
    """Key-value parameter store, serialized to ~/.tracecam/settings.json.

    Parameters for an operation are resolved in layers: built-in defaults
    for its type, then the category (operation type) overrides, then the
    overrides stored for that operation id.  The core only ever reads from
    it through :meth:`get_all_parameters`.
    """

    machine: dict = field(default_factory=dict)
    gcode: dict = field(default_factory=dict)
    categories: dict = field(default_factory=dict)
    operations: dict = field(default_factory=dict)

    @staticmethod
    def default_path() -> Path:
        return Path.home() / ".tracecam" / "settings.json"

    def save(self, path: Optional[Path] = None) -> None:
        p = path or self.default_path()
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(asdict(self), indent=2, sort_keys=True))

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "SettingsStore":
        p = path or cls.default_path()
        if p.exists():
            data = json.loads(p.read_text())
            logger.debug("Loaded settings from %s", p)
            return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        return cls()

    def set_category(self, category: str, **values) -> None:
        self.categories.setdefault(category, {}).update(values)

    def set_operation(self, operation_id: str, **values) -> None:
        self.operations.setdefault(operation_id, {}).update(values)

    def get_operation(self, operation_id: str) -> dict:
        return dict(self.operations.get(operation_id, {}))

    def get_all_parameters(self, operation) -> dict:
        """Merged parameters for *operation* (an :class:`Operation`)."""
        category = operation.type.value
        params = dict(OPERATION_DEFAULTS.get(category, {}))
        params.update(self.categories.get(category, {}))
        params.update(self.operations.get(operation.id, {}))
        params.update(operation.settings)
        return params

    def machine_settings(self) -> MachineSettings:
        return MachineSettings.from_dict(self.machine)

    def gcode_settings(self) -> GcodeSettings:
        return GcodeSettings.from_dict(self.gcode)

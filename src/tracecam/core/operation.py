"""Operations and the offset groups generated for them.

An Operation is the parsed content of one loaded file (traces, holes or a
board outline) plus the settings used to machine it.  The Job runs the
geometry pipeline on it and stores the results in ``offsets``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .primitives import Primitive


class OperationType(Enum):
    ISOLATION = "isolation"
    CLEARING = "clearing"
    DRILL = "drill"
    CUTOUT = "cutout"

    @property
    def is_internal(self) -> bool:
        """Clearing works inside the copper, so its offsets are negative."""
        return self is OperationType.CLEARING


@dataclass
class ManufacturingWarning:
    """A non-fatal problem found while planning an operation."""

    kind: str          # oversized | undersized | slot_proximity | tab_risk | stitch_failed ...
    message: str
    position: Optional[tuple[float, float]] = None


@dataclass
class OffsetGroup:
    """Geometry produced for one pass (or for all passes combined)."""

    id: str
    kind: str                    # offset | combined | drill
    distance: float
    pass_index: int
    offset_type: str             # external | internal | on | drill
    primitives: list[Primitive] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    settings: dict = field(default_factory=dict)

    @property
    def union_failed(self) -> bool:
        return bool(self.metadata.get("union_failed"))


@dataclass
class Operation:
    """Source primitives of one file and the geometry derived from them."""

    id: str
    type: OperationType
    primitives: list[Primitive] = field(default_factory=list)
    settings: dict = field(default_factory=dict)
    file_name: str = ""
    offsets: list[OffsetGroup] = field(default_factory=list)
    warnings: list[ManufacturingWarning] = field(default_factory=list)

    def warn(self, kind: str, message: str, position=None) -> None:
        self.warnings.append(ManufacturingWarning(kind, message, position))

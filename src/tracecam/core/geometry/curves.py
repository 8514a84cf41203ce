"""Curve registry: stable integer identities for analytic circles and arcs.

Every analytic curve that is tessellated for the boolean engine is
registered here first.  The tessellated vertices then carry a
:class:`CurveTag` naming the curve, which lets the arc reconstructor turn
runs of polygon vertices back into true arcs after the boolean step.

A registry belongs to one pipeline run.  Ids are only unique within the
lifetime of a registry, so two jobs must never share one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

# Packed tag layout, low bits first: curve id, segment index, clockwise, reserved
CURVE_ID_BITS = 24
SEGMENT_INDEX_BITS = 31
CLOCKWISE_BITS = 1
RESERVED_BITS = 8

_CURVE_ID_MASK = (1 << CURVE_ID_BITS) - 1
_SEGMENT_INDEX_MASK = (1 << SEGMENT_INDEX_BITS) - 1
_SEGMENT_SHIFT = CURVE_ID_BITS
_CLOCKWISE_SHIFT = CURVE_ID_BITS + SEGMENT_INDEX_BITS
_RESERVED_SHIFT = _CLOCKWISE_SHIFT + CLOCKWISE_BITS


class CurveKind(Enum):
    CIRCLE = "circle"
    ARC = "arc"


@dataclass(frozen=True)
class CurveMetadata:
    """Geometric description of one analytic curve."""

    kind: CurveKind
    center: tuple[float, float]
    radius: float
    start_angle: Optional[float] = None   # radians, arcs only
    end_angle: Optional[float] = None
    clockwise: bool = False
    source: str = ""
    offset_derived: bool = False
    source_curve_id: Optional[int] = None
    offset_distance: Optional[float] = None

    @property
    def is_circle(self) -> bool:
        return self.kind is CurveKind.CIRCLE


@dataclass(frozen=True)
class CurveTag:
    """Per-vertex reference to the curve a tessellated vertex came from."""

    curve_id: int
    segment_index: int = 0
    clockwise: bool = False

    def pack(self) -> int:
        if not 0 < self.curve_id <= _CURVE_ID_MASK:
            raise ValueError(f"curve_id {self.curve_id} does not fit in {CURVE_ID_BITS} bits")
        if not 0 <= self.segment_index <= _SEGMENT_INDEX_MASK:
            raise ValueError(f"segment_index {self.segment_index} out of range")
        packed = self.curve_id
        packed |= self.segment_index << _SEGMENT_SHIFT
        packed |= int(self.clockwise) << _CLOCKWISE_SHIFT
        return packed

    @classmethod
    def unpack(cls, packed: int) -> CurveTag:
        if packed >> _RESERVED_SHIFT:
            raise ValueError("Reserved tag bits must be zero")
        return cls(
            curve_id=packed & _CURVE_ID_MASK,
            segment_index=(packed >> _SEGMENT_SHIFT) & _SEGMENT_INDEX_MASK,
            clockwise=bool((packed >> _CLOCKWISE_SHIFT) & 1),
        )


class CurveRegistry:
    """Registry of analytic curves keyed by rounded geometry."""

    def __init__(self, precision: int = 3):
        self.precision = precision
        self._next_id = 1
        self._curves: dict[int, CurveMetadata] = {}
        self._ids_by_key: dict[tuple, int] = {}
        self._hits = 0

    def _key(self, meta: CurveMetadata) -> tuple:
        p = self.precision
        is_arc = meta.kind is CurveKind.ARC
        return (
            meta.kind.value,
            round(meta.center[0], p),
            round(meta.center[1], p),
            round(meta.radius, p),
            round(meta.start_angle, p) if is_arc and meta.start_angle is not None else None,
            round(meta.end_angle, p) if is_arc and meta.end_angle is not None else None,
            bool(meta.clockwise) if is_arc else False,
            meta.offset_derived,
        )

    def register(self, meta: CurveMetadata) -> int:
        """Return the id of *meta*, registering it on first sight."""
        key = self._key(meta)
        existing = self._ids_by_key.get(key)
        if existing is not None:
            self._hits += 1
            return existing
        curve_id = self._next_id
        if curve_id > _CURVE_ID_MASK:
            raise OverflowError("Curve registry exhausted")
        self._next_id += 1
        self._curves[curve_id] = meta
        self._ids_by_key[key] = curve_id
        return curve_id

    def get(self, curve_id: int) -> Optional[CurveMetadata]:
        return self._curves.get(curve_id)

    def __contains__(self, curve_id: int) -> bool:
        return curve_id in self._curves

    def __len__(self) -> int:
        return len(self._curves)

    def clear(self) -> None:
        """Forget every curve and restart ids at 1."""
        self._curves.clear()
        self._ids_by_key.clear()
        self._next_id = 1
        self._hits = 0

    def clear_offset_curves(self) -> int:
        """Drop curves created by offsetting; return how many were removed."""
        doomed = [cid for cid, meta in self._curves.items() if meta.offset_derived]
        for cid in doomed:
            meta = self._curves.pop(cid)
            self._ids_by_key.pop(self._key(meta), None)
        if doomed:
            logger.debug("Cleared %d offset-derived curves", len(doomed))
        return len(doomed)

    @property
    def stats(self) -> dict:
        circles = sum(1 for m in self._curves.values() if m.is_circle)
        return {
            "total": len(self._curves),
            "circles": circles,
            "arcs": len(self._curves) - circles,
            "offset_derived": sum(1 for m in self._curves.values() if m.offset_derived),
            "cache_hits": self._hits,
        }

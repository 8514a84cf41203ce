"""Typed geometric primitives and their contours.

A primitive is one of five variants: path, circle, arc, rectangle and
obround.  Each variant declares whether it can be offset analytically
(``analytic``) so the offsetter never has to probe for capabilities.

Primitives are treated as immutable once built: every pipeline stage
creates new primitives, :meth:`Primitive.with_properties` returns a copy.
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import ClassVar, Optional

from .geometry.curves import CurveTag
from .geometry.utils import Point, normalize_sweep, signed_area

DRILL_ROLES = frozenset({"drill_hole", "drill_slot"})
STRATEGY_ROLES = frozenset({"peck_mark", "drill_milling_path", "centerline"})


class PrimitiveKind(Enum):
    PATH = "path"
    CIRCLE = "circle"
    ARC = "arc"
    RECTANGLE = "rectangle"
    OBROUND = "obround"


@dataclass
class ArcSegment:
    """A true arc spanning ``points[start_index .. end_index]`` of a contour.

    ``end_index < start_index`` means the arc runs through the end of the
    point list and wraps around to ``end_index`` (for a closed contour,
    ``end_index == 0`` is the closing vertex).
    """
    start_index: int
    end_index: int
    center: Point
    radius: float
    start_angle: float
    end_angle: float
    clockwise: bool
    sweep_angle: float = 0.0
    curve_id: Optional[int] = None

    def point_count(self, ring_size: int) -> int:
        """Number of ring edges the arc covers."""
        steps = (self.end_index - self.start_index) % ring_size
        return steps or ring_size


@dataclass
class Contour:
    """One ring of a primitive."""
    points: list[Point]
    is_hole: bool = False
    nesting_level: int = 0
    parent_id: Optional[int] = None
    arc_segments: list[ArcSegment] = field(default_factory=list)
    curve_ids: list[int] = field(default_factory=list)
    tags: Optional[list[Optional[CurveTag]]] = None

    @property
    def is_degenerate(self) -> bool:
        return len(self.points) < 3

    @property
    def signed_area(self) -> float:
        return signed_area(self.points)

    def reversed(self) -> Contour:
        """Return the ring walked the other way round, starting at the same vertex."""
        n = len(self.points)
        if n < 2:
            return copy.deepcopy(self)
        order = [0] + list(range(n - 1, 0, -1))
        remap = {old: (n - old) % n for old in range(n)}
        points = [self.points[i] for i in order]
        tags = None
        if self.tags is not None:
            tags = [
                None if t is None else CurveTag(t.curve_id, t.segment_index, not t.clockwise)
                for t in (self.tags[i] for i in order)
            ]
        arcs = [
            ArcSegment(
                start_index=remap[a.end_index % n],
                end_index=remap[a.start_index % n],
                center=a.center,
                radius=a.radius,
                start_angle=a.end_angle,
                end_angle=a.start_angle,
                clockwise=not a.clockwise,
                sweep_angle=-a.sweep_angle,
                curve_id=a.curve_id,
            )
            for a in self.arc_segments
        ]
        return replace(
            self,
            points=points,
            arc_segments=arcs,
            curve_ids=list(self.curve_ids),
            tags=tags,
        )


class Primitive:
    """Base of the primitive variants.  Not instantiated directly."""

    kind: ClassVar[PrimitiveKind]
    analytic: ClassVar[bool] = False

    @property
    def polarity(self) -> str:
        return self.properties.get("polarity", "dark")

    @property
    def is_clear(self) -> bool:
        return self.polarity == "clear"

    @property
    def role(self) -> Optional[str]:
        return self.properties.get("role")

    def with_properties(self, **updates) -> Primitive:
        return replace(self, properties={**self.properties, **updates})

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        raise NotImplementedError


@dataclass
class PathPrimitive(Primitive):
    """Polyline region or stroke.

    With ``stroke_width`` unset the contours describe a filled region (one
    outer ring plus hole rings).  With ``stroke_width`` set, ``contours[0]``
    is the centreline of a trace of that width.
    """
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.PATH

    contours: list[Contour]
    closed: bool = True
    stroke_width: Optional[float] = None
    properties: dict = field(default_factory=dict)

    @property
    def analytic(self) -> bool:  # type: ignore[override]
        return self.is_stroke

    @property
    def is_stroke(self) -> bool:
        return self.stroke_width is not None and self.stroke_width > 0

    @property
    def outer(self) -> Optional[Contour]:
        for c in self.contours:
            if not c.is_hole:
                return c
        return None

    @property
    def holes(self) -> list[Contour]:
        return [c for c in self.contours if c.is_hole]

    @property
    def points(self) -> list[Point]:
        return self.contours[0].points if self.contours else []

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        pts = [p for c in self.contours for p in c.points]
        if not pts:
            return (0.0, 0.0, 0.0, 0.0)
        pad = (self.stroke_width or 0.0) / 2.0
        xs = [p[0] for p in pts]
        ys = [p[1] for p in pts]
        return (min(xs) - pad, min(ys) - pad, max(xs) + pad, max(ys) + pad)

    @classmethod
    def polygon(cls, points, holes=(), **properties) -> PathPrimitive:
        contours = [Contour(points=[tuple(p) for p in points])]
        for hole in holes:
            contours.append(Contour(points=[tuple(p) for p in hole], is_hole=True,
                                    nesting_level=1, parent_id=0))
        return cls(contours=contours, closed=True, properties=dict(properties))

    @classmethod
    def polyline(cls, points, stroke_width: Optional[float] = None, **properties) -> PathPrimitive:
        return cls(
            contours=[Contour(points=[tuple(p) for p in points])],
            closed=False,
            stroke_width=stroke_width,
            properties=dict(properties),
        )


@dataclass
class CirclePrimitive(Primitive):
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.CIRCLE
    analytic: ClassVar[bool] = True

    center: Point
    radius: float
    properties: dict = field(default_factory=dict)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        cx, cy = self.center
        r = self.radius
        return (cx - r, cy - r, cx + r, cy + r)


@dataclass
class ArcPrimitive(Primitive):
    """Circular arc, optionally stroked with ``stroke_width``."""
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.ARC
    analytic: ClassVar[bool] = True

    center: Point
    radius: float
    start_angle: float
    end_angle: float
    clockwise: bool = False
    stroke_width: float = 0.0
    properties: dict = field(default_factory=dict)

    @property
    def start_point(self) -> Point:
        return (self.center[0] + self.radius * math.cos(self.start_angle),
                self.center[1] + self.radius * math.sin(self.start_angle))

    @property
    def end_point(self) -> Point:
        return (self.center[0] + self.radius * math.cos(self.end_angle),
                self.center[1] + self.radius * math.sin(self.end_angle))

    @property
    def sweep(self) -> float:
        return normalize_sweep(self.start_angle, self.end_angle, self.clockwise)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        cx, cy = self.center
        r = self.radius + self.stroke_width / 2.0
        return (cx - r, cy - r, cx + r, cy + r)


@dataclass
class RectanglePrimitive(Primitive):
    """Axis-aligned rectangle; ``position`` is the lower-left corner."""
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.RECTANGLE

    position: Point
    width: float
    height: float
    properties: dict = field(default_factory=dict)

    def corners(self) -> list[Point]:
        x, y = self.position
        return [(x, y), (x + self.width, y), (x + self.width, y + self.height), (x, y + self.height)]

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        x, y = self.position
        return (x, y, x + self.width, y + self.height)


@dataclass
class ObroundPrimitive(Primitive):
    """Stadium shape centred on ``center``.

    ``width`` runs along the local x axis, which is rotated by ``rotation``
    radians.  The shorter side is the cap diameter.
    """
    kind: ClassVar[PrimitiveKind] = PrimitiveKind.OBROUND
    analytic: ClassVar[bool] = True

    center: Point
    width: float
    height: float
    rotation: float = 0.0
    properties: dict = field(default_factory=dict)

    @classmethod
    def from_slot(cls, start: Point, end: Point, diameter: float, **properties) -> ObroundPrimitive:
        """Build the outline of a drilled slot from its endpoints."""
        length = math.hypot(end[0] - start[0], end[1] - start[1])
        rotation = math.atan2(end[1] - start[1], end[0] - start[0]) if length > 0 else 0.0
        center = ((start[0] + end[0]) / 2.0, (start[1] + end[1]) / 2.0)
        props = {"role": "drill_slot", "diameter": diameter, **properties}
        return cls(center=center, width=length + diameter, height=diameter,
                   rotation=rotation, properties=props)

    @property
    def cap_radius(self) -> float:
        return min(self.width, self.height) / 2.0

    @property
    def slot_length(self) -> float:
        """Distance between the two cap centres."""
        return abs(self.width - self.height)

    @property
    def axis_angle(self) -> float:
        """Direction of the long axis."""
        if self.width >= self.height:
            return self.rotation
        return self.rotation + math.pi / 2.0

    def centerline(self) -> tuple[Point, Point]:
        """Cap centres, start first."""
        half = self.slot_length / 2.0
        a = self.axis_angle
        dx, dy = half * math.cos(a), half * math.sin(a)
        cx, cy = self.center
        return (cx - dx, cy - dy), (cx + dx, cy + dy)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        (x1, y1), (x2, y2) = self.centerline()
        r = self.cap_radius
        return (min(x1, x2) - r, min(y1, y2) - r, max(x1, x2) + r, max(y1, y2) + r)


# ---------------------------------------------------------------------------
# JSON interchange
# ---------------------------------------------------------------------------


def _contour_to_dict(c: Contour) -> dict:
    d = {"points": [list(p) for p in c.points]}
    if c.is_hole:
        d["is_hole"] = True
    if c.nesting_level:
        d["nesting_level"] = c.nesting_level
    if c.parent_id is not None:
        d["parent_id"] = c.parent_id
    if c.arc_segments:
        d["arc_segments"] = [
            {
                "start_index": a.start_index,
                "end_index": a.end_index,
                "center": list(a.center),
                "radius": a.radius,
                "start_angle": a.start_angle,
                "end_angle": a.end_angle,
                "clockwise": a.clockwise,
                "sweep_angle": a.sweep_angle,
                "curve_id": a.curve_id,
            }
            for a in c.arc_segments
        ]
    if c.curve_ids:
        d["curve_ids"] = list(c.curve_ids)
    return d


def _contour_from_dict(d: dict) -> Contour:
    arcs = [
        ArcSegment(
            start_index=a["start_index"],
            end_index=a["end_index"],
            center=tuple(a["center"]),
            radius=a["radius"],
            start_angle=a["start_angle"],
            end_angle=a["end_angle"],
            clockwise=a.get("clockwise", False),
            sweep_angle=a.get("sweep_angle", 0.0),
            curve_id=a.get("curve_id"),
        )
        for a in d.get("arc_segments", [])
    ]
    return Contour(
        points=[tuple(p) for p in d["points"]],
        is_hole=d.get("is_hole", False),
        nesting_level=d.get("nesting_level", 0),
        parent_id=d.get("parent_id"),
        arc_segments=arcs,
        curve_ids=list(d.get("curve_ids", [])),
    )


def primitive_to_dict(p: Primitive) -> dict:
    """Serialize a primitive to plain JSON-compatible data."""
    d: dict = {"type": p.kind.value}
    if isinstance(p, PathPrimitive):
        d["contours"] = [_contour_to_dict(c) for c in p.contours]
        d["closed"] = p.closed
        if p.stroke_width is not None:
            d["stroke_width"] = p.stroke_width
    elif isinstance(p, CirclePrimitive):
        d["center"] = list(p.center)
        d["radius"] = p.radius
    elif isinstance(p, ArcPrimitive):
        d.update(center=list(p.center), radius=p.radius, start_angle=p.start_angle,
                 end_angle=p.end_angle, clockwise=p.clockwise, stroke_width=p.stroke_width)
    elif isinstance(p, RectanglePrimitive):
        d.update(position=list(p.position), width=p.width, height=p.height)
    elif isinstance(p, ObroundPrimitive):
        d.update(center=list(p.center), width=p.width, height=p.height, rotation=p.rotation)
    else:
        raise TypeError(f"Cannot serialize {type(p).__name__}")
    if p.properties:
        d["properties"] = dict(p.properties)
    return d


def primitive_from_dict(d: dict) -> Primitive:
    """Inverse of :func:`primitive_to_dict`.

    A ``path`` may also be given in the short form ``{"points": [...]}``,
    and a drill slot as ``{"type": "slot", "start", "end", "diameter"}``.
    """
    kind = d.get("type", "path")
    props = dict(d.get("properties", {}))
    if kind == "path":
        if "contours" in d:
            contours = [_contour_from_dict(c) for c in d["contours"]]
        else:
            contours = [Contour(points=[tuple(p) for p in d["points"]])]
        return PathPrimitive(contours=contours, closed=d.get("closed", True),
                             stroke_width=d.get("stroke_width"), properties=props)
    if kind == "circle":
        return CirclePrimitive(center=tuple(d["center"]), radius=d["radius"], properties=props)
    if kind == "arc":
        return ArcPrimitive(
            center=tuple(d["center"]), radius=d["radius"],
            start_angle=d["start_angle"], end_angle=d["end_angle"],
            clockwise=d.get("clockwise", False), stroke_width=d.get("stroke_width", 0.0),
            properties=props,
        )
    if kind == "rectangle":
        return RectanglePrimitive(position=tuple(d["position"]), width=d["width"],
                                  height=d["height"], properties=props)
    if kind == "obround":
        return ObroundPrimitive(center=tuple(d["center"]), width=d["width"], height=d["height"],
                                rotation=d.get("rotation", 0.0), properties=props)
    if kind == "slot":
        return ObroundPrimitive.from_slot(tuple(d["start"]), tuple(d["end"]), d["diameter"], **props)
    raise ValueError(f"Unknown primitive type: {kind!r}")

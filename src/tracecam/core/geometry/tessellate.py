"""Tessellation: analytic primitives -> tagged polygon rings.

The boolean engine only understands polygons, so every primitive is
converted into rings of vertices here.  Vertices that lie on an analytic
curve carry a :class:`~.curves.CurveTag` naming the registered curve so
that the arc reconstructor can recover the curve afterwards.
"""

from __future__ import annotations

import copy
import logging
import math
from typing import Iterable, Optional, Sequence

import numpy as np
from shapely.geometry import LinearRing, LineString

from ...config.defaults import GeometryConfig
from ..primitives import (
    ArcPrimitive,
    ArcSegment,
    CirclePrimitive,
    Contour,
    ObroundPrimitive,
    PathPrimitive,
    Primitive,
    RectanglePrimitive,
)
from .curves import CurveKind, CurveMetadata, CurveRegistry, CurveTag
from .utils import (
    Point,
    TWO_PI,
    angle_in_span,
    distance,
    ensure_polygon,
    iter_polygons,
    polyline_length,
    ring_points,
)

logger = logging.getLogger(__name__)

_JOIN_EPS = 1e-9


def segment_count(radius: float, sweep: float, config: GeometryConfig) -> int:
    """Number of chords used for an arc of *radius* spanning *sweep* radians."""
    circumference = TWO_PI * abs(radius)
    full = math.ceil(circumference / config.target_segment_length) if circumference > 0 else 0
    full = max(config.min_segments, min(config.max_segments, full))
    return max(1, math.ceil(full * abs(sweep) / TWO_PI - 1e-9))


def arc_points(
    center: Point,
    radius: float,
    start_angle: float,
    sweep: float,
    config: GeometryConfig,
) -> list[Point]:
    """Sample an arc including both endpoints."""
    n = segment_count(radius, sweep, config)
    angles = start_angle + sweep * np.linspace(0.0, 1.0, n + 1)
    xs = center[0] + radius * np.cos(angles)
    ys = center[1] + radius * np.sin(angles)
    return list(zip(xs.tolist(), ys.tolist()))


def circle_points(center: Point, radius: float, config: GeometryConfig) -> list[Point]:
    """Counter-clockwise circle starting at angle 0, without closing duplicate."""
    return arc_points(center, radius, 0.0, TWO_PI, config)[:-1]


def _register(
    registry: Optional[CurveRegistry],
    kind: CurveKind,
    center: Point,
    radius: float,
    start: Optional[float],
    sweep: Optional[float],
    source: str,
    offset_derived: bool,
) -> Optional[int]:
    if registry is None:
        return None
    meta = CurveMetadata(
        kind=kind,
        center=(float(center[0]), float(center[1])),
        radius=float(radius),
        start_angle=start,
        end_angle=None if start is None else start + sweep,
        clockwise=bool(sweep is not None and sweep < 0),
        source=source,
        offset_derived=offset_derived,
    )
    return registry.register(meta)


def _circle_contour(
    center: Point,
    radius: float,
    config: GeometryConfig,
    registry: Optional[CurveRegistry],
    source: str,
    offset_derived: bool,
    is_hole: bool = False,
) -> Contour:
    curve_id = _register(registry, CurveKind.CIRCLE, center, radius, None, None, source, offset_derived)
    contour = Contour(
        points=circle_points(center, radius, config),
        arc_segments=[ArcSegment(0, 0, tuple(center), radius, 0.0, TWO_PI, False, TWO_PI, curve_id)],
        curve_ids=[curve_id] if curve_id is not None else [],
    )
    if is_hole:
        contour = contour.reversed()
        contour.is_hole = True
        contour.nesting_level = 1
        contour.parent_id = 0
    return contour


def _ring_from_arcs(
    pieces: Sequence[tuple[Point, float, float, float]],
    config: GeometryConfig,
    registry: Optional[CurveRegistry],
    source: str,
    offset_derived: bool,
) -> Contour:
    """Chain arcs into one closed ring.

    Consecutive pieces either share an endpoint or are joined by a
    straight edge.  Each piece is ``(center, radius, start_angle, sweep)``.
    """
    points: list[Point] = []
    arcs: list[ArcSegment] = []
    for center, radius, start, sweep in pieces:
        pts = arc_points(center, radius, start, sweep, config)
        if points and distance(points[-1], pts[0]) < _JOIN_EPS:
            pts = pts[1:]
            start_idx = len(points) - 1
        else:
            start_idx = len(points)
        points.extend(pts)
        curve_id = _register(registry, CurveKind.ARC, center, radius, start, sweep, source, offset_derived)
        arcs.append(ArcSegment(
            start_index=start_idx,
            end_index=len(points) - 1,
            center=tuple(center),
            radius=radius,
            start_angle=start,
            end_angle=start + sweep,
            clockwise=sweep < 0,
            sweep_angle=sweep,
            curve_id=curve_id,
        ))
    if len(points) > 1 and distance(points[-1], points[0]) < _JOIN_EPS:
        points.pop()
        for a in arcs:
            if a.end_index == len(points):
                a.end_index = 0
    curve_ids = sorted({a.curve_id for a in arcs if a.curve_id is not None})
    return Contour(points=points, arc_segments=arcs, curve_ids=curve_ids)


def _obround_contour(p: ObroundPrimitive, config, registry, source, offset_derived) -> Contour:
    r = p.cap_radius
    if p.slot_length < config.coordinate_precision:
        return _circle_contour(p.center, r, config, registry, source, offset_derived)
    start_cap, end_cap = p.centerline()
    a = p.axis_angle
    half_pi = math.pi / 2.0
    return _ring_from_arcs(
        [
            (end_cap, r, a - half_pi, math.pi),
            (start_cap, r, a + half_pi, math.pi),
        ],
        config, registry, source, offset_derived,
    )


def _arc_trace_contours(p: ArcPrimitive, config, registry, source, offset_derived) -> list[Contour]:
    half = p.stroke_width / 2.0
    sweep = p.sweep
    if p.clockwise:
        start = p.start_angle + sweep
        sweep = -sweep
    else:
        start = p.start_angle
    outer_r = p.radius + half
    inner_r = p.radius - half

    if sweep >= TWO_PI - 1e-9:
        contours = [_circle_contour(p.center, outer_r, config, registry, source, offset_derived)]
        if inner_r > config.coordinate_precision:
            contours.append(_circle_contour(p.center, inner_r, config, registry, source,
                                            offset_derived, is_hole=True))
        return contours

    if inner_r <= config.coordinate_precision:
        pts = arc_points(p.center, p.radius, start, sweep, config)
        return _stroke_contours(pts, p.stroke_width, False, config, registry, source, offset_derived)

    end = start + sweep
    start_pt = (p.center[0] + p.radius * math.cos(start), p.center[1] + p.radius * math.sin(start))
    end_pt = (p.center[0] + p.radius * math.cos(end), p.center[1] + p.radius * math.sin(end))
    return [_ring_from_arcs(
        [
            (p.center, outer_r, start, sweep),
            (end_pt, half, end, math.pi),
            (p.center, inner_r, end, -sweep),
            (start_pt, half, start + math.pi, math.pi),
        ],
        config, registry, source, offset_derived,
    )]


def tag_points(
    points: Sequence[Point],
    candidates: Iterable[tuple[int, CurveMetadata]],
    tolerance: float,
    step: float,
) -> list[Optional[CurveTag]]:
    """Tag every vertex lying on one of the *candidates* curves.

    A vertex is on a curve when its distance to the centre matches the
    radius within *tolerance* and, for arcs, its angle lies within the
    arc span.  The first matching candidate wins.
    """
    tags: list[Optional[CurveTag]] = [None] * len(points)
    if not points:
        return tags
    arr = np.asarray(points, dtype=float)
    free = np.ones(len(points), dtype=bool)
    for curve_id, meta in candidates:
        dx = arr[:, 0] - meta.center[0]
        dy = arr[:, 1] - meta.center[1]
        on_curve = free & (np.abs(np.hypot(dx, dy) - meta.radius) < tolerance)
        if not on_curve.any():
            continue
        angles = np.arctan2(dy, dx)
        if meta.kind is CurveKind.ARC and meta.start_angle is not None:
            sweep = meta.end_angle - meta.start_angle
            for idx in np.flatnonzero(on_curve):
                if not angle_in_span(float(angles[idx]), meta.start_angle, sweep, slack=step / 2):
                    on_curve[idx] = False
            base = meta.start_angle
        else:
            base = 0.0
        for idx in np.flatnonzero(on_curve):
            rel = (float(angles[idx]) - base) % TWO_PI
            tags[idx] = CurveTag(curve_id, int(round(rel / step)), meta.clockwise)
        free &= ~on_curve
    return tags


def _stroke_contours(
    pts: Sequence[Point],
    width: float,
    closed: bool,
    config: GeometryConfig,
    registry: Optional[CurveRegistry],
    source: str,
    offset_derived: bool,
) -> list[Contour]:
    """Outline of a round-capped, round-jointed stroke along *pts*."""
    half = width / 2.0
    if polyline_length(pts) < _JOIN_EPS:
        return [_circle_contour(pts[0], half, config, registry, source, offset_derived)]

    quad_segs = max(config.min_joint_segments, segment_count(half, TWO_PI, config) // 4)
    line = LinearRing(pts) if closed and len(pts) >= 3 else LineString(pts)
    geom = ensure_polygon(line.buffer(half, quad_segs=quad_segs, cap_style="round", join_style="round"))

    candidates: list[tuple[int, CurveMetadata]] = []
    if registry is not None:
        seen = set()
        for v in pts:
            key = (round(v[0], 9), round(v[1], 9))
            if key in seen:
                continue
            seen.add(key)
            cid = _register(registry, CurveKind.CIRCLE, v, half, None, None, source, offset_derived)
            candidates.append((cid, registry.get(cid)))

    step = TWO_PI / (4 * quad_segs)
    contours: list[Contour] = []
    for poly in iter_polygons(geom):
        rings = [(poly.exterior.coords, False)] + [(r.coords, True) for r in poly.interiors]
        for coords, is_hole in rings:
            ring = ring_points(coords)
            if len(ring) < 3:
                continue
            contours.append(Contour(
                points=ring,
                is_hole=is_hole,
                nesting_level=1 if is_hole else 0,
                parent_id=0 if is_hole else None,
                tags=tag_points(ring, candidates, config.coordinate_precision, step),
                curve_ids=[cid for cid, _ in candidates],
            ))
    return contours


def outline(
    primitive: Primitive,
    config: GeometryConfig,
    registry: Optional[CurveRegistry] = None,
) -> list[Contour]:
    """Closed boundary contours of *primitive*.

    Arcs of analytic shapes are kept as :class:`ArcSegment` entries and,
    when a registry is given, registered so their ids can be tagged.
    Open zero-width curves have no area and yield an empty list.
    """
    source = primitive.kind.value
    offset_derived = bool(primitive.properties.get("is_offset", False))

    if isinstance(primitive, CirclePrimitive):
        if primitive.radius <= 0:
            return []
        return [_circle_contour(primitive.center, primitive.radius, config, registry, source, offset_derived)]

    if isinstance(primitive, RectanglePrimitive):
        if primitive.width <= 0 or primitive.height <= 0:
            return []
        return [Contour(points=primitive.corners())]

    if isinstance(primitive, ObroundPrimitive):
        if primitive.width <= 0 or primitive.height <= 0:
            return []
        return [_obround_contour(primitive, config, registry, source, offset_derived)]

    if isinstance(primitive, ArcPrimitive):
        if primitive.stroke_width <= 0 or primitive.radius <= 0:
            return []
        return _arc_trace_contours(primitive, config, registry, source, offset_derived)

    if isinstance(primitive, PathPrimitive):
        if primitive.is_stroke:
            pts = primitive.points
            if not pts:
                return []
            return _stroke_contours(pts, primitive.stroke_width, primitive.closed,
                                    config, registry, source, offset_derived)
        if not primitive.closed:
            return []
        return [copy.deepcopy(c) for c in primitive.contours if not c.is_degenerate]

    raise TypeError(f"Cannot outline {type(primitive).__name__}")


def tags_from_arcs(contour: Contour) -> list[Optional[CurveTag]]:
    """Per-vertex tags implied by the contour's registered arc segments."""
    n = len(contour.points)
    tags: list[Optional[CurveTag]] = [None] * n
    for arc in contour.arc_segments:
        if arc.curve_id is None:
            continue
        for k in range(arc.point_count(n) + 1):
            idx = (arc.start_index + k) % n
            if tags[idx] is None:
                tags[idx] = CurveTag(arc.curve_id, k, arc.clockwise)
    return tags


def tessellate(
    primitive: Primitive,
    config: GeometryConfig,
    registry: Optional[CurveRegistry] = None,
) -> Optional[PathPrimitive]:
    """Convert *primitive* into a filled, tagged polygon primitive.

    Returns None when the primitive encloses no area.
    """
    contours = outline(primitive, config, registry)
    contours = [c for c in contours if not c.is_degenerate]
    if not contours:
        return None
    for contour in contours:
        if contour.tags is None:
            contour.tags = tags_from_arcs(contour)
    return PathPrimitive(
        contours=contours,
        closed=True,
        properties={**primitive.properties, "tessellated": True, "source_kind": primitive.kind.value},
    )

"""Geometry helper utilities shared across the offset and toolpath stages."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import numpy as np
from shapely.geometry import (
    GeometryCollection,
    MultiPolygon,
    Polygon,
)
from shapely.ops import unary_union
from shapely.validation import make_valid

TWO_PI = 2.0 * math.pi

Point = tuple[float, float]


def ensure_polygon(geom) -> Polygon | MultiPolygon:
    """Return a valid Polygon or MultiPolygon, or empty Polygon on failure."""
    if geom is None or geom.is_empty:
        return Polygon()
    if not geom.is_valid:
        geom = make_valid(geom)
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    if isinstance(geom, GeometryCollection):
        polys = [g for g in geom.geoms if isinstance(g, (Polygon, MultiPolygon))]
        if polys:
            return unary_union(polys)
    return Polygon()


def iter_polygons(geom: Polygon | MultiPolygon):
    """Yield individual Polygon objects from a possibly Multi geometry."""
    if isinstance(geom, Polygon):
        if not geom.is_empty:
            yield geom
    elif isinstance(geom, MultiPolygon):
        for p in geom.geoms:
            if not p.is_empty:
                yield p


def ring_points(coords: Iterable[Sequence[float]]) -> list[Point]:
    """Return ring coordinates as (x, y) tuples without the closing duplicate."""
    pts = [(float(c[0]), float(c[1])) for c in coords]
    if len(pts) > 1 and pts[0] == pts[-1]:
        pts.pop()
    return pts


def signed_area(points: Sequence[Point]) -> float:
    """Shoelace area; positive for counter-clockwise rings."""
    if len(points) < 3:
        return 0.0
    arr = np.asarray(points, dtype=float)
    x, y = arr[:, 0], arr[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def distance(a: Point, b: Point) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def angle_of(center: Point, point: Point) -> float:
    return math.atan2(point[1] - center[1], point[0] - center[0])


def point_on_circle(center: Point, radius: float, angle: float) -> Point:
    return (center[0] + radius * math.cos(angle), center[1] + radius * math.sin(angle))


def wrap_angle(delta: float) -> float:
    """Wrap an angular difference into (-pi, pi]."""
    delta = math.fmod(delta, TWO_PI)
    if delta <= -math.pi:
        delta += TWO_PI
    elif delta > math.pi:
        delta -= TWO_PI
    return delta


def normalize_sweep(start: float, end: float, clockwise: bool) -> float:
    """Signed sweep from *start* to *end* in the given rotational sense.

    Clockwise sweeps are negative, counter-clockwise positive.  Equal
    angles are treated as a full revolution.
    """
    sweep = end - start
    if clockwise:
        while sweep >= -1e-9:
            sweep -= TWO_PI
        while sweep < -TWO_PI - 1e-9:
            sweep += TWO_PI
    else:
        while sweep <= 1e-9:
            sweep += TWO_PI
        while sweep > TWO_PI + 1e-9:
            sweep -= TWO_PI
    return sweep


def angle_in_span(angle: float, start: float, sweep: float, slack: float = 1e-6) -> bool:
    """True if *angle* lies on the arc starting at *start* with signed *sweep*."""
    if abs(sweep) >= TWO_PI - slack:
        return True
    if sweep >= 0:
        rel = (angle - start) % TWO_PI
        return rel <= sweep + slack or rel >= TWO_PI - slack
    rel = (start - angle) % TWO_PI
    return rel <= -sweep + slack or rel >= TWO_PI - slack


def polyline_length(points: Sequence[Point], closed: bool = False) -> float:
    if len(points) < 2:
        return 0.0
    arr = np.asarray(points, dtype=float)
    if closed:
        arr = np.vstack([arr, arr[:1]])
    return float(np.sum(np.hypot(np.diff(arr[:, 0]), np.diff(arr[:, 1]))))

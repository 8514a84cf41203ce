"""Offset individual primitives by a signed radial distance.

Positive distances grow a shape, negative distances shrink it.  Circles,
arcs, strokes and obrounds are offset in closed form and stay analytic.
Rectangles and filled regions go through the polygon offsetter (shapely
``buffer``); vertices of the result that sit on round joins or on offset
copies of source arcs are tagged so the arcs can be recovered later.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Union

from shapely.geometry import Polygon

from ...config.defaults import GeometryConfig
from ..primitives import (
    ArcPrimitive,
    CirclePrimitive,
    Contour,
    ObroundPrimitive,
    PathPrimitive,
    Primitive,
    RectanglePrimitive,
)
from .curves import CurveKind, CurveMetadata, CurveRegistry
from .tessellate import outline, segment_count, tag_points
from .utils import TWO_PI, ensure_polygon, iter_polygons, polyline_length, ring_points

logger = logging.getLogger(__name__)

OffsetResult = Union[Primitive, list[Primitive], None]

_JOIN_STYLES = {"round": "round", "miter": "mitre", "mitre": "mitre", "bevel": "bevel"}


class GeometryOffsetter:
    """Offset primitives, preferring analytic results."""

    def __init__(self, config: GeometryConfig, registry: Optional[CurveRegistry] = None):
        self.config = config
        self.registry = registry

    def offset_primitive(
        self,
        primitive: Primitive,
        distance: float,
        settings: Optional[dict] = None,
    ) -> OffsetResult:
        """Offset *primitive* by *distance*.

        Returns a primitive, a list of primitives (when the polygon offset
        splits into pieces), or None when the result degenerates below the
        minimum feature size.
        """
        settings = settings or {}
        if abs(distance) < self.config.coordinate_precision:
            return primitive
        props = {
            **primitive.properties,
            "is_offset": True,
            "offset_distance": distance,
            "source_kind": primitive.kind.value,
        }
        floor = self.config.min_feature_size

        if isinstance(primitive, CirclePrimitive):
            radius = primitive.radius + distance
            if radius < floor:
                return None
            return CirclePrimitive(center=primitive.center, radius=radius, properties=props)

        if isinstance(primitive, ArcPrimitive):
            if primitive.stroke_width > 0:
                width = primitive.stroke_width + 2.0 * distance
                if width < floor:
                    return None
                return replace(primitive, stroke_width=width, properties=props)
            radius = primitive.radius + distance
            if radius < floor:
                return None
            return replace(primitive, radius=radius, properties=props)

        if isinstance(primitive, ObroundPrimitive):
            width = primitive.width + 2.0 * distance
            height = primitive.height + 2.0 * distance
            if min(width, height) < floor:
                return None
            return replace(primitive, width=width, height=height, properties=props)

        if isinstance(primitive, PathPrimitive) and primitive.is_stroke:
            if not primitive.points:
                return None
            width = primitive.stroke_width + 2.0 * distance
            if width < floor:
                return None
            return replace(primitive, stroke_width=width, properties=props)

        if isinstance(primitive, (RectanglePrimitive, PathPrimitive)):
            return self._offset_polygon(primitive, distance, props, settings)

        raise ValueError(f"Cannot offset primitive of kind {primitive.kind.value}")

    # ------------------------------------------------------------------
    # Polygon offsetting
    # ------------------------------------------------------------------

    def _quad_segs(self, radius: float) -> int:
        return max(self.config.min_joint_segments, segment_count(radius, TWO_PI, self.config) // 4)

    def _offset_polygon(
        self,
        primitive: Union[RectanglePrimitive, PathPrimitive],
        distance: float,
        props: dict,
        settings: dict,
    ) -> OffsetResult:
        if isinstance(primitive, PathPrimitive) and not primitive.closed:
            if polyline_length(primitive.points) == 0:
                return None
            raise ValueError("Open paths without a stroke width have no area to offset")

        contours = outline(primitive, self.config)
        shells = [c for c in contours if not c.is_hole]
        holes = [c for c in contours if c.is_hole]
        if not shells:
            return None
        source = ensure_polygon(Polygon(shells[0].points, [h.points for h in holes]))
        for extra in shells[1:]:
            source = ensure_polygon(source.union(Polygon(extra.points)))

        join = _JOIN_STYLES.get(settings.get("join_type", self.config.join_type), "round")
        miter_limit = settings.get("miter_limit", self.config.miter_limit)
        quad_segs = self._quad_segs(abs(distance))
        geom = ensure_polygon(source.buffer(
            distance,
            quad_segs=quad_segs,
            join_style=join,
            mitre_limit=miter_limit,
        ))

        candidates = self._curve_candidates(contours, distance, join)
        step = TWO_PI / (4 * quad_segs)
        results: list[Primitive] = []
        for poly in iter_polygons(geom):
            if poly.area < self.config.min_feature_size ** 2:
                continue
            new_contours = []
            rings = [(poly.exterior.coords, False)] + [(r.coords, True) for r in poly.interiors]
            for coords, is_hole in rings:
                pts = ring_points(coords)
                if len(pts) < 3:
                    continue
                tags = tag_points(pts, candidates, self.config.coordinate_precision, step)
                new_contours.append(Contour(
                    points=pts,
                    is_hole=is_hole,
                    nesting_level=1 if is_hole else 0,
                    parent_id=0 if is_hole else None,
                    curve_ids=sorted({t.curve_id for t in tags if t is not None}),
                    tags=tags,
                ))
            if new_contours and not new_contours[0].is_hole:
                results.append(PathPrimitive(contours=new_contours, closed=True, properties=dict(props)))

        if not results:
            logger.debug("Offset of %s by %.4f vanished", primitive.kind.value, distance)
            return None
        return results[0] if len(results) == 1 else results

    def _curve_candidates(
        self,
        contours: list[Contour],
        distance: float,
        join: str,
    ) -> list[tuple[int, CurveMetadata]]:
        """Register the curves a polygon offset is expected to produce."""
        if self.registry is None:
            return []
        d = abs(distance)
        candidates: list[tuple[int, CurveMetadata]] = []

        def add(meta: CurveMetadata) -> None:
            cid = self.registry.register(meta)
            candidates.append((cid, self.registry.get(cid)))

        for contour in contours:
            for arc in contour.arc_segments:
                for radius in (arc.radius + d, arc.radius - d):
                    if radius < self.config.min_feature_size:
                        continue
                    add(CurveMetadata(
                        kind=CurveKind.ARC,
                        center=tuple(arc.center),
                        radius=radius,
                        start_angle=arc.start_angle,
                        end_angle=arc.start_angle + (arc.sweep_angle or (arc.end_angle - arc.start_angle)),
                        clockwise=arc.clockwise,
                        source="offset_arc",
                        offset_derived=True,
                        source_curve_id=arc.curve_id,
                        offset_distance=distance,
                    ))
            if join != "round":
                continue
            n = len(contour.points)
            smooth = {
                (arc.start_index + k) % n
                for arc in contour.arc_segments
                for k in range(1, arc.point_count(n))
            }
            for i, vertex in enumerate(contour.points):
                if i in smooth:
                    continue
                add(CurveMetadata(
                    kind=CurveKind.CIRCLE,
                    center=(float(vertex[0]), float(vertex[1])),
                    radius=d,
                    source="offset_joint",
                    offset_derived=True,
                    offset_distance=distance,
                ))
        return candidates


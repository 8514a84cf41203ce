"""Geometry translator: offset geometry -> pure cutting plans.

One plan is produced per contour per depth level.  Plans carry only the
cutting moves (lines and I/J arcs) starting at ``plan.start``; rapids,
entries and retracts are added later by the machine processor.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from ..context import ToolpathContext
from ..geometry.tessellate import outline
from ..geometry.utils import point_on_circle
from ..operation import ManufacturingWarning, Operation, OperationType
from ..primitives import (
    ArcPrimitive,
    CirclePrimitive,
    Contour,
    PathPrimitive,
    Primitive,
)
from .base import PathElement, PlanMetadata, ToolpathPlan
from .tabs import TabLayout, TabPlanner

logger = logging.getLogger(__name__)

_MIN_PIECE = 1e-6


def contour_elements(contour: Contour) -> list[PathElement]:
    """Walk a closed contour as lines and arcs, starting outside any arc."""
    pts = contour.points
    n = len(pts)
    if n < 2:
        return []
    by_start = {a.start_index % n: a for a in contour.arc_segments}
    interior = {
        (a.start_index + k) % n
        for a in contour.arc_segments
        for k in range(1, a.point_count(n))
    }
    start = next((i for i in range(n) if i not in interior), 0)

    elements: list[PathElement] = []
    i, steps = start, 0
    while True:
        arc = by_start.get(i)
        if arc is not None:
            j = (arc.start_index + arc.point_count(n)) % n
            elements.append(PathElement(pts[i], pts[j], tuple(arc.center), arc.clockwise))
        else:
            j = (i + 1) % n
            if pts[i] != pts[j]:
                elements.append(PathElement(pts[i], pts[j]))
        i = j
        steps += 1
        if i == start or steps > n:
            break
    return elements


def polyline_elements(points) -> list[PathElement]:
    return [PathElement(tuple(a), tuple(b)) for a, b in zip(points, points[1:]) if tuple(a) != tuple(b)]


def reverse_elements(elements: list[PathElement]) -> list[PathElement]:
    return [e.reversed() for e in reversed(elements)]


def is_clockwise(elements: list[PathElement]) -> bool:
    """Orientation of a closed element loop, arcs included."""
    area = 0.0
    for e in elements:
        area += e.start[0] * e.end[1] - e.end[0] * e.start[1]
        if e.is_arc:
            # circular segment between the chord and the arc
            r, sweep = e.radius, e.sweep
            area += r * r * (sweep - math.sin(sweep))
    return area < 0


def split_for_tabs(elements, intervals) -> list[tuple[PathElement, bool]]:
    """Cut *elements* at tab boundaries, flagging the pieces inside a tab."""
    pieces: list[tuple[PathElement, bool]] = []
    s = 0.0
    for e in elements:
        length = e.length
        a, b = s, s + length
        cuts = sorted({a, b} | {x for iv in intervals for x in iv if a < x < b})
        for c0, c1 in zip(cuts, cuts[1:]):
            if c1 - c0 < _MIN_PIECE:
                continue
            mid = (c0 + c1) / 2.0
            in_tab = any(lo <= mid <= hi for lo, hi in intervals)
            piece = e if (c0 == a and c1 == b) else e.split(c0 - a, c1 - a)
            pieces.append((piece, in_tab))
        s = b
    return pieces


class GeometryTranslator:
    """Translate an operation's offset groups into cutting plans."""

    def __init__(self, context: ToolpathContext):
        self.context = context
        self.warnings: list[ManufacturingWarning] = []

    # ------------------------------------------------------------------

    def translate(self, operation: Operation) -> list[ToolpathPlan]:
        self.warnings = []
        plans: list[ToolpathPlan] = []
        for g_idx, group in enumerate(operation.offsets):
            for p_idx, prim in enumerate(group.primitives):
                path_id = f"{operation.id}:{g_idx}:{p_idx}"
                plans.extend(self._translate_primitive(prim, path_id))
        logger.debug("Translated %s into %d plans", operation.id, len(plans))
        return plans

    def _metadata(self, path_id: str, depth: float, kind: str, closed: bool = True, **extra) -> PlanMetadata:
        ctx = self.context
        drill = ctx.drill
        return PlanMetadata(
            operation_id=ctx.operation_id,
            operation_type=ctx.operation_type.value,
            path_id=path_id,
            depth=depth,
            kind=kind,
            closed=closed,
            tool_number=ctx.tool.number,
            tool_diameter=ctx.tool.diameter,
            feed_rate=ctx.cutting.feed_rate,
            plunge_rate=ctx.cutting.plunge_rate,
            spindle_speed=ctx.cutting.spindle_speed,
            spindle_dwell=ctx.cutting.spindle_dwell,
            entry_type=ctx.cutting.entry_type,
            peck_depth=drill.peck_depth if drill else 0.0,
            dwell_time=drill.dwell_time if drill else 0.0,
            retract_height=drill.retract_height if drill else ctx.toolpath.retract_height,
            canned_cycle=drill.canned_cycle if drill else "none",
            **extra,
        )

    def _want_clockwise(self, offset_type: str, is_hole: bool) -> bool:
        """Climb milling keeps the material on the right of an M3 spindle."""
        outside = offset_type != "internal"
        if is_hole:
            outside = not outside
        cw = outside
        if self.context.cutting.direction == "conventional":
            cw = not cw
        return cw

    def _translate_primitive(self, prim: Primitive, path_id: str) -> list[ToolpathPlan]:
        ctx = self.context
        final_depth = ctx.cutting.cut_depth
        role = prim.role

        if role == "peck_mark" and isinstance(prim, CirclePrimitive):
            meta = self._metadata(path_id, final_depth, "peck",
                                  reduced_plunge=bool(prim.properties.get("reduced_plunge")))
            return [ToolpathPlan(metadata=meta, start=tuple(prim.center))]

        if role == "drill_milling_path" and isinstance(prim, CirclePrimitive):
            meta = self._metadata(path_id, final_depth, "drill_mill",
                                  center=tuple(prim.center), radius=prim.radius,
                                  clockwise=self._want_clockwise("internal", False))
            return [ToolpathPlan(metadata=meta, start=point_on_circle(prim.center, prim.radius, 0.0))]

        offset_type = prim.properties.get("offset_type", "external")

        if isinstance(prim, CirclePrimitive):
            start = point_on_circle(prim.center, prim.radius, 0.0)
            elements = [PathElement(start, start, tuple(prim.center), clockwise=False)]
            if self._want_clockwise(offset_type, False):
                elements = reverse_elements(elements)
            return self._closed_plans(elements, path_id, "circle",
                                      center=tuple(prim.center), radius=prim.radius)

        if isinstance(prim, ArcPrimitive) and prim.stroke_width <= 0:
            elements = [PathElement(prim.start_point, prim.end_point, tuple(prim.center), prim.clockwise)]
            return self._open_plans(elements, path_id)

        if isinstance(prim, PathPrimitive) and not prim.closed and not prim.is_stroke:
            return self._open_plans(polyline_elements(prim.points), path_id)

        plans: list[ToolpathPlan] = []
        for c_idx, contour in enumerate(outline(prim, ctx.geometry)):
            elements = contour_elements(contour)
            if not elements:
                continue
            if is_clockwise(elements) != self._want_clockwise(offset_type, contour.is_hole):
                elements = reverse_elements(elements)
            plans.extend(self._closed_plans(elements, f"{path_id}:{c_idx}", "contour"))
        return plans

    # ------------------------------------------------------------------

    def _tab_layout(self, elements: list[PathElement], path_id: str) -> Optional[TabLayout]:
        ctx = self.context
        cutout = ctx.cutout
        if ctx.operation_type is not OperationType.CUTOUT or cutout is None:
            return None
        if cutout.tabs <= 0 or cutout.tab_height <= 0:
            return None
        planner = TabPlanner(ctx.tool.diameter, cutout.tab_width, ctx.toolpath)
        layout = planner.plan(elements, cutout.tabs)
        if not layout.complete:
            message = (f"Only {layout.placed} of {layout.requested} tabs fit on {path_id}; "
                       f"board may come loose")
            logger.warning(message)
            self.warnings.append(ManufacturingWarning("tab_risk", message, elements[0].start))
        return layout

    def _closed_plans(self, elements: list[PathElement], path_id: str, kind: str, **extra) -> list[ToolpathPlan]:
        ctx = self.context
        layout = self._tab_layout(elements, path_id)
        tab_z = None
        if layout is not None and layout.intervals:
            tab_z = ctx.cutting.cut_depth + ctx.cutout.tab_height
            if tab_z >= 0:
                tab_z = None

        plans = []
        for depth in ctx.strategy.depth_levels:
            if tab_z is not None and depth < tab_z:
                commands = [p.to_command(tab) for p, tab in split_for_tabs(elements, layout.intervals)]
            else:
                commands = [e.to_command() for e in elements]
            meta = self._metadata(path_id, depth, kind, closed=True, tab_z=tab_z, **extra)
            plans.append(ToolpathPlan(metadata=meta, commands=commands, start=elements[0].start))
        return plans

    def _open_plans(self, elements: list[PathElement], path_id: str) -> list[ToolpathPlan]:
        if not elements:
            return []
        return [
            ToolpathPlan(
                metadata=self._metadata(path_id, depth, "open", closed=False),
                commands=[e.to_command() for e in elements],
                start=elements[0].start,
            )
            for depth in self.context.strategy.depth_levels
        ]

"""Segment stitcher: join loose line/arc fragments into one closed contour.

Board outlines often arrive as dozens of disconnected segments.  The
stitcher treats quantized endpoints as graph nodes and the segments as
undirected edges, then walks an Eulerian circuit (Hierholzer's algorithm).
Either every segment ends up in one closed loop or a definite failure is
reported; a partially merged outline is never returned.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ...config.defaults import GeometryConfig
from ..primitives import ArcPrimitive, ArcSegment, Contour, PathPrimitive, Primitive
from .curves import CurveKind, CurveMetadata, CurveRegistry
from .tessellate import arc_points
from .utils import Point, distance, normalize_sweep

logger = logging.getLogger(__name__)

Node = tuple[float, float]


@dataclass
class StitchResult:
    """Outcome of a stitch attempt.

    ``order`` lists ``(segment_index, reversed)`` in traversal order.
    """
    ok: bool
    primitive: Optional[PathPrimitive] = None
    reason: Optional[str] = None
    order: list[tuple[int, bool]] = field(default_factory=list)

    @classmethod
    def failure(cls, reason: str) -> StitchResult:
        return cls(ok=False, reason=reason)


@dataclass
class _Segment:
    index: int
    points: list[Point]
    arc: Optional[ArcPrimitive] = None

    @property
    def start(self) -> Point:
        return self.points[0]

    @property
    def end(self) -> Point:
        return self.points[-1]


class SegmentStitcher:
    """Merge open segments into a single closed :class:`PathPrimitive`."""

    def __init__(
        self,
        config: GeometryConfig,
        registry: Optional[CurveRegistry] = None,
        allow_branching: bool = False,
    ):
        self.config = config
        self.registry = registry
        self.allow_branching = allow_branching

    def _node(self, p: Point) -> Node:
        d = self.config.edge_key_precision
        return (round(p[0], d) + 0.0, round(p[1], d) + 0.0)

    def _segment(self, index: int, prim: Primitive) -> Optional[_Segment]:
        if isinstance(prim, ArcPrimitive):
            pts = arc_points(prim.center, prim.radius, prim.start_angle, prim.sweep, self.config)
            return _Segment(index, pts, prim)
        if isinstance(prim, PathPrimitive) and prim.contours:
            pts = list(prim.contours[0].points)
            if prim.closed and len(pts) > 1 and pts[0] != pts[-1]:
                pts.append(pts[0])
            if len(pts) >= 2:
                return _Segment(index, pts)
        return None

    def stitch(self, primitives: Sequence[Primitive]) -> StitchResult:
        if not primitives:
            return StitchResult.failure("too_few_segments")

        segments: list[_Segment] = []
        for i, prim in enumerate(primitives):
            seg = self._segment(i, prim)
            if seg is None:
                logger.warning("Segment %d (%s) cannot be stitched", i, prim.kind.value)
                return StitchResult.failure("unsupported_segment")
            segments.append(seg)

        adjacency: dict[Node, list[tuple[int, Node, bool]]] = defaultdict(list)
        for seg in segments:
            a, b = self._node(seg.start), self._node(seg.end)
            adjacency[a].append((seg.index, b, False))
            adjacency[b].append((seg.index, a, True))

        odd = [n for n, edges in adjacency.items() if len(edges) % 2]
        if odd:
            logger.debug("Stitch failed: %d odd-degree endpoints", len(odd))
            return StitchResult.failure("odd_degree")
        if not self.allow_branching and any(len(e) > 2 for e in adjacency.values()):
            return StitchResult.failure("branching")

        start = self._node(segments[0].start)
        if not self._connected(adjacency, start):
            return StitchResult.failure("disconnected")

        order = self._circuit(adjacency, start, len(segments))
        if len(order) != len(segments):
            return StitchResult.failure("disconnected")

        first = segments[order[0][0]]
        last = segments[order[-1][0]]
        first_pt = first.end if order[0][1] else first.start
        last_pt = last.start if order[-1][1] else last.end
        if distance(first_pt, last_pt) > 10 ** -self.config.edge_key_precision:
            return StitchResult.failure("not_closed")

        primitive = self._assemble(segments, order, primitives[0].properties)
        return StitchResult(ok=True, primitive=primitive, order=order)

    @staticmethod
    def _connected(adjacency, start: Node) -> bool:
        seen = {start}
        stack = [start]
        while stack:
            node = stack.pop()
            for _, other, _ in adjacency[node]:
                if other not in seen:
                    seen.add(other)
                    stack.append(other)
        return len(seen) == len(adjacency)

    @staticmethod
    def _circuit(adjacency, start: Node, edge_count: int) -> list[tuple[int, bool]]:
        """Hierholzer's algorithm; returns edges as (segment index, reversed)."""
        used = [False] * edge_count
        cursor: dict[Node, int] = defaultdict(int)
        stack: list[tuple[Node, Optional[tuple[int, bool]]]] = [(start, None)]
        circuit: list[tuple[int, bool]] = []
        while stack:
            node, via = stack[-1]
            edges = adjacency[node]
            while cursor[node] < len(edges) and used[edges[cursor[node]][0]]:
                cursor[node] += 1
            if cursor[node] == len(edges):
                stack.pop()
                if via is not None:
                    circuit.append(via)
                continue
            index, other, reverse = edges[cursor[node]]
            used[index] = True
            stack.append((other, (index, reverse)))
        circuit.reverse()
        return circuit

    def _assemble(
        self,
        segments: list[_Segment],
        order: list[tuple[int, bool]],
        properties: dict,
    ) -> PathPrimitive:
        points: list[Point] = []
        arcs: list[ArcSegment] = []
        for index, reverse in order:
            seg = segments[index]
            pts = list(reversed(seg.points)) if reverse else list(seg.points)
            if points:
                pts = pts[1:]
                start_idx = len(points) - 1
            else:
                start_idx = 0
            points.extend(pts)
            if seg.arc is None:
                continue
            arc = seg.arc
            if reverse:
                start_angle, end_angle, clockwise = arc.end_angle, arc.start_angle, not arc.clockwise
            else:
                start_angle, end_angle, clockwise = arc.start_angle, arc.end_angle, arc.clockwise
            sweep = normalize_sweep(start_angle, end_angle, clockwise)
            curve_id = None
            if self.registry is not None:
                curve_id = self.registry.register(CurveMetadata(
                    kind=CurveKind.ARC,
                    center=tuple(arc.center),
                    radius=arc.radius,
                    start_angle=start_angle,
                    end_angle=end_angle,
                    clockwise=clockwise,
                    source="stitched_cutout",
                ))
            arcs.append(ArcSegment(
                start_index=start_idx,
                end_index=len(points) - 1,
                center=tuple(arc.center),
                radius=arc.radius,
                start_angle=start_angle,
                end_angle=end_angle,
                clockwise=clockwise,
                sweep_angle=sweep,
                curve_id=curve_id,
            ))

        tolerance = 10 ** -self.config.edge_key_precision
        if len(points) > 1 and distance(points[0], points[-1]) <= tolerance:
            points.pop()
            for a in arcs:
                if a.end_index == len(points):
                    a.end_index = 0

        contour = Contour(
            points=points,
            arc_segments=arcs,
            curve_ids=sorted({a.curve_id for a in arcs if a.curve_id is not None}),
        )
        props = {k: v for k, v in properties.items() if k != "role"}
        props.update(stitched=True, segment_count=len(segments))
        return PathPrimitive(contours=[contour], closed=True, properties=props)

"""Arc reconstruction: recover true arcs from tagged boolean output.

Boolean output is a plain polygon whose vertices may carry curve tags.
Each maximal run of vertices tagged with the same registered curve is
checked against that curve (every vertex on the circle, monotonic angles
with no large gaps) and, if it holds up, recorded as an
:class:`ArcSegment` on the contour.  A lone ring that closes a whole
revolution becomes a :class:`CirclePrimitive` again.

Reconstruction never moves a vertex; it only annotates.  Anything that
fails a check stays a straight polyline.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Optional, Sequence

from ...config.defaults import GeometryConfig
from ..primitives import ArcSegment, CirclePrimitive, Contour, PathPrimitive, Primitive
from .curves import CurveMetadata, CurveRegistry
from .utils import Point, TWO_PI, angle_of, wrap_angle

logger = logging.getLogger(__name__)


class ArcReconstructor:
    """Rebuild arcs and circles from tagged polygon primitives."""

    def __init__(self, registry: CurveRegistry, config: GeometryConfig):
        self.registry = registry
        self.config = config
        self.stats = {"arcs": 0, "circles": 0, "rejected": 0}

    def reconstruct(self, primitives: Sequence[Primitive]) -> list[Primitive]:
        results: list[Primitive] = []
        for prim in primitives:
            if isinstance(prim, PathPrimitive) and any(c.tags for c in prim.contours):
                results.append(self._reconstruct_path(prim))
            else:
                results.append(prim)
        return results

    # ------------------------------------------------------------------

    def _tolerance(self, meta: CurveMetadata) -> float:
        return max(self.config.reconstruction_tolerance,
                   meta.radius * self.config.reconstruction_rel_tolerance)

    def _reconstruct_path(self, prim: PathPrimitive) -> Primitive:
        if len(prim.contours) == 1 and not prim.contours[0].is_hole:
            circle = self._full_circle(prim.contours[0])
            if circle is not None:
                curve_id, meta = circle
                self.stats["circles"] += 1
                return CirclePrimitive(
                    center=meta.center,
                    radius=meta.radius,
                    properties={**prim.properties, "reconstructed": True, "curve_id": curve_id},
                )

        contours = [self._reconstruct_contour(c) for c in prim.contours]
        found = any(c.arc_segments for c in contours)
        props = {**prim.properties, "reconstructed": True} if found else dict(prim.properties)
        return replace(prim, contours=contours, properties=props)

    def _full_circle(self, contour: Contour) -> Optional[tuple[int, CurveMetadata]]:
        tags = contour.tags or []
        if len(tags) < self.config.min_circle_points or any(t is None for t in tags):
            return None
        curve_id = tags[0].curve_id
        if any(t.curve_id != curve_id for t in tags):
            return None
        meta = self.registry.get(curve_id)
        if meta is None:
            return None
        ring = list(contour.points) + [contour.points[0]]
        chains = self._chains(meta, ring)
        if len(chains) != 1:
            return None
        first, last, sweep = chains[0]
        if first != 0 or last != len(ring) - 1:
            return None
        if abs(sweep) < self.config.full_circle_ratio * TWO_PI:
            return None
        return curve_id, meta

    def _chains(self, meta: CurveMetadata, pts: Sequence[Point]) -> list[tuple[int, int, float]]:
        """Split *pts* into stretches that follow *meta* faithfully.

        Returns ``(first, last, sweep)`` index ranges into *pts*.
        """
        tol = self._tolerance(meta)
        max_step = self.config.max_angle_step
        chains: list[tuple[int, int, float]] = []
        start: Optional[int] = None
        sweep = 0.0
        sign = 0

        def close(last: int) -> None:
            if start is None:
                return
            if last - start + 1 >= self.config.min_arc_points and abs(sweep) >= self.config.min_arc_sweep:
                chains.append((start, last, sweep))
            elif last > start:
                self.stats["rejected"] += 1

        for k, p in enumerate(pts):
            on_curve = abs(math.hypot(p[0] - meta.center[0], p[1] - meta.center[1]) - meta.radius) <= tol
            if not on_curve:
                close(k - 1)
                start = None
                continue
            if start is None:
                start, sweep, sign = k, 0.0, 0
                continue
            delta = wrap_angle(angle_of(meta.center, p) - angle_of(meta.center, pts[k - 1]))
            step_sign = (delta > 0) - (delta < 0)
            if step_sign == 0 or abs(delta) > max_step or (sign and step_sign != sign):
                close(k - 1)
                start, sweep, sign = k, 0.0, 0
                continue
            sign = step_sign
            sweep += delta
        close(len(pts) - 1)
        return chains

    def _reconstruct_contour(self, contour: Contour) -> Contour:
        n = len(contour.points)
        tags = contour.tags
        if not tags or n < 3 or all(t is None for t in tags):
            return contour
        ids = [t.curve_id if t is not None else None for t in tags]

        if ids[0] is not None and all(i == ids[0] for i in ids):
            halves = self._closed_ring_arcs(contour, ids[0])
            if halves is not None:
                return halves

        # start the ring on a run boundary so no run wraps
        shift = next((i for i in range(n) if ids[i] != ids[i - 1]), 0)
        points = contour.points[shift:] + contour.points[:shift]
        tags = tags[shift:] + tags[:shift]
        ids = ids[shift:] + ids[:shift]

        arcs: list[ArcSegment] = []
        i = 0
        while i < n:
            curve_id = ids[i]
            j = i
            while j + 1 < n and ids[j + 1] == curve_id:
                j += 1
            if curve_id is not None:
                meta = self.registry.get(curve_id)
                if meta is not None:
                    arcs.extend(self._run_arcs(points, ids, i, j, curve_id, meta))
            i = j + 1

        self.stats["arcs"] += len(arcs)
        return replace(
            contour,
            points=points,
            tags=tags,
            arc_segments=arcs,
            curve_ids=sorted({a.curve_id for a in arcs}),
        )

    def _run_arcs(self, points, ids, first: int, last: int, curve_id: int, meta) -> list[ArcSegment]:
        n = len(points)
        idxs = list(range(first, last + 1))
        # boolean intersections are untagged but still lie on the curve
        before, after = (first - 1) % n, (last + 1) % n
        tol = self._tolerance(meta)
        if ids[before] is None and before not in idxs and self._on_curve(meta, points[before], tol):
            idxs.insert(0, before)
        if ids[after] is None and after not in idxs and self._on_curve(meta, points[after], tol):
            idxs.append(after)

        arcs = []
        for a, b, sweep in self._chains(meta, [points[k] for k in idxs]):
            start_pt, end_pt = points[idxs[a]], points[idxs[b]]
            arcs.append(ArcSegment(
                start_index=idxs[a],
                end_index=idxs[b],
                center=meta.center,
                radius=meta.radius,
                start_angle=angle_of(meta.center, start_pt),
                end_angle=angle_of(meta.center, end_pt),
                clockwise=sweep < 0,
                sweep_angle=sweep,
                curve_id=curve_id,
            ))
        return arcs

    @staticmethod
    def _on_curve(meta: CurveMetadata, p: Point, tol: float) -> bool:
        return abs(math.hypot(p[0] - meta.center[0], p[1] - meta.center[1]) - meta.radius) <= tol

    def _closed_ring_arcs(self, contour: Contour, curve_id: int) -> Optional[Contour]:
        """A whole ring on one circle becomes two half arcs."""
        meta = self.registry.get(curve_id)
        if meta is None:
            return None
        ring = list(contour.points) + [contour.points[0]]
        chains = self._chains(meta, ring)
        if len(chains) != 1 or chains[0][0] != 0 or chains[0][1] != len(ring) - 1:
            return None
        sweep = chains[0][2]
        if abs(sweep) < self.config.full_circle_ratio * TWO_PI:
            return None
        n = len(contour.points)
        half = n // 2
        arcs = []
        for a, b in ((0, half), (half, 0)):
            pa, pb = contour.points[a], contour.points[b]
            arcs.append(ArcSegment(
                start_index=a,
                end_index=b,
                center=meta.center,
                radius=meta.radius,
                start_angle=angle_of(meta.center, pa),
                end_angle=angle_of(meta.center, pb),
                clockwise=sweep < 0,
                sweep_angle=sweep / 2.0,
                curve_id=curve_id,
            ))
        self.stats["arcs"] += 2
        return replace(contour, arc_segments=arcs, curve_ids=[curve_id])

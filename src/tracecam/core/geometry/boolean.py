"""Polygon boolean engine: exact-precision union and difference.

Coordinates are snapped to an integer grid of ``scale`` units per mm and
all overlays run through shapely's fixed-precision mode
(``grid_size = 1 / scale``), so results never drift by more than half a
grid unit.

Curve tags cannot travel through GEOS, so they ride beside it: before an
operation every tagged input vertex is recorded in a side table keyed by
its integer grid coordinate, and after the operation each output vertex
looks its tag up again.  Vertices created by the operation (intersection
points) find nothing and come out untagged.
"""

from __future__ import annotations

import logging
from functools import reduce
from typing import Iterable, Optional, Sequence

import shapely
from shapely.errors import ShapelyError
from shapely.geometry import Polygon
from shapely.geometry.polygon import orient

from ..primitives import Contour, PathPrimitive, Primitive
from .curves import CurveTag
from .utils import ensure_polygon, iter_polygons, ring_points

logger = logging.getLogger(__name__)

FILL_RULES = ("nonzero", "evenodd")


class BooleanError(Exception):
    """Base class for boolean engine failures."""


class BooleanEngineError(BooleanError):
    """The engine could not be initialized; boolean stages cannot run."""


class BooleanOperationError(BooleanError):
    """A single union/difference call failed."""


class TagTable:
    """Side table mapping integer grid coordinates to packed curve tags."""

    def __init__(self, scale: int):
        self.scale = scale
        self._tags: dict[tuple[int, int], int] = {}

    def key(self, x: float, y: float) -> tuple[int, int]:
        return (int(round(x * self.scale)), int(round(y * self.scale)))

    def record(self, points, tags) -> None:
        for (x, y), tag in zip(points, tags):
            if tag is None:
                continue
            self._tags.setdefault(self.key(x, y), tag.pack())

    def lookup(self, x: float, y: float) -> Optional[CurveTag]:
        packed = self._tags.get(self.key(x, y))
        return None if packed is None else CurveTag.unpack(packed)

    def __len__(self) -> int:
        return len(self._tags)


class BooleanEngine:
    """Union / difference over tessellated :class:`PathPrimitive` polygons."""

    def __init__(self, scale: int = 10000, fill_rule: str = "nonzero"):
        if fill_rule not in FILL_RULES:
            raise ValueError(f"Unknown fill rule: {fill_rule!r}")
        self.scale = scale
        self.fill_rule = fill_rule
        self._ready = False

    @property
    def grid_size(self) -> float:
        return 1.0 / self.scale

    @property
    def ready(self) -> bool:
        return self._ready

    def initialize(self) -> None:
        """Check that the geometry backend supports fixed-precision overlays."""
        if self._ready:
            return
        major = int(shapely.__version__.split(".")[0])
        if major < 2:
            raise BooleanEngineError(
                f"shapely {shapely.__version__} lacks fixed-precision overlays (need >= 2.0)"
            )
        try:
            probe = shapely.union_all(
                [shapely.box(0, 0, 1, 1), shapely.box(0.5, 0, 1.5, 1)],
                grid_size=self.grid_size,
            )
        except ShapelyError as exc:
            raise BooleanEngineError(f"Boolean engine self-test failed: {exc}") from exc
        if abs(probe.area - 1.5) > 1e-6:
            raise BooleanEngineError("Boolean engine self-test returned a wrong area")
        self._ready = True
        logger.debug("Boolean engine ready (scale=%d, fill_rule=%s)", self.scale, self.fill_rule)

    def require_ready(self) -> None:
        if not self._ready:
            raise BooleanEngineError("Boolean engine has not been initialized")

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def _snap(self, points) -> list[tuple[float, float]]:
        s = self.scale
        return [(round(x * s) / s, round(y * s) / s) for x, y in points]

    def _to_polygons(self, primitives: Iterable[Primitive], table: TagTable) -> list[Polygon]:
        polys: list[Polygon] = []
        for prim in primitives:
            if not isinstance(prim, PathPrimitive):
                raise TypeError(f"Boolean input must be tessellated, got {type(prim).__name__}")
            shells = [c for c in prim.contours if not c.is_hole and not c.is_degenerate]
            holes = [c for c in prim.contours if c.is_hole and not c.is_degenerate]
            for contour in shells + holes:
                snapped = self._snap(contour.points)
                if contour.tags is not None:
                    table.record(snapped, contour.tags)
            for i, shell in enumerate(shells):
                # holes belong to the first shell unless a parent index says otherwise
                own = [h for h in holes if (h.parent_id or 0) == i]
                poly = Polygon(self._snap(shell.points), [self._snap(h.points) for h in own])
                polys.append(ensure_polygon(poly))
        return [p for p in polys if not p.is_empty]

    def _merge(self, polys: Sequence[Polygon], fill_rule: str):
        g = self.grid_size
        if not polys:
            return Polygon()
        if fill_rule == "evenodd":
            return reduce(lambda a, b: shapely.symmetric_difference(a, b, grid_size=g), polys)
        return shapely.union_all(polys, grid_size=g)

    def _to_primitives(self, geom, table: TagTable, properties: dict) -> list[PathPrimitive]:
        results: list[PathPrimitive] = []
        for poly in iter_polygons(ensure_polygon(geom)):
            poly = orient(poly, 1.0)
            contours = []
            rings = [(poly.exterior.coords, False)] + [(r.coords, True) for r in poly.interiors]
            for coords, is_hole in rings:
                pts = ring_points(coords)
                if len(pts) < 3:
                    continue
                tags = [table.lookup(x, y) for x, y in pts]
                contours.append(Contour(
                    points=pts,
                    is_hole=is_hole,
                    nesting_level=1 if is_hole else 0,
                    parent_id=0 if is_hole else None,
                    curve_ids=sorted({t.curve_id for t in tags if t is not None}),
                    tags=tags,
                ))
            if contours and not contours[0].is_hole:
                results.append(PathPrimitive(contours=contours, closed=True, properties=dict(properties)))
        return results

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def union(
        self,
        primitives: Sequence[Primitive],
        fill_rule: Optional[str] = None,
        properties: Optional[dict] = None,
    ) -> list[PathPrimitive]:
        """Merge *primitives* into non-overlapping polygons."""
        self.require_ready()
        rule = fill_rule or self.fill_rule
        if rule not in FILL_RULES:
            raise ValueError(f"Unknown fill rule: {rule!r}")
        table = TagTable(self.scale)
        try:
            polys = self._to_polygons(primitives, table)
            merged = self._merge(polys, rule)
        except ShapelyError as exc:
            raise BooleanOperationError(f"union failed: {exc}") from exc
        props = {"polarity": "dark"} if properties is None else properties
        return self._to_primitives(merged, table, props)

    def difference(
        self,
        subject: Sequence[Primitive],
        clip: Sequence[Primitive],
        properties: Optional[dict] = None,
    ) -> list[PathPrimitive]:
        """Return ``union(subject) - union(clip)``."""
        self.require_ready()
        table = TagTable(self.scale)
        try:
            a = self._merge(self._to_polygons(subject, table), self.fill_rule)
            b = self._merge(self._to_polygons(clip, table), self.fill_rule)
            result = shapely.difference(a, b, grid_size=self.grid_size) if not b.is_empty else a
        except ShapelyError as exc:
            raise BooleanOperationError(f"difference failed: {exc}") from exc
        props = {"polarity": "dark"} if properties is None else properties
        return self._to_primitives(result, table, props)

    @staticmethod
    def area(primitives: Sequence[PathPrimitive]) -> float:
        """Total enclosed area of boolean output (holes subtracted)."""
        total = 0.0
        for prim in primitives:
            for c in prim.contours:
                a = abs(c.signed_area)
                total += -a if c.is_hole else a
        return total

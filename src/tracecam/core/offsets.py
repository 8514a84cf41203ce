"""Offset-pass orchestration.

One pass per tool stand-off distance:

1. split the source primitives into outer (dark) and hole (clear) sets
2. offset outers by ``d`` and holes by ``-d``
3. tessellate everything into tagged polygons
4. union the outers, union the holes, subtract holes from outers
5. recover arcs from the boolean output
6. tag the results with pass metadata

A lone analytic shape with no holes skips steps 3-4 entirely.  A boolean
failure degrades the pass to its tessellated input tagged
``union_failed``; the remaining passes still run.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from shapely.errors import ShapelyError

from ..config.defaults import GeometryConfig
from .geometry.arcs import ArcReconstructor
from .geometry.boolean import BooleanEngine, BooleanOperationError
from .geometry.offsetter import GeometryOffsetter
from .geometry.tessellate import tessellate
from .operation import OffsetGroup, Operation, OperationType
from .primitives import DRILL_ROLES, STRATEGY_ROLES, Primitive

logger = logging.getLogger(__name__)


class PipelineCancelled(Exception):
    """Raised between passes when the caller asks to stop."""


def offset_type_for(distance: float) -> str:
    if distance > 0:
        return "external"
    if distance < 0:
        return "internal"
    return "on"


class OffsetPipeline:
    """Drives the offset -> boolean -> reconstruction passes of an operation."""

    def __init__(
        self,
        offsetter: GeometryOffsetter,
        engine: BooleanEngine,
        reconstructor: ArcReconstructor,
        config: GeometryConfig,
    ):
        self.offsetter = offsetter
        self.engine = engine
        self.reconstructor = reconstructor
        self.config = config

    def _source_primitives(self, operation: Operation) -> list[Primitive]:
        skip = DRILL_ROLES | STRATEGY_ROLES
        if operation.type is OperationType.DRILL:
            return list(operation.primitives)
        return [p for p in operation.primitives if p.role not in skip]

    def run(
        self,
        operation: Operation,
        distances: Sequence[float],
        settings: Optional[dict] = None,
        cancel: Optional[Callable[[], bool]] = None,
        primitives: Optional[Sequence[Primitive]] = None,
    ) -> list[OffsetGroup]:
        """Generate one offset group per distance and store them on *operation*.

        *primitives* replaces the operation's own source geometry, e.g. with
        a stitched cutout outline.
        """
        settings = dict(settings or {})
        self.engine.require_ready()
        if primitives is None:
            primitives = self._source_primitives(operation)
        groups: list[OffsetGroup] = []

        for pass_index, distance in enumerate(distances):
            if cancel is not None and cancel():
                raise PipelineCancelled(
                    f"Operation {operation.id} cancelled before pass {pass_index + 1}"
                )
            group = self.run_pass(operation, primitives, distance, pass_index, settings)
            groups.append(group)
            logger.debug(
                "Pass %d of %s at %.4f mm: %d -> %d primitives",
                pass_index + 1, operation.id, distance,
                group.metadata["source_count"], group.metadata["final_count"],
            )

        if settings.get("combine_offsets") and len(groups) > 1:
            groups = [combine_offsets(operation, groups, settings)]

        operation.offsets = groups
        return groups

    def run_pass(
        self,
        operation: Operation,
        primitives: Sequence[Primitive],
        distance: float,
        pass_index: int,
        settings: dict,
    ) -> OffsetGroup:
        outers = [p for p in primitives if not p.is_clear]
        holes = [p for p in primitives if p.is_clear]

        failed = 0
        offset_outers, f = self._offset_all(outers, distance, settings)
        failed += f
        offset_holes, f = self._offset_all(holes, -distance, settings)
        failed += f

        union_failed = False
        analytic = False
        union_count = 0

        if len(offset_outers) == 1 and not offset_holes and offset_outers[0].analytic:
            analytic = True
            final = list(offset_outers)
        else:
            tess_outers, f = self._tessellate_all(offset_outers)
            failed += f
            tess_holes, f = self._tessellate_all(offset_holes)
            failed += f
            try:
                subject = self.engine.union(tess_outers)
                union_count = len(subject)
                if tess_holes:
                    clip = self.engine.union(tess_holes)
                    final = self.engine.difference(subject, clip)
                else:
                    final = subject
            except BooleanOperationError as exc:
                logger.warning("Boolean step failed for %s pass %d: %s",
                               operation.id, pass_index + 1, exc)
                union_failed = True
                final = [p.with_properties(union_failed=True) for p in tess_outers]
                final += [p.with_properties(union_failed=True, polarity="clear") for p in tess_holes]
            final = self.reconstructor.reconstruct(final)

        offset_type = offset_type_for(distance)
        tagged = [
            p.with_properties(
                operation_id=operation.id,
                operation_type=operation.type.value,
                is_offset=True,
                offset_distance=distance,
                offset_type=offset_type,
                pass_index=pass_index,
                **{"pass": pass_index + 1},
            )
            for p in final
        ]
        return OffsetGroup(
            id=f"offset_{operation.id}_{pass_index}",
            kind="offset",
            distance=distance,
            pass_index=pass_index,
            offset_type=offset_type,
            primitives=tagged,
            metadata={
                "source_count": len(primitives),
                "offset_count": len(offset_outers) + len(offset_holes),
                "failed_count": failed,
                "union_count": union_count,
                "final_count": len(tagged),
                "generated_at": time.time(),
                "tool_diameter": settings.get("tool_diameter"),
                "analytic": analytic,
                "union_failed": union_failed,
            },
            settings=dict(settings),
        )

    def _offset_all(self, primitives, distance: float, settings: dict) -> tuple[list[Primitive], int]:
        results: list[Primitive] = []
        failed = 0
        for prim in primitives:
            try:
                out = self.offsetter.offset_primitive(prim, distance, settings)
            except (ValueError, ShapelyError) as exc:
                logger.warning("Offset of %s by %.4f failed: %s", prim.kind.value, distance, exc)
                failed += 1
                continue
            if out is None:
                continue
            results.extend(out if isinstance(out, list) else [out])
        return results, failed

    def _tessellate_all(self, primitives) -> tuple[list[Primitive], int]:
        results: list[Primitive] = []
        failed = 0
        for prim in primitives:
            try:
                tess = tessellate(prim, self.config, self.offsetter.registry)
            except (ValueError, TypeError, ShapelyError) as exc:
                logger.warning("Tessellation of %s failed: %s", prim.kind.value, exc)
                failed += 1
                continue
            if tess is not None:
                results.append(tess)
        return results, failed


def combine_offsets(operation: Operation, groups: Sequence[OffsetGroup], settings: dict) -> OffsetGroup:
    """Flatten several pass groups into a single group."""
    primitives = [p for g in groups for p in g.primitives]
    first = groups[0]
    return OffsetGroup(
        id=f"offset_{operation.id}_combined",
        kind="combined",
        distance=first.distance,
        pass_index=0,
        offset_type=first.offset_type,
        primitives=primitives,
        metadata={
            "pass_count": len(groups),
            "distances": [g.distance for g in groups],
            "source_count": first.metadata.get("source_count", 0),
            "offset_count": sum(g.metadata.get("offset_count", 0) for g in groups),
            "failed_count": sum(g.metadata.get("failed_count", 0) for g in groups),
            "union_count": sum(g.metadata.get("union_count", 0) for g in groups),
            "final_count": len(primitives),
            "generated_at": time.time(),
            "tool_diameter": settings.get("tool_diameter"),
            "analytic": all(g.metadata.get("analytic") for g in groups),
            "union_failed": any(g.union_failed for g in groups),
        },
        settings=dict(settings),
    )

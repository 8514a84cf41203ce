"""Drill strategy: peck or mill each hole and slot.

For every drill feature the tool radius ``r_t`` is compared with the
feature radius ``r_f``.  Holes with enough room (``r_f - r_t`` at least the
milling margin) are milled on an inner circle of radius ``r_f - r_t``;
everything else is pecked in place.  Slots follow the same rule, with a
straight centreline pass when milling is enabled but the slot is too
narrow to mill around.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from ..config.defaults import ToolpathConfig
from .operation import ManufacturingWarning, OffsetGroup, Operation
from .primitives import (
    CirclePrimitive,
    ObroundPrimitive,
    PathPrimitive,
    Primitive,
)

logger = logging.getLogger(__name__)

_EPS = 1e-9


class DrillActionType(Enum):
    PECK = "peck"
    MILL = "mill"
    CENTERLINE = "centerline"


@dataclass
class DrillAction:
    """One planned machining step for a drill feature."""

    type: DrillActionType
    source: Primitive
    position: tuple[float, float]
    feature_diameter: float
    tool_diameter: float
    tool_relation: str = "exact"         # oversized | exact | undersized
    mill_radius: Optional[float] = None
    reduced_plunge: bool = False
    slot_part: Optional[str] = None      # start | end for slot pecks


@dataclass
class DrillPlan:
    actions: list[DrillAction] = field(default_factory=list)
    warnings: list[ManufacturingWarning] = field(default_factory=list)

    def count(self, action_type: DrillActionType) -> int:
        return sum(1 for a in self.actions if a.type is action_type)

    @property
    def peck_count(self) -> int:
        return self.count(DrillActionType.PECK)

    @property
    def mill_count(self) -> int:
        return self.count(DrillActionType.MILL)


def _tool_relation(feature_diameter: float, tool_diameter: float, precision: float) -> str:
    diff = feature_diameter - tool_diameter
    if diff < -precision:
        return "oversized"
    if diff > precision:
        return "undersized"
    return "exact"


def _as_hole(prim: Primitive, precision: float) -> Optional[CirclePrimitive]:
    """Circles are holes; so are slots too short to have a length."""
    if isinstance(prim, CirclePrimitive):
        return prim
    if isinstance(prim, ObroundPrimitive) and prim.slot_length < precision:
        return CirclePrimitive(prim.center, prim.cap_radius, {**prim.properties, "role": "drill_hole"})
    return None


def plan_drill_strategy(
    primitives: Sequence[Primitive],
    tool_diameter: float,
    mill_holes: bool,
    config: ToolpathConfig,
    precision: float = 0.001,
) -> DrillPlan:
    """Decide peck / mill / centreline for every drill feature."""
    if tool_diameter <= 0:
        raise ValueError("tool_diameter must be positive")
    plan = DrillPlan()
    r_t = tool_diameter / 2.0

    for prim in primitives:
        hole = _as_hole(prim, precision)
        if hole is not None:
            _plan_hole(plan, hole, tool_diameter, mill_holes, config, precision)
        elif isinstance(prim, ObroundPrimitive):
            _plan_slot(plan, prim, tool_diameter, mill_holes, config, precision)
        else:
            logger.debug("Skipping non-drill primitive %s", prim.kind.value)

    logger.debug("Drill plan (tool r=%.3f): %d peck, %d mill, %d centreline",
                 r_t, plan.peck_count, plan.mill_count, plan.count(DrillActionType.CENTERLINE))
    return plan


def _warn_fit(plan: DrillPlan, relation: str, r_f: float, r_t: float, position, config) -> None:
    d_f, d_t = 2 * r_f, 2 * r_t
    if relation == "oversized":
        plan.warnings.append(ManufacturingWarning(
            "oversized",
            f"Tool ({d_t:.3f}mm) larger than hole ({d_f:.3f}mm)",
            position,
        ))
    elif r_f - r_t < config.min_milling_margin:
        plan.warnings.append(ManufacturingWarning(
            "undersized",
            f"Tool ({d_t:.3f}mm) too close to hole size ({d_f:.3f}mm)",
            position,
        ))


def _plan_hole(plan, hole: CirclePrimitive, tool_diameter, mill_holes, config, precision) -> None:
    r_f = hole.radius
    r_t = tool_diameter / 2.0
    relation = _tool_relation(2 * r_f, tool_diameter, precision)
    mill_radius = r_f - r_t
    if mill_holes and mill_radius + _EPS >= config.min_milling_margin:
        if mill_radius >= config.min_milling_feature_size:
            plan.actions.append(DrillAction(
                DrillActionType.MILL, hole, hole.center, 2 * r_f, tool_diameter,
                relation, mill_radius=mill_radius,
            ))
            return
        logger.debug("Hole at %s below milling floor, pecking", hole.center)
    _warn_fit(plan, relation, r_f, r_t, hole.center, config)
    plan.actions.append(DrillAction(
        DrillActionType.PECK, hole, hole.center, 2 * r_f, tool_diameter, relation,
    ))


def _plan_slot(plan, slot: ObroundPrimitive, tool_diameter, mill_holes, config, precision) -> None:
    r_f = slot.cap_radius
    r_t = tool_diameter / 2.0
    relation = _tool_relation(2 * r_f, tool_diameter, precision)
    start, end = slot.centerline()

    if mill_holes:
        if r_f - r_t + _EPS >= config.min_milling_margin:
            plan.actions.append(DrillAction(
                DrillActionType.MILL, slot, slot.center, 2 * r_f, tool_diameter,
                relation, mill_radius=r_f - r_t,
            ))
        else:
            _warn_fit(plan, relation, r_f, r_t, slot.center, config)
            plan.actions.append(DrillAction(
                DrillActionType.CENTERLINE, slot, slot.center, 2 * r_f, tool_diameter, relation,
            ))
        return

    proximity = slot.slot_length < tool_diameter
    _warn_fit(plan, relation, r_f, r_t, slot.center, config)
    if proximity:
        plan.warnings.append(ManufacturingWarning(
            "slot_proximity",
            f"Slot length {slot.slot_length:.3f}mm shorter than tool ({tool_diameter:.3f}mm); "
            f"plunge feed reduced",
            slot.center,
        ))
    for part, position in (("start", start), ("end", end)):
        plan.actions.append(DrillAction(
            DrillActionType.PECK, slot, position, 2 * r_f, tool_diameter, relation,
            reduced_plunge=proximity, slot_part=part,
        ))


def build_drill_geometry(plan: DrillPlan, operation_id: str) -> list[Primitive]:
    """Turn a drill plan into the primitives shown and machined for it."""
    geometry: list[Primitive] = []
    for action in plan.actions:
        base = {
            "operation_id": operation_id,
            "operation_type": "drill",
            "original_diameter": action.feature_diameter,
            "tool_diameter": action.tool_diameter,
            "tool_relation": action.tool_relation,
        }
        if action.type is DrillActionType.PECK:
            geometry.append(CirclePrimitive(
                center=action.position,
                radius=action.tool_diameter / 2.0,
                properties={
                    **base,
                    "role": "peck_mark",
                    "reduced_plunge": action.reduced_plunge,
                    "slot_part": action.slot_part,
                },
            ))
        elif action.type is DrillActionType.MILL:
            props = {
                **base,
                "role": "drill_milling_path",
                "is_offset": True,
                "offset_distance": -action.tool_diameter / 2.0,
                "offset_type": "internal",
            }
            src = action.source
            if isinstance(src, ObroundPrimitive):
                shrink = action.tool_diameter
                geometry.append(ObroundPrimitive(
                    center=src.center,
                    width=src.width - shrink,
                    height=src.height - shrink,
                    rotation=src.rotation,
                    properties=props,
                ))
            else:
                geometry.append(CirclePrimitive(center=action.position, radius=action.mill_radius,
                                                properties=props))
        else:
            start, end = action.source.centerline()
            geometry.append(PathPrimitive.polyline(
                [start, end],
                **{**base, "role": "centerline"},
            ))
    return geometry


def generate_drill_strategy(
    operation: Operation,
    tool_diameter: float,
    mill_holes: bool,
    config: ToolpathConfig,
    settings: Optional[dict] = None,
    precision: float = 0.001,
) -> list[OffsetGroup]:
    """Plan the operation's holes, store the geometry and warnings on it."""
    plan = plan_drill_strategy(operation.primitives, tool_diameter, mill_holes, config, precision)
    operation.warnings = list(plan.warnings)
    geometry = build_drill_geometry(plan, operation.id)
    for w in plan.warnings:
        logger.warning("%s: %s", operation.id, w.message)

    group = OffsetGroup(
        id=f"drill_strategy_{operation.id}",
        kind="drill",
        distance=0.0,
        pass_index=0,
        offset_type="drill",
        primitives=geometry,
        metadata={
            "source_count": len(operation.primitives),
            "final_count": len(geometry),
            "generated_at": time.time(),
            "tool_diameter": tool_diameter,
            "mode": "milling" if mill_holes else "pecking",
            "peck_count": plan.peck_count,
            "mill_count": plan.mill_count,
            "centerline_count": plan.count(DrillActionType.CENTERLINE),
        },
        settings=dict(settings or {}),
    )
    operation.offsets = [group]
    return operation.offsets

"""Toolpath ordering and simplification.

Plans are grouped by tool diameter, then by contour (``path_id``) so all
depth levels of one contour stay together and shallowest first.  Contour
families are visited nearest-first from the current machine position
using an adaptive rapid cost: long hops are penalised because they imply
a full clearance retract.  Closed loops are rotated so they start at the
vertex nearest the tool; open paths are reversed when their far end is
closer.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Optional, Sequence

from ...config.defaults import ToolpathConfig
from ..geometry.utils import Point, angle_of, distance, point_on_circle
from .base import MoveType, MotionCommand, ToolpathPlan

logger = logging.getLogger(__name__)

_MATCH_TOL = 1e-6


def rapid_cost(a: Point, b: Point, config: ToolpathConfig) -> float:
    d = distance(a, b)
    if d > config.z_travel_threshold:
        return d * config.z_cost_factor
    return d


def rotate_closed(plan: ToolpathPlan, index: int) -> ToolpathPlan:
    """Start a closed plan at the end point of command *index*."""
    cmds = plan.commands
    if not cmds or index == len(cmds) - 1:
        return plan
    new_start = cmds[index].end_xy
    return replace(plan, commands=cmds[index + 1:] + cmds[:index + 1], start=new_start)


def rotate_circle(plan: ToolpathPlan, toward: Point) -> ToolpathPlan:
    """Start a full-circle plan on the point of the circle nearest *toward*."""
    meta = plan.metadata
    if meta.center is None or meta.radius is None:
        return plan
    if distance(meta.center, toward) < _MATCH_TOL:
        return plan
    start = point_on_circle(meta.center, meta.radius, angle_of(meta.center, toward))
    if plan.commands:
        cmd = plan.commands[0]
        commands = [replace(cmd, x=start[0], y=start[1],
                            i=meta.center[0] - start[0], j=meta.center[1] - start[1])]
    else:
        commands = []
    return replace(plan, commands=commands, start=start)


def _is_single_circle(plan: ToolpathPlan) -> bool:
    return (
        plan.metadata.center is not None
        and len(plan.commands) <= 1
        and all(c.is_arc for c in plan.commands)
    )


def _entry_candidates(plan: ToolpathPlan) -> list[tuple[int, Point]]:
    """Command indices whose end point is a safe loop start (not inside a tab)."""
    cmds = plan.commands
    n = len(cmds)
    out = []
    for k, cmd in enumerate(cmds):
        if cmd.end_xy is None:
            continue
        if cmd.tab or cmds[(k + 1) % n].tab:
            continue
        out.append((k, cmd.end_xy))
    return out


def simplify(plan: ToolpathPlan, config: ToolpathConfig) -> ToolpathPlan:
    """Merge nearly collinear runs of linear moves."""
    if plan.start is None or len(plan.commands) < 2:
        return plan
    tol = math.radians(config.angle_tolerance)
    out: list[MotionCommand] = []
    points: list[Point] = [plan.start]
    for cmd in plan.commands:
        prev = out[-1] if out else None
        if (
            prev is not None
            and prev.type is MoveType.LINEAR
            and cmd.type is MoveType.LINEAR
            and prev.tab == cmd.tab
            and len(points) >= 2
        ):
            a, b, c = points[-2], points[-1], cmd.end_xy
            short = distance(a, b) < config.min_segment_length
            h1 = math.atan2(b[1] - a[1], b[0] - a[0])
            h2 = math.atan2(c[1] - b[1], c[0] - b[0])
            turn = abs(math.remainder(h2 - h1, 2 * math.pi))
            if (short or turn <= tol) and distance(a, c) > 0:
                out[-1] = replace(prev, x=cmd.x, y=cmd.y)
                points[-1] = c
                continue
        out.append(cmd)
        points.append(cmd.end_xy)
    return replace(plan, commands=out)


class ToolpathOptimizer:
    def __init__(self, config: ToolpathConfig):
        self.config = config

    def optimize(self, plans: Sequence[ToolpathPlan], start: Point) -> list[ToolpathPlan]:
        ordered: list[ToolpathPlan] = []
        position = start
        for group in self._by_tool(plans):
            families = self._families(group)
            while families:
                best, best_cost, best_entry = None, math.inf, None
                for key, family in families.items():
                    entry, cost = self._best_entry(family, position)
                    if cost < best_cost - 1e-12:
                        best, best_cost, best_entry = key, cost, entry
                family = families.pop(best)
                placed = [self._orient(p, best_entry) for p in family]
                placed = [simplify(p, self.config) for p in placed]
                ordered.extend(placed)
                end = placed[-1].end_point
                if end is not None:
                    position = end
        logger.debug("Ordered %d plans", len(ordered))
        return ordered

    @staticmethod
    def _by_tool(plans: Sequence[ToolpathPlan]) -> list[list[ToolpathPlan]]:
        groups: dict[float, list[ToolpathPlan]] = {}
        for plan in plans:
            groups.setdefault(round(plan.metadata.tool_diameter, 6), []).append(plan)
        return list(groups.values())

    @staticmethod
    def _families(plans: Sequence[ToolpathPlan]) -> dict[str, list[ToolpathPlan]]:
        families: dict[str, list[ToolpathPlan]] = {}
        for plan in plans:
            families.setdefault(plan.metadata.path_id, []).append(plan)
        for family in families.values():
            family.sort(key=lambda p: -p.metadata.depth)
        return families

    def _best_entry(self, family: list[ToolpathPlan], position: Point) -> tuple[Optional[Point], float]:
        """Cheapest start point for a contour family and its cost."""
        deepest = family[-1]
        meta = deepest.metadata
        if meta.kind == "drill_mill" or _is_single_circle(deepest):
            if meta.center is not None and meta.radius is not None:
                d = max(distance(meta.center, position) - meta.radius, 0.0)
                toward = position if distance(meta.center, position) > _MATCH_TOL else deepest.start
                return toward, d if d <= self.config.z_travel_threshold else d * self.config.z_cost_factor
        if not meta.closed:
            a = rapid_cost(position, deepest.start, self.config)
            end = deepest.end_point
            b = rapid_cost(position, end, self.config) if end is not None else math.inf
            return (deepest.start, a) if a <= b else (end, b)
        if deepest.start is None:
            return None, math.inf
        candidates = _entry_candidates(deepest) or [(len(deepest.commands) - 1, deepest.start)]
        best_pt, best_cost = deepest.start, math.inf
        for _, pt in candidates:
            cost = rapid_cost(position, pt, self.config)
            if cost < best_cost - 1e-12:
                best_pt, best_cost = pt, cost
        return best_pt, best_cost

    def _orient(self, plan: ToolpathPlan, entry: Optional[Point]) -> ToolpathPlan:
        if entry is None or plan.start is None:
            return plan
        meta = plan.metadata
        if meta.kind == "drill_mill" or _is_single_circle(plan):
            return rotate_circle(plan, entry)
        if not meta.closed:
            if distance(plan.start, entry) <= _MATCH_TOL:
                return plan
            end = plan.end_point
            if end is not None and distance(end, entry) <= _MATCH_TOL:
                return plan.reversed()
            return plan
        best_k, best_d = None, math.inf
        for k, cmd in enumerate(plan.commands):
            if cmd.end_xy is None:
                continue
            d = distance(cmd.end_xy, entry)
            if d < best_d:
                best_k, best_d = k, d
        if best_k is None or best_d > self.config.multi_depth_xy_tolerance:
            return plan
        return rotate_closed(plan, best_k)

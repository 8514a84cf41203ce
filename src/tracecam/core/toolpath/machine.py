"""Machine processor: pure cutting plans -> machine-ready motion.

Adds what the translator leaves out: rapids between plans, the entry into
material (plunge, ramp or helix), peck drilling cycles, helical hole
milling, lifts over holding tabs and the retract after each plan.  Depth
levels of one contour that start where the previous level ended are joined
by a straight Z step instead of a retract and re-entry.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Optional, Sequence

from ..context import ToolpathContext, compute_z_levels
from ..geometry.utils import Point, angle_of, distance, point_on_circle
from .base import MachinePosition, MotionCommand, MoveType, ToolpathPlan

logger = logging.getLogger(__name__)


class MachineProcessor:
    def __init__(self, context: ToolpathContext):
        self.context = context
        self.config = context.toolpath

    # ------------------------------------------------------------------

    def process(
        self,
        plans: Sequence[ToolpathPlan],
        start: MachinePosition,
    ) -> tuple[list[ToolpathPlan], MachinePosition]:
        """Return machine-ready plans and where the tool ends up."""
        machine = self.context.machine
        pos = start
        out: list[ToolpathPlan] = []

        for k, plan in enumerate(plans):
            prev = plans[k - 1] if k > 0 else None
            nxt = plans[k + 1] if k + 1 < len(plans) else None
            ready = ToolpathPlan(metadata=plan.metadata, start=plan.start)

            if k == 0 and pos.z < machine.travel_z:
                ready.add_retract(machine.travel_z)
                pos = pos.moved(z=machine.travel_z)

            kind = plan.metadata.kind
            if kind == "peck":
                pos = self._peck(ready, plan, pos)
            elif kind == "drill_mill":
                pos = self._helix_mill(ready, plan, pos)
            elif self.continues(prev, plan):
                ready.add_plunge(plan.metadata.depth, plan.metadata.plunge_rate)
                pos = pos.moved(z=plan.metadata.depth)
                pos = self._cut(ready, plan, list(plan.commands), pos)
            else:
                pos = self._enter_and_cut(ready, plan, pos)

            if not self.continues(plan, nxt):
                clearance = self._clearance(pos, nxt)
                ready.add_retract(clearance)
                pos = pos.moved(z=clearance)
            out.append(ready)

        return out, pos

    def continues(self, a: Optional[ToolpathPlan], b: Optional[ToolpathPlan]) -> bool:
        """True if *b* is the next depth level of the contour *a* just cut."""
        if a is None or b is None:
            return False
        ma, mb = a.metadata, b.metadata
        if ma.kind in ("peck", "drill_mill") or mb.kind in ("peck", "drill_mill"):
            return False
        if ma.operation_id != mb.operation_id or ma.path_id != mb.path_id:
            return False
        if not ma.closed or mb.depth >= ma.depth:
            return False
        end = a.end_point
        if end is None or b.start is None:
            return False
        return distance(end, b.start) <= self.config.multi_depth_xy_tolerance

    def _clearance(self, pos: MachinePosition, nxt: Optional[ToolpathPlan]) -> float:
        machine = self.context.machine
        cfg = self.config
        if nxt is None or nxt.start is None or cfg.rapid_strategy != "adaptive":
            return machine.travel_z
        if distance(pos.xy, nxt.start) < cfg.short_travel_threshold:
            return min(cfg.reduced_clearance, machine.travel_z)
        return machine.travel_z

    # ------------------------------------------------------------------
    # Contours
    # ------------------------------------------------------------------

    def _approach(
        self, ready: ToolpathPlan, target: Point, pos: MachinePosition, near: Optional[float] = None,
    ) -> MachinePosition:
        ready.add_rapid(x=target[0], y=target[1])
        pos = pos.moved(x=target[0], y=target[1])
        if near is None:
            near = self.config.peck_rapid_clearance
        if pos.z > near:
            ready.add_rapid(z=near)
            pos = pos.moved(z=near)
        return pos

    def _enter_and_cut(self, ready: ToolpathPlan, plan: ToolpathPlan, pos: MachinePosition) -> MachinePosition:
        meta = plan.metadata
        if plan.start is None:
            return pos
        pos = self._approach(ready, plan.start, pos)
        commands = list(plan.commands)
        entry = meta.entry_type

        if entry == "helix":
            pos = self._helix_entry(ready, plan, pos)
        elif entry == "ramp":
            return self._ramp_and_cut(ready, plan, pos)
        else:
            ready.add_plunge(meta.depth, meta.plunge_rate)
            pos = pos.moved(z=meta.depth)
        return self._cut(ready, plan, commands, pos)

    def _helix_entry(self, ready: ToolpathPlan, plan: ToolpathPlan, pos: MachinePosition) -> MachinePosition:
        cfg = self.config
        meta = plan.metadata
        sx, sy = plan.start
        radius = meta.tool_diameter * cfg.helix_radius_factor
        center = (sx - radius, sy)
        drop = pos.z - meta.depth
        if radius <= 0 or drop <= 0:
            ready.add_plunge(meta.depth, meta.plunge_rate)
            return pos.moved(z=meta.depth)
        revolutions = max(1, math.ceil(drop / cfg.helix_pitch - 1e-9))
        segments = revolutions * cfg.helix_segments_per_rev
        step = 2.0 * math.pi / cfg.helix_segments_per_rev
        current = (sx, sy)
        for n in range(1, segments + 1):
            nxt = point_on_circle(center, radius, n * step)
            z = pos.z - drop * n / segments
            ready.add_arc(nxt[0], nxt[1], center[0] - current[0], center[1] - current[1],
                          clockwise=False, z=z, feed=meta.plunge_rate)
            current = nxt
        return MachinePosition(sx, sy, meta.depth)

    def _ramp_and_cut(self, ready: ToolpathPlan, plan: ToolpathPlan, pos: MachinePosition) -> MachinePosition:
        """Plunge a little, then descend along the first straight moves."""
        cfg = self.config
        meta = plan.metadata
        shallow = meta.depth * cfg.ramp_shallow_depth_factor
        ready.add_plunge(shallow, meta.plunge_rate)
        z = shallow
        slope = math.tan(math.radians(cfg.ramp_angle))
        remaining = (z - meta.depth) / slope if slope > 0 else 0.0

        commands = list(plan.commands)
        consumed: list[MotionCommand] = []
        current = plan.start
        k = 0
        while remaining > 1e-9 and k < len(commands):
            cmd = commands[k]
            if cmd.type is not MoveType.LINEAR or cmd.tab or cmd.end_xy is None:
                break
            seg = distance(current, cmd.end_xy)
            if seg >= remaining:
                t = remaining / seg
                split = (current[0] + t * (cmd.x - current[0]), current[1] + t * (cmd.y - current[1]))
                ready.add_linear(split[0], split[1], meta.depth, meta.feed_rate)
                consumed.append(replace(cmd, x=split[0], y=split[1]))
                current = split
                remaining = 0.0
                break
            z -= seg * slope
            ready.add_linear(cmd.x, cmd.y, z, meta.feed_rate)
            consumed.append(cmd)
            current = cmd.end_xy
            remaining -= seg
            k += 1

        if remaining > 1e-9:
            ready.add_plunge(meta.depth, meta.plunge_rate)
        pos = MachinePosition(current[0], current[1], meta.depth)
        pos = self._cut(ready, plan, commands[k:], pos)
        if meta.closed and consumed:
            pos = self._cut(ready, plan, consumed, pos)
        return pos

    def _cut(
        self,
        ready: ToolpathPlan,
        plan: ToolpathPlan,
        commands: Sequence[MotionCommand],
        pos: MachinePosition,
    ) -> MachinePosition:
        meta = plan.metadata
        depth = meta.depth
        tab_z = meta.tab_z if meta.tab_z is not None and depth < meta.tab_z else None
        lifted = False
        for cmd in commands:
            if tab_z is not None and cmd.tab:
                if not lifted:
                    ready.add_linear(z=tab_z, feed=meta.plunge_rate)
                    lifted = True
                z = tab_z
            else:
                if lifted:
                    ready.add_plunge(depth, meta.plunge_rate)
                    lifted = False
                z = depth
            ready.commands.append(replace(cmd, z=z, feed=meta.feed_rate))
            if cmd.end_xy is not None:
                pos = MachinePosition(cmd.x, cmd.y, z)
        if lifted:
            ready.add_plunge(depth, meta.plunge_rate)
            pos = pos.moved(z=depth)
        return pos

    # ------------------------------------------------------------------
    # Drilling
    # ------------------------------------------------------------------

    def _peck(self, ready: ToolpathPlan, plan: ToolpathPlan, pos: MachinePosition) -> MachinePosition:
        cfg = self.config
        meta = plan.metadata
        x, y = plan.start
        # a canned cycle starts from its R plane
        near = meta.retract_height if meta.canned_cycle != "none" else None
        pos = self._approach(ready, (x, y), pos, near)
        feed = meta.plunge_rate
        if meta.reduced_plunge:
            feed *= cfg.reduced_plunge_factor

        step = meta.peck_depth
        if step <= 0 or step >= abs(meta.depth):
            targets = [meta.depth]
        else:
            targets = compute_z_levels(0.0, meta.depth, step)

        last = 0.0
        for n, z in enumerate(targets):
            if n > 0:
                ready.add_rapid(z=last + cfg.peck_rapid_clearance)
            ready.add_plunge(z, feed)
            if n < len(targets) - 1:
                ready.add_retract(meta.retract_height)
            last = z
        if meta.dwell_time > 0:
            ready.add_dwell(meta.dwell_time)
        return MachinePosition(x, y, meta.depth)

    def _helix_mill(self, ready: ToolpathPlan, plan: ToolpathPlan, pos: MachinePosition) -> MachinePosition:
        """Mill a round hole with a helical descent and a clean-up circle."""
        cfg = self.config
        meta = plan.metadata
        center, radius = meta.center, meta.radius
        start = plan.start
        pos = self._approach(ready, start, pos)
        depth = meta.depth

        if 2.0 * radius < cfg.min_helix_diameter:
            logger.debug("Helix at %s too small (r=%.3f), plunging", center, radius)
            ready.add_plunge(depth, meta.plunge_rate)
        else:
            ready.add_plunge(0.0, meta.plunge_rate)
            pitch = min(abs(depth) / 3.0, meta.tool_diameter * 0.5)
            revolutions = max(2, math.ceil(abs(depth) / pitch - 1e-9)) if pitch > 0 else 2
            segments = revolutions * cfg.helix_segments_per_rev
            sign = -1.0 if meta.clockwise else 1.0
            a0 = angle_of(center, start)
            step = sign * 2.0 * math.pi / cfg.helix_segments_per_rev
            current = start
            for n in range(1, segments + 1):
                nxt = point_on_circle(center, radius, a0 + n * step)
                if n == segments:
                    nxt = start
                ready.add_arc(nxt[0], nxt[1], center[0] - current[0], center[1] - current[1],
                              clockwise=meta.clockwise, z=depth * n / segments, feed=meta.feed_rate)
                current = nxt

        ready.add_arc(start[0], start[1], center[0] - start[0], center[1] - start[1],
                      clockwise=meta.clockwise, z=depth, feed=meta.feed_rate)
        return MachinePosition(start[0], start[1], depth)

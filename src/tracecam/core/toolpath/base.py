"""Core toolpath data structures."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from ..geometry.utils import Point, angle_of, distance, normalize_sweep, point_on_circle


class MoveType(Enum):
    """Type of CNC motion."""
    RAPID = "rapid"          # G0, no cutting
    LINEAR = "linear"        # G1 cutting feed
    ARC_CW = "arc_cw"        # G2
    ARC_CCW = "arc_ccw"      # G3
    PLUNGE = "plunge"        # G1 Z-only at plunge feed
    RETRACT = "retract"      # G0 Z-only
    DWELL = "dwell"          # G4


@dataclass
class MotionCommand:
    """One motion word.  Axes left as None keep their modal value.

    Arc centres are given as ``i``/``j`` offsets from the command's start
    point, the way G2/G3 expect them.
    """
    type: MoveType
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    i: Optional[float] = None
    j: Optional[float] = None
    feed: Optional[float] = None
    dwell: Optional[float] = None   # seconds
    tab: bool = False

    @property
    def is_arc(self) -> bool:
        return self.type in (MoveType.ARC_CW, MoveType.ARC_CCW)

    @property
    def end_xy(self) -> Optional[Point]:
        if self.x is None or self.y is None:
            return None
        return (self.x, self.y)


@dataclass
class PathElement:
    """A straight or circular piece of a planar path, with a length."""

    start: Point
    end: Point
    center: Optional[Point] = None
    clockwise: bool = False

    @property
    def is_arc(self) -> bool:
        return self.center is not None

    @property
    def radius(self) -> float:
        return distance(self.center, self.start) if self.center is not None else 0.0

    @property
    def sweep(self) -> float:
        if self.center is None:
            return 0.0
        return normalize_sweep(angle_of(self.center, self.start), angle_of(self.center, self.end),
                               self.clockwise)

    @property
    def length(self) -> float:
        if self.center is None:
            return distance(self.start, self.end)
        return self.radius * abs(self.sweep)

    def point_at(self, s: float) -> Point:
        """Point at arc-length *s* from the start."""
        total = self.length
        if total <= 0:
            return self.start
        t = min(max(s / total, 0.0), 1.0)
        if self.center is None:
            return (self.start[0] + t * (self.end[0] - self.start[0]),
                    self.start[1] + t * (self.end[1] - self.start[1]))
        a0 = angle_of(self.center, self.start)
        return point_on_circle(self.center, self.radius, a0 + t * self.sweep)

    def split(self, s0: float, s1: float) -> PathElement:
        """Sub-element between arc-lengths *s0* and *s1*."""
        total = self.length
        start = self.start if s0 <= 0 else self.point_at(s0)
        end = self.end if s1 >= total else self.point_at(s1)
        return replace(self, start=start, end=end)

    def reversed(self) -> PathElement:
        return replace(self, start=self.end, end=self.start, clockwise=not self.clockwise)

    def _tangent(self, p: Point) -> float:
        if self.center is None:
            return math.atan2(self.end[1] - self.start[1], self.end[0] - self.start[0])
        offset = -math.pi / 2 if self.clockwise else math.pi / 2
        return angle_of(self.center, p) + offset

    def start_tangent(self) -> float:
        return self._tangent(self.start)

    def end_tangent(self) -> float:
        return self._tangent(self.end)

    def to_command(self, tab: bool = False) -> MotionCommand:
        if self.center is None:
            return MotionCommand(MoveType.LINEAR, x=self.end[0], y=self.end[1], tab=tab)
        return MotionCommand(
            MoveType.ARC_CW if self.clockwise else MoveType.ARC_CCW,
            x=self.end[0],
            y=self.end[1],
            i=self.center[0] - self.start[0],
            j=self.center[1] - self.start[1],
            tab=tab,
        )


@dataclass
class PlanMetadata:
    """Where a plan came from and how it should be cut."""
    operation_id: str
    operation_type: str
    path_id: str
    depth: float
    kind: str = "contour"            # contour | circle | open | peck | drill_mill
    closed: bool = True
    tool_number: int = 1
    tool_diameter: float = 0.0
    feed_rate: float = 0.0
    plunge_rate: float = 0.0
    spindle_speed: int = 0
    spindle_dwell: float = 0.0
    entry_type: str = "plunge"
    center: Optional[Point] = None   # circles and helical drill milling
    radius: Optional[float] = None
    clockwise: bool = False          # helical drill milling direction
    tab_z: Optional[float] = None
    reduced_plunge: bool = False
    peck_depth: float = 0.0
    dwell_time: float = 0.0
    retract_height: float = 0.5
    canned_cycle: str = "none"


@dataclass
class ToolpathPlan:
    """An ordered command list for one contour at one depth.

    Pure cutting plans (translator output) start at ``start`` and hold only
    cutting moves; machine-ready plans (machine processor output) hold the
    complete motion including rapids, entries and retracts.
    """
    metadata: PlanMetadata
    commands: list[MotionCommand] = field(default_factory=list)
    start: Optional[Point] = None

    def add_rapid(self, x=None, y=None, z=None) -> None:
        self.commands.append(MotionCommand(MoveType.RAPID, x=x, y=y, z=z))

    def add_linear(self, x=None, y=None, z=None, feed=None, tab: bool = False) -> None:
        self.commands.append(MotionCommand(MoveType.LINEAR, x=x, y=y, z=z, feed=feed, tab=tab))

    def add_arc(self, x, y, i, j, clockwise: bool, z=None, feed=None, tab: bool = False) -> None:
        self.commands.append(MotionCommand(
            MoveType.ARC_CW if clockwise else MoveType.ARC_CCW,
            x=x, y=y, z=z, i=i, j=j, feed=feed, tab=tab,
        ))

    def add_plunge(self, z: float, feed: Optional[float] = None) -> None:
        self.commands.append(MotionCommand(MoveType.PLUNGE, z=z, feed=feed))

    def add_retract(self, z: float) -> None:
        self.commands.append(MotionCommand(MoveType.RETRACT, z=z))

    def add_dwell(self, seconds: float) -> None:
        self.commands.append(MotionCommand(MoveType.DWELL, dwell=seconds))

    @property
    def end_point(self) -> Optional[Point]:
        for cmd in reversed(self.commands):
            if cmd.end_xy is not None:
                return cmd.end_xy
        return self.start

    @property
    def is_empty(self) -> bool:
        return not self.commands and self.metadata.kind not in ("peck", "drill_mill")

    def vertices(self) -> list[Point]:
        """Start point followed by every command's end point."""
        pts = [self.start] if self.start is not None else []
        pts.extend(c.end_xy for c in self.commands if c.end_xy is not None)
        return pts

    def reversed(self) -> ToolpathPlan:
        """Same path walked backwards (arcs keep their centres)."""
        if self.start is None or not self.commands:
            return self
        points = self.vertices()
        commands: list[MotionCommand] = []
        for k in range(len(self.commands) - 1, -1, -1):
            cmd = self.commands[k]
            begin, finish = points[k + 1], points[k]
            if cmd.is_arc:
                cx, cy = points[k][0] + cmd.i, points[k][1] + cmd.j
                commands.append(replace(
                    cmd,
                    type=MoveType.ARC_CCW if cmd.type is MoveType.ARC_CW else MoveType.ARC_CW,
                    x=finish[0], y=finish[1], i=cx - begin[0], j=cy - begin[1],
                ))
            else:
                commands.append(replace(cmd, x=finish[0], y=finish[1]))
        return replace(self, commands=commands, start=points[-1])


@dataclass(frozen=True)
class MachinePosition:
    """Where the tool is; threaded between operation batches."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def moved(self, x=None, y=None, z=None) -> MachinePosition:
        return MachinePosition(
            self.x if x is None else x,
            self.y if y is None else y,
            self.z if z is None else z,
        )

    @property
    def xy(self) -> Point:
        return (self.x, self.y)

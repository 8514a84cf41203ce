"""Toolpath context: everything the translator and machine processor need.

A :class:`ToolpathContext` is built fresh from an operation and a parameter
dict every time toolpaths are generated.  Building it never mutates the
operation or the settings it was read from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..config.defaults import GeometryConfig, ToolpathConfig
from ..config.settings import GcodeSettings, MachineSettings
from .operation import Operation, OperationType

CANNED_CYCLES = ("none", "G81", "G82", "G83", "G73")


@dataclass(frozen=True)
class ToolSpec:
    number: int
    diameter: float
    tool_type: str = "end_mill"

    @property
    def radius(self) -> float:
        return self.diameter / 2.0


@dataclass(frozen=True)
class CuttingParams:
    cut_depth: float
    depth_per_pass: float
    multi_depth: bool
    feed_rate: float
    plunge_rate: float
    spindle_speed: int
    spindle_dwell: float = 0.0
    entry_type: str = "plunge"      # plunge | ramp | helix
    direction: str = "climb"        # climb | conventional


@dataclass(frozen=True)
class StrategyParams:
    passes: int
    step_over: float                # percent of tool diameter
    offset_distances: tuple[float, ...] = ()
    depth_levels: tuple[float, ...] = ()
    combine_offsets: bool = False


@dataclass(frozen=True)
class CutoutParams:
    tabs: int = 0
    tab_width: float = 0.0
    tab_height: float = 0.0
    cut_side: str = "outside"       # outside | inside | on


@dataclass(frozen=True)
class DrillParams:
    mill_holes: bool = True
    peck_depth: float = 0.0         # 0 disables pecking (single plunge)
    dwell_time: float = 0.0
    retract_height: float = 0.5
    canned_cycle: str = "none"      # none | G81 | G82 | G83 | G73


@dataclass(frozen=True)
class ToolpathContext:
    operation_id: str
    operation_type: OperationType
    tool: ToolSpec
    cutting: CuttingParams
    strategy: StrategyParams
    machine: MachineSettings = field(default_factory=MachineSettings)
    gcode: GcodeSettings = field(default_factory=GcodeSettings)
    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    toolpath: ToolpathConfig = field(default_factory=ToolpathConfig)
    cutout: Optional[CutoutParams] = None
    drill: Optional[DrillParams] = None


def calculate_offset_distances(
    tool_diameter: float,
    passes: int,
    step_over: float,
    internal: bool = False,
) -> list[float]:
    """Signed stand-off distance of each pass.

    Pass ``i`` sits at ``tool/2 + i * tool * (1 - step_over/100)``;
    internal (clearing) operations get negative distances.
    """
    if tool_diameter <= 0:
        raise ValueError("tool_diameter must be positive")
    if passes < 1:
        raise ValueError("passes must be at least 1")
    if not 0 <= step_over < 100:
        raise ValueError("step_over must be in [0, 100)")
    sign = -1.0 if internal else 1.0
    step = tool_diameter * (1.0 - step_over / 100.0)
    return [round(sign * (tool_diameter / 2.0 + i * step), 10) for i in range(passes)]


def compute_z_levels(
    z_top: float,
    z_bottom: float,
    step_down: float,
) -> list[float]:
    """Generate Z levels from *z_top* downward by *step_down* increments.

    The first cut is at ``z_top - step_down``.  The final pass is always
    placed exactly at *z_bottom* (floor pass).

    Parameters
    ----------
    z_top:
        Top of stock (0.0 for a zeroed PCB surface).
    z_bottom:
        Deepest cut depth (negative, e.g. -1.8 for a board cutout).
    step_down:
        Positive axial depth-of-cut per pass.

    Returns
    -------
    List of Z values in descending order (most shallow first).
    """
    if step_down <= 0:
        raise ValueError("step_down must be positive")
    if z_bottom >= z_top:
        raise ValueError("z_bottom must be less than z_top")

    levels: list[float] = []
    z = z_top - step_down
    while z > z_bottom + 1e-9:
        levels.append(round(z, 10))
        z -= step_down

    # Always include a final floor pass
    levels.append(round(z_bottom, 10))
    return levels


def calculate_depth_levels(cut_depth: float, depth_per_pass: float, multi_depth: bool) -> list[float]:
    """Depth of every pass, always ending exactly at *cut_depth*."""
    if not multi_depth or depth_per_pass <= 0 or depth_per_pass >= abs(cut_depth):
        return [cut_depth]
    return compute_z_levels(0.0, cut_depth, depth_per_pass)


def _distances_for(operation_type: OperationType, params: dict) -> list[float]:
    tool_diameter = float(params["tool_diameter"])
    if operation_type is OperationType.DRILL:
        return []
    if operation_type is OperationType.CUTOUT:
        side = params.get("cut_side", "outside")
        if side == "on":
            return [0.0]
        if side not in ("outside", "inside"):
            raise ValueError(f"Unknown cut_side {side!r}")
        return calculate_offset_distances(tool_diameter, 1, 0.0, internal=side == "inside")
    return calculate_offset_distances(
        tool_diameter,
        int(params.get("passes", 1)),
        float(params.get("step_over", 50.0)),
        internal=operation_type.is_internal,
    )


def build_context(
    operation: Operation,
    parameters: dict,
    machine: Optional[MachineSettings] = None,
    gcode: Optional[GcodeSettings] = None,
    geometry: Optional[GeometryConfig] = None,
    toolpath: Optional[ToolpathConfig] = None,
) -> ToolpathContext:
    """Compose the context for one operation from merged *parameters*."""
    p = parameters
    op_type = operation.type
    cut_depth = float(p["cut_depth"])
    depth_per_pass = float(p.get("depth_per_pass", abs(cut_depth)))
    multi_depth = bool(p.get("multi_depth", False))

    tool = ToolSpec(
        number=int(p.get("tool_number", 1)),
        diameter=float(p["tool_diameter"]),
        tool_type=str(p.get("tool_type", "end_mill")),
    )
    cutting = CuttingParams(
        cut_depth=cut_depth,
        depth_per_pass=depth_per_pass,
        multi_depth=multi_depth,
        feed_rate=float(p["feed_rate"]),
        plunge_rate=float(p["plunge_rate"]),
        spindle_speed=int(p["spindle_speed"]),
        spindle_dwell=float(p.get("spindle_dwell", 0.0)),
        entry_type=str(p.get("entry_type", "plunge")),
        direction=str(p.get("direction", "climb")),
    )
    strategy = StrategyParams(
        passes=int(p.get("passes", 1)),
        step_over=float(p.get("step_over", 0.0)),
        offset_distances=tuple(_distances_for(op_type, p)),
        depth_levels=tuple(calculate_depth_levels(cut_depth, depth_per_pass, multi_depth)),
        combine_offsets=bool(p.get("combine_offsets", False)),
    )

    cutout = None
    if op_type is OperationType.CUTOUT:
        cutout = CutoutParams(
            tabs=int(p.get("tabs", 0)),
            tab_width=float(p.get("tab_width", 0.0)),
            tab_height=float(p.get("tab_height", 0.0)),
            cut_side=str(p.get("cut_side", "outside")),
        )
    drill = None
    if op_type is OperationType.DRILL:
        cycle = str(p.get("canned_cycle", "none"))
        if cycle not in CANNED_CYCLES:
            raise ValueError(f"Unknown canned_cycle {cycle!r}")
        drill = DrillParams(
            mill_holes=bool(p.get("mill_holes", True)),
            peck_depth=float(p.get("peck_depth", 0.0)),
            dwell_time=float(p.get("dwell_time", 0.0)),
            retract_height=float(p.get("retract_height", 0.5)),
            canned_cycle=cycle,
        )

    return ToolpathContext(
        operation_id=operation.id,
        operation_type=op_type,
        tool=tool,
        cutting=cutting,
        strategy=strategy,
        machine=machine or MachineSettings(),
        gcode=gcode or GcodeSettings(),
        geometry=geometry or GeometryConfig(),
        toolpath=toolpath or ToolpathConfig(),
        cutout=cutout,
        drill=drill,
    )

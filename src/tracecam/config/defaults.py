"""Default geometry constants, toolpath constants, operation parameters and tools.

These are conservative starting points for 1.6 mm FR4 boards; users should
adjust them to their specific tooling and machine.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from ..core.tool import Tool, ToolType, ToolLibrary


@dataclass(frozen=True)
class GeometryConfig:
    """Precision and tessellation constants shared by the geometry pipeline."""

    clipper_scale: int = 10000          # integer grid units per mm
    coordinate_precision: float = 0.001
    edge_key_precision: int = 3         # decimals for stitcher endpoint nodes
    hash_precision: int = 3             # decimals for curve registry keys

    # Tessellation: segments per full revolution
    min_segments: int = 64
    max_segments: int = 512
    target_segment_length: float = 0.02

    # Polygon offsetting
    join_type: str = "round"            # round | miter | bevel
    miter_limit: float = 2.0
    min_joint_segments: int = 2
    min_feature_size: float = 0.01

    # Boolean engine
    fill_rule: str = "nonzero"          # nonzero | evenodd

    # Arc reconstruction
    min_arc_points: int = 3
    min_circle_points: int = 4
    min_arc_sweep: float = math.radians(2.0)
    full_circle_ratio: float = 0.99
    reconstruction_tolerance: float = 0.002
    reconstruction_rel_tolerance: float = 0.01

    @property
    def grid_size(self) -> float:
        return 1.0 / self.clipper_scale

    @property
    def max_angle_step(self) -> float:
        """Largest angular gap between two tessellated vertices of one curve."""
        return 2.0 * math.pi / self.min_segments * 1.5


@dataclass(frozen=True)
class ToolpathConfig:
    """Machine-motion constants used by the optimizer and machine processor."""

    # Rapid strategy
    rapid_strategy: str = "adaptive"    # adaptive | safe
    short_travel_threshold: float = 5.0
    reduced_clearance: float = 1.0
    z_travel_threshold: float = 5.0
    z_cost_factor: float = 1.5

    # Path simplification
    angle_tolerance: float = 0.1        # degrees
    min_segment_length: float = 0.01
    multi_depth_xy_tolerance: float = 0.01

    # Entry moves
    helix_radius_factor: float = 0.4
    helix_pitch: float = 0.5
    helix_segments_per_rev: int = 16
    ramp_angle: float = 10.0            # degrees
    ramp_shallow_depth_factor: float = 0.1

    # Drilling
    peck_rapid_clearance: float = 0.1
    min_helix_diameter: float = 0.2
    min_milling_margin: float = 0.05
    min_milling_feature_size: float = 0.01
    retract_height: float = 0.5
    reduced_plunge_factor: float = 0.5

    # Tabs
    corner_margin_factor: float = 2.0
    min_corner_angle: float = 30.0      # degrees
    min_tab_length_factor: float = 1.5


OPERATION_DEFAULTS: dict[str, dict] = {
    "isolation": {
        "tool_number": 1,
        "tool_diameter": 0.1,
        "tool_type": "v_bit",
        "passes": 3,
        "step_over": 50.0,
        "cut_depth": -0.05,
        "depth_per_pass": 0.05,
        "multi_depth": False,
        "feed_rate": 100.0,
        "plunge_rate": 50.0,
        "spindle_speed": 10000,
        "spindle_dwell": 1.0,
        "entry_type": "plunge",
        "direction": "climb",
        "combine_offsets": False,
    },
    "clearing": {
        "tool_number": 2,
        "tool_diameter": 0.8,
        "tool_type": "end_mill",
        "passes": 4,
        "step_over": 50.0,
        "cut_depth": -0.1,
        "depth_per_pass": 0.1,
        "multi_depth": False,
        "feed_rate": 200.0,
        "plunge_rate": 50.0,
        "spindle_speed": 12000,
        "spindle_dwell": 1.0,
        "entry_type": "plunge",
        "direction": "climb",
        "combine_offsets": False,
    },
    "drill": {
        "tool_number": 3,
        "tool_diameter": 1.0,
        "tool_type": "drill",
        "passes": 1,
        "step_over": 0.0,
        "cut_depth": -1.8,
        "depth_per_pass": 0.5,
        "multi_depth": True,
        "feed_rate": 150.0,
        "plunge_rate": 25.0,
        "spindle_speed": 10000,
        "spindle_dwell": 1.0,
        "entry_type": "helix",
        "direction": "climb",
        "mill_holes": True,
        "peck_depth": 0.0,
        "dwell_time": 0.0,
        "retract_height": 0.5,
        "canned_cycle": "none",
    },
    "cutout": {
        "tool_number": 4,
        "tool_diameter": 1.0,
        "tool_type": "end_mill",
        "passes": 1,
        "step_over": 0.0,
        "cut_depth": -1.8,
        "depth_per_pass": 0.3,
        "multi_depth": True,
        "feed_rate": 150.0,
        "plunge_rate": 50.0,
        "spindle_speed": 12000,
        "spindle_dwell": 1.0,
        "entry_type": "plunge",
        "direction": "conventional",
        "tabs": 4,
        "tab_width": 3.0,
        "tab_height": 0.5,
        "cut_side": "outside",
    },
}


def build_default_tool_library() -> ToolLibrary:
    """Return a ToolLibrary pre-populated with common PCB milling tools."""
    lib = ToolLibrary.__new__(ToolLibrary)
    lib._path = None   # in-memory only
    lib._tools = {}

    tools = [
        Tool(
            number=1,
            name="0.1mm 30deg V-bit",
            tool_type=ToolType.V_BIT,
            diameter=0.1,
            default_rpm=10000,
            default_feed=100.0,
            default_plunge=50.0,
        ),
        Tool(
            number=2,
            name="0.8mm Flat Endmill",
            tool_type=ToolType.END_MILL,
            diameter=0.8,
            default_rpm=12000,
            default_feed=200.0,
            default_plunge=50.0,
        ),
        Tool(
            number=3,
            name="1.0mm Drill",
            tool_type=ToolType.DRILL,
            diameter=1.0,
            default_rpm=10000,
            default_feed=150.0,
            default_plunge=25.0,
        ),
        Tool(
            number=4,
            name="1.0mm Corn Cutter",
            tool_type=ToolType.END_MILL,
            diameter=1.0,
            default_rpm=12000,
            default_feed=150.0,
            default_plunge=50.0,
        ),
    ]

    for t in tools:
        lib.add(t)

    return lib

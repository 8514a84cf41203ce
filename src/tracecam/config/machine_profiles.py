"""Post-processor profiles for common hobby CNC controllers.

Code blocks may reference ``{tool}``, ``{tool_name}``, ``{safe_z}`` and
``{spindle_speed}``; they are filled in by the G-code generator.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class PostProcessorProfile:
    """Controller dialect: start/end blocks and tool-change sequence."""

    name: str
    start_code: str
    end_code: str
    tool_change: str
    dwell_in_ms: bool = False      # Marlin's G4 P takes milliseconds
    supports_canned_cycles: bool = False

    def __str__(self) -> str:
        return self.name


class PostProcessor(Enum):
    GRBL = "grbl"
    GRBL_HAL = "grblHAL"
    LINUXCNC = "linuxcnc"
    MACH3 = "mach3"
    MARLIN = "marlin"


_PROFILES: dict[PostProcessor, PostProcessorProfile] = {
    PostProcessor.GRBL: PostProcessorProfile(
        name="grbl",
        start_code="T1",
        end_code="M5\nG0 X0Y0\nM2",
        tool_change="M5\nG0 Z{safe_z}\nM0 (Tool change: {tool_name})\nM3 S{spindle_speed}\nG4 P1",
    ),
    PostProcessor.GRBL_HAL: PostProcessorProfile(
        name="grblHAL",
        start_code="T1",
        end_code="M5\nG0 X0 Y0\nM2",
        tool_change="M5\nG0 Z{safe_z}\nT{tool} M6\nM0 (Tool change: {tool_name})\nM3 S{spindle_speed}\nG4 P1",
        supports_canned_cycles=True,
    ),
    PostProcessor.LINUXCNC: PostProcessorProfile(
        name="linuxcnc",
        start_code="G64 P0.01\nG4 P1",
        end_code="M5\nG0 X0Y0\nM2",
        tool_change="M5\nG0 Z{safe_z}\nT{tool} M6\nM3 S{spindle_speed}\nG4 P1",
        supports_canned_cycles=True,
    ),
    PostProcessor.MACH3: PostProcessorProfile(
        name="mach3",
        start_code="",
        end_code="M30",
        tool_change="M5\nG0 Z{safe_z}\nT{tool} M6\nM3 S{spindle_speed}\nG4 P1",
        supports_canned_cycles=True,
    ),
    PostProcessor.MARLIN: PostProcessorProfile(
        name="marlin",
        start_code="",
        end_code="M5\nG0 X0Y0\nM84",
        tool_change="M5\nG0 Z{safe_z}\nM0\nM3 S{spindle_speed}\nG4 P1000",
        dwell_in_ms=True,
    ),
}


# controllers that take a language other than G-code
_NOT_GCODE = {
    "roland": "Roland mills take RML-1 (PU/PD/Z commands in machine steps), not G-code",
}


def get_profile(name: str | PostProcessor) -> PostProcessorProfile:
    """Look up a profile by enum or name; raises KeyError for unknown names."""
    if isinstance(name, str):
        if name in _NOT_GCODE:
            raise KeyError(f"Post-processor {name!r} is not supported: {_NOT_GCODE[name]}")
        try:
            name = PostProcessor(name)
        except ValueError:
            raise KeyError(f"Unknown post-processor {name!r}") from None
    return _PROFILES[name]


def list_profiles() -> list[PostProcessorProfile]:
    return list(_PROFILES.values())

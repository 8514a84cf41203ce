"""G-code generator: machine-ready plans -> program text.

The generator is the only place that knows about G-code.  It keeps modal
state so repeated G words, unchanged axes and unchanged feeds are not
written again, and it emits the tool change, spindle, coolant and vacuum
sequences of the selected post-processor profile.  Drill plans that ask
for a canned cycle are written as one G81/G82/G83/G73 block on controllers
that support them.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from ..config.machine_profiles import PostProcessorProfile, get_profile
from ..config.settings import GcodeSettings, MachineSettings
from ..core.toolpath.base import MotionCommand, MoveType, ToolpathPlan
from ..core.units import Units
from .gcode_writer import comment, dwell, fmt, motion, words

logger = logging.getLogger(__name__)

_CODES = {
    MoveType.RAPID: "G0",
    MoveType.RETRACT: "G0",
    MoveType.LINEAR: "G1",
    MoveType.PLUNGE: "G1",
    MoveType.ARC_CW: "G2",
    MoveType.ARC_CCW: "G3",
}


@dataclass
class GcodeOptions:
    """Flat option set for one program.  Lengths are in millimetres."""

    post_processor: str = "grbl"
    units: Units = Units.MM
    safe_z: float = 5.0
    travel_z: float = 2.0
    coolant: str = "none"              # none | mist | flood
    vacuum: bool = False
    include_comments: bool = True
    tool_changes: bool = True
    decimals: int = 4
    start_code: Optional[str] = None
    end_code: Optional[str] = None
    program_name: str = ""

    @classmethod
    def from_settings(cls, gcode: GcodeSettings, machine: MachineSettings, program_name: str = "") -> GcodeOptions:
        return cls(
            post_processor=gcode.post_processor,
            units=Units.parse(gcode.units),
            safe_z=machine.safe_z,
            travel_z=machine.travel_z,
            coolant=machine.coolant,
            vacuum=machine.vacuum,
            include_comments=gcode.include_comments,
            tool_changes=gcode.tool_changes,
            decimals=gcode.decimals,
            start_code=gcode.start_code,
            end_code=gcode.end_code,
            program_name=program_name,
        )


class GcodeGenerator:
    """Generate a complete program from machine-ready plans."""

    def __init__(self, options: Optional[GcodeOptions] = None):
        self.options = options or GcodeOptions()
        self.profile: PostProcessorProfile = get_profile(self.options.post_processor)
        self._reset()

    def _reset(self) -> None:
        self._code: Optional[str] = None
        self._pos: dict[str, Optional[float]] = {"X": None, "Y": None, "Z": None}
        self._feed: Optional[float] = None

    # ------------------------------------------------------------------

    def generate(self, plans: Sequence[ToolpathPlan]) -> str:
        return "\n".join(self.get_lines(plans)) + "\n"

    def write(self, plans: Sequence[ToolpathPlan], output_path: Path) -> None:
        output_path.write_text(self.generate(plans))
        logger.debug("Wrote G-code to %s", output_path)

    def get_lines(self, plans: Sequence[ToolpathPlan]) -> list[str]:
        self._reset()
        opts = self.options
        lines: list[str] = []
        lines.extend(self._header())

        tool: Optional[int] = None
        speed: Optional[int] = None
        operation: Optional[str] = None
        for plan in plans:
            meta = plan.metadata
            if tool is None:
                lines.extend(self._spindle_on(meta.spindle_speed, meta.spindle_dwell))
                lines.extend(self._accessories_on())
            elif meta.tool_number != tool:
                lines.extend(self._tool_change(meta.tool_number, meta.tool_diameter, meta.spindle_speed))
            elif meta.spindle_speed != speed:
                lines.append(f"M3 S{meta.spindle_speed}")
            tool, speed = meta.tool_number, meta.spindle_speed

            if meta.operation_id != operation and opts.include_comments:
                lines.append(comment(f"Operation: {meta.operation_id} ({meta.operation_type})"))
            operation = meta.operation_id

            lines.extend(self._plan_lines(plan))

        lines.extend(self._footer())
        return lines

    # ------------------------------------------------------------------

    def _header(self) -> list[str]:
        opts = self.options
        lines = []
        if opts.include_comments:
            title = f"tracecam: {opts.program_name}" if opts.program_name else "tracecam"
            lines.append(comment(title))
            lines.append(comment(f"Post-processor: {self.profile.name}"))
        lines += ["G90", opts.units.gcode_modal, "G17", "G94"]
        start = opts.start_code if opts.start_code is not None else self.profile.start_code
        lines.extend(line for line in start.splitlines() if line.strip())
        return lines

    def _footer(self) -> list[str]:
        opts = self.options
        lines = []
        if opts.coolant != "none":
            lines.append("M9")
        if opts.vacuum:
            lines.append("M11")
        line = self._command(MotionCommand(MoveType.RETRACT, z=opts.safe_z))
        if line:
            lines.append(line)
        end = opts.end_code if opts.end_code is not None else self.profile.end_code
        lines.extend(line for line in end.splitlines() if line.strip())
        return lines

    def _spindle_on(self, speed: int, dwell_s: float) -> list[str]:
        lines = [f"M3 S{speed}"]
        if dwell_s > 0:
            lines.append(dwell(dwell_s, self.profile.dwell_in_ms))
        return lines

    def _accessories_on(self) -> list[str]:
        opts = self.options
        lines = []
        if opts.coolant == "mist":
            lines.append("M7")
        elif opts.coolant == "flood":
            lines.append("M8")
        if opts.vacuum:
            lines.append("M10")
        return lines

    def _tool_change(self, tool: int, diameter: float, speed: int) -> list[str]:
        opts = self.options
        name = f"T{tool} {fmt(diameter, 3)}mm"
        if not opts.tool_changes:
            lines = [comment(f"Tool change skipped: {name}")] if opts.include_comments else []
            return lines + [f"M3 S{speed}"]
        block = self.profile.tool_change.format(
            tool=tool,
            tool_name=name,
            safe_z=fmt(self._len(opts.safe_z), opts.decimals),
            spindle_speed=speed,
        )
        lines = [line for line in block.splitlines() if line.strip()]
        # the tool change block leaves the machine in an unknown modal state
        self._reset()
        self._pos["Z"] = self._len(opts.safe_z)
        return lines

    def _len(self, value: float) -> float:
        return self.options.units.from_mm(value)

    def _command(self, cmd: MotionCommand) -> str:
        opts = self.options
        if cmd.type is MoveType.DWELL:
            return dwell(cmd.dwell or 0.0, self.profile.dwell_in_ms)

        code = _CODES[cmd.type]
        parts: list[str] = []
        is_arc = cmd.is_arc
        for letter, value in (("X", cmd.x), ("Y", cmd.y), ("Z", cmd.z)):
            if value is None:
                continue
            value = self._len(value)
            rounded = round(value, opts.decimals)
            # arcs always repeat X/Y; a full circle ends where it starts
            if not is_arc or letter == "Z":
                last = self._pos[letter]
                if last is not None and math.isclose(last, rounded, abs_tol=10 ** -(opts.decimals + 1)):
                    continue
            parts.extend(words(**{letter.lower(): value}, decimals=opts.decimals))
            self._pos[letter] = rounded
        if is_arc:
            parts.extend(words(i=self._len(cmd.i or 0.0), j=self._len(cmd.j or 0.0), decimals=opts.decimals))
        if not parts:
            return ""

        if code != "G0" and cmd.feed is not None:
            feed = round(self._len(cmd.feed), 1)
            if feed != self._feed:
                parts.extend(words(f=feed))
                self._feed = feed

        modal = None if code == self._code else code
        self._code = code
        return motion(modal, *parts)

    # ------------------------------------------------------------------
    # Drilling cycles
    # ------------------------------------------------------------------

    def _plan_lines(self, plan: ToolpathPlan) -> list[str]:
        meta = plan.metadata
        if meta.kind == "peck" and meta.canned_cycle != "none" and self.profile.supports_canned_cycles:
            return self._canned_cycle(plan)
        return [line for line in map(self._command, plan.commands) if line]

    def _canned_cycle(self, plan: ToolpathPlan) -> list[str]:
        """Replace the expanded plunges of a drill plan with one G8x/G73 block.

        The rapids before the first plunge and the final retract are kept;
        everything in between is what the cycle does on the controller.
        """
        opts = self.options
        meta = plan.metadata
        commands = plan.commands
        first = next((k for k, cmd in enumerate(commands) if cmd.type is MoveType.PLUNGE), None)
        if first is None or plan.start is None:
            return [line for line in map(self._command, commands) if line]
        tail = len(commands) - 1 if commands[-1].type is MoveType.RETRACT else len(commands)

        code = meta.canned_cycle
        if code in ("G83", "G73") and not 0.0 < meta.peck_depth < abs(meta.depth):
            code = "G81"
        if code in ("G81", "G82"):
            code = "G82" if meta.dwell_time > 0 else "G81"

        x, y = (self._len(v) for v in plan.start)
        feed = round(self._len(commands[first].feed or meta.plunge_rate), 1)
        parts = words(
            x=x,
            y=y,
            z=self._len(meta.depth),
            r=self._len(meta.retract_height),
            q=self._len(meta.peck_depth) if code in ("G83", "G73") else None,
            p=meta.dwell_time if code == "G82" else None,
            f=feed,
            decimals=opts.decimals,
        )

        lines = [line for line in map(self._command, commands[:first]) if line]
        lines.append(motion(code, *parts))
        lines.append("G80")
        # Z after the cycle depends on the controller's G98/G99 state
        self._code = None
        self._pos.update(X=round(x, opts.decimals), Y=round(y, opts.decimals), Z=None)
        self._feed = feed
        lines.extend(line for line in map(self._command, commands[tail:]) if line)
        return lines

"""Tests for the G-code generator and line formatting helpers."""

import pytest

from tracecam.config.machine_profiles import list_profiles
from tracecam.config.settings import GcodeSettings, MachineSettings
from tracecam.core.toolpath.base import MotionCommand, MoveType, PlanMetadata, ToolpathPlan
from tracecam.core.units import Units
from tracecam.gcode.gcode_writer import comment, dwell, fmt, words
from tracecam.gcode.generator import GcodeGenerator, GcodeOptions


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_plan(tool=1, diameter=0.1, speed=10000, op="top", dwell_s=1.0) -> ToolpathPlan:
    """A small machine-ready plan: approach, plunge, two lines, an arc."""
    plan = ToolpathPlan(PlanMetadata(
        operation_id=op,
        operation_type="isolation",
        path_id=f"{op}:0",
        depth=-0.1,
        tool_number=tool,
        tool_diameter=diameter,
        spindle_speed=speed,
        spindle_dwell=dwell_s,
    ))
    plan.add_rapid(z=2.0)
    plan.add_rapid(x=1.0, y=1.0)
    plan.add_plunge(-0.1, feed=50.0)
    plan.add_linear(5.0, 1.0, -0.1, feed=100.0)
    plan.add_linear(5.0, 5.0, -0.1, feed=100.0)
    plan.add_arc(1.0, 5.0, -2.0, 0.0, clockwise=False, z=-0.1, feed=100.0)
    plan.add_retract(2.0)
    return plan


def _lines(plans, **options) -> list[str]:
    return GcodeGenerator(GcodeOptions(**options)).get_lines(plans)


def _peck_plan(cycle="G83", peck=0.5, dwell_s=0.0) -> ToolpathPlan:
    """A machine-ready three-peck hole at (15, 30), 1.6 deep."""
    plan = ToolpathPlan(PlanMetadata(
        operation_id="drl",
        operation_type="drill",
        path_id="drl:0",
        depth=-1.6,
        kind="peck",
        tool_number=3,
        tool_diameter=1.0,
        plunge_rate=25.0,
        spindle_speed=10000,
        peck_depth=peck,
        dwell_time=dwell_s,
        retract_height=0.5,
        canned_cycle=cycle,
    ), start=(15.0, 30.0))
    plan.add_rapid(x=15.0, y=30.0)
    plan.add_rapid(z=0.5)
    last = 0.0
    for z in (-0.5, -1.0, -1.6):
        if last < 0.0:
            plan.add_rapid(z=last + 0.1)
        plan.add_plunge(z, 25.0)
        if z > -1.6:
            plan.add_retract(0.5)
        last = z
    if dwell_s > 0:
        plan.add_dwell(dwell_s)
    plan.add_retract(2.0)
    return plan


# ---------------------------------------------------------------------------
# Program structure
# ---------------------------------------------------------------------------


class TestProgramStructure:
    def test_preamble_modal_codes(self):
        lines = _lines([_make_plan()], include_comments=False)
        assert lines[:4] == ["G90", "G21", "G17", "G94"]
        # grbl start block
        assert lines[4] == "T1"

    def test_inch_mode_uses_g20(self):
        lines = _lines([_make_plan()], units=Units.INCH)
        assert "G20" in lines
        assert "G21" not in lines

    def test_spindle_start_and_dwell(self):
        lines = _lines([_make_plan()])
        k = lines.index("M3 S10000")
        assert lines[k + 1] == "G4 P1"

    def test_no_dwell_when_zero(self):
        lines = _lines([_make_plan(dwell_s=0.0)])
        assert not any(line.startswith("G4") for line in lines)

    def test_marlin_dwell_in_milliseconds(self):
        lines = _lines([_make_plan()], post_processor="marlin")
        assert "G4 P1000" in lines
        assert lines[-1] == "M84"

    def test_postamble(self):
        lines = _lines([_make_plan()])
        assert lines[-4:] == ["Z5", "M5", "G0 X0Y0", "M2"]

    def test_final_lift_keeps_modal_g0(self):
        lines = _lines([_make_plan()], include_comments=False)
        k = lines.index("Z5")
        assert lines[k - 1] == "G0 Z2"
        assert "G0 Z5" not in lines

    def test_final_lift_after_cut_names_g0(self):
        plan = ToolpathPlan(PlanMetadata("top", "isolation", "top:0", -0.1, spindle_speed=10000))
        plan.add_linear(5.0, 1.0, -0.1, feed=100.0)
        assert _lines([plan])[-4] == "G0 Z5"

    def test_mach3_ends_with_m30(self):
        assert _lines([_make_plan()], post_processor="mach3")[-1] == "M30"

    def test_custom_start_code(self):
        lines = _lines([_make_plan()], include_comments=False, start_code="G54\nM7")
        assert lines[4:6] == ["G54", "M7"]

    def test_unknown_post_processor(self):
        with pytest.raises(KeyError):
            GcodeGenerator(GcodeOptions(post_processor="fanuc"))

    def test_operation_comment(self):
        lines = _lines([_make_plan()])
        assert "(Operation: top isolation)" in lines
        assert lines[0] == "(tracecam)"

    def test_comments_can_be_disabled(self):
        lines = _lines([_make_plan(), _make_plan(tool=2, diameter=0.8)], include_comments=False)
        assert not any(line.startswith("(") for line in lines)


# ---------------------------------------------------------------------------
# Motion words
# ---------------------------------------------------------------------------


class TestMotion:
    def test_modal_g_word_suppressed(self):
        lines = _lines([_make_plan()])
        assert "G0 Z2" in lines
        # second rapid repeats neither G0 nor Z
        assert "X1 Y1" in lines

    def test_unchanged_axes_and_feed_omitted(self):
        lines = _lines([_make_plan()])
        assert "G1 Z-0.1 F50" in lines
        assert "X5 F100" in lines
        assert "Y5" in lines

    def test_arc_words(self):
        lines = _lines([_make_plan()])
        assert "G3 X1 Y5 I-2 J0" in lines

    def test_full_circle_repeats_end_point(self):
        plan = ToolpathPlan(PlanMetadata("top", "isolation", "top:0", -0.1, spindle_speed=10000))
        plan.add_linear(1.0, 1.0, -0.1, feed=100.0)
        plan.add_arc(1.0, 1.0, 1.0, 0.0, clockwise=True, feed=100.0)
        assert "G2 X1 Y1 I1 J0" in _lines([plan])

    def test_inch_conversion(self):
        plan = ToolpathPlan(PlanMetadata("top", "isolation", "top:0", -0.1, spindle_speed=10000))
        plan.add_linear(25.4, 50.8, feed=254.0)
        assert "G1 X1 Y2 F10" in _lines([plan], units=Units.INCH)

    def test_retract_follows_last_cut(self):
        lines = _lines([_make_plan()])
        arc = lines.index("G3 X1 Y5 I-2 J0")
        assert lines[arc + 1] == "G0 Z2"


# ---------------------------------------------------------------------------
# Tools and accessories
# ---------------------------------------------------------------------------


class TestToolChange:
    def test_grbl_pauses_for_manual_change(self):
        lines = _lines([_make_plan(), _make_plan(tool=2, diameter=0.8, speed=12000, op="pour")])
        k = lines.index("M0 (Tool change: T2 0.8mm)")
        assert lines[k - 2:k] == ["M5", "G0 Z5"]
        assert lines[k + 1:k + 3] == ["M3 S12000", "G4 P1"]

    def test_grblhal_issues_m6(self):
        lines = _lines([_make_plan(), _make_plan(tool=2, diameter=0.8)], post_processor="grblHAL")
        assert "T2 M6" in lines

    def test_modal_state_reset_after_change(self):
        lines = _lines([_make_plan(), _make_plan(tool=2, diameter=0.8)], include_comments=False)
        # the second plan's first rapid is written out in full again
        assert lines.count("G0 Z2") >= 3

    def test_tool_changes_disabled(self):
        lines = _lines([_make_plan(), _make_plan(tool=2, diameter=0.8, speed=12000)], tool_changes=False)
        assert not any(line.startswith("M0") for line in lines)
        assert "(Tool change skipped: T2 0.8mm)" in lines
        assert "M3 S12000" in lines

    def test_speed_change_same_tool(self):
        lines = _lines([_make_plan(), _make_plan(speed=12000, op="pour")])
        assert "M3 S12000" in lines
        assert "M5" not in lines[:-3]

    def test_flood_coolant(self):
        lines = _lines([_make_plan()], coolant="flood")
        assert "M8" in lines
        assert "M9" in lines

    def test_mist_and_vacuum(self):
        lines = _lines([_make_plan()], coolant="mist", vacuum=True)
        assert "M7" in lines
        assert "M10" in lines
        assert "M11" in lines


class TestOptions:
    def test_from_settings(self):
        opts = GcodeOptions.from_settings(
            GcodeSettings(post_processor="linuxcnc", units="in", decimals=3),
            MachineSettings(safe_z=10.0, coolant="mist"),
            program_name="board",
        )
        assert opts.units is Units.INCH
        assert opts.safe_z == 10.0
        assert opts.coolant == "mist"
        assert opts.decimals == 3
        assert opts.program_name == "board"

    def test_write_file(self, tmp_path):
        out = tmp_path / "board.nc"
        GcodeGenerator().write([_make_plan()], out)
        text = out.read_text()
        assert text.endswith("M2\n")
        assert "G3 X1 Y5 I-2 J0" in text


# ---------------------------------------------------------------------------
# Canned drilling cycles
# ---------------------------------------------------------------------------


class TestCannedCycles:
    def test_linuxcnc_peck_cycle(self):
        lines = _lines([_peck_plan()], post_processor="linuxcnc", include_comments=False)
        k = lines.index("G83 X15 Y30 Z-1.6 R0.5 Q0.5 F25")
        assert lines[k - 2:k] == ["G0 X15 Y30", "Z0.5"]
        assert lines[k + 1:k + 3] == ["G80", "G0 Z2"]
        assert not any(line.startswith("G1 ") for line in lines)

    def test_grbl_expands_pecks(self):
        lines = _lines([_peck_plan()], include_comments=False)
        assert not any(line.startswith(("G81", "G83", "G80")) for line in lines)
        assert "G1 Z-0.5 F25" in lines
        assert "Z-0.4" in lines
        assert "G1 Z-1.6" in lines

    def test_no_cycle_requested(self):
        lines = _lines([_peck_plan(cycle="none")], post_processor="linuxcnc")
        assert "G80" not in lines
        assert "G1 Z-1.6" in lines

    def test_single_plunge_becomes_g81(self):
        lines = _lines([_peck_plan(peck=0.0)], post_processor="mach3")
        assert "G81 X15 Y30 Z-1.6 R0.5 F25" in lines

    def test_dwell_becomes_g82(self):
        lines = _lines([_peck_plan(cycle="G81", dwell_s=0.5)], post_processor="grblHAL")
        assert "G82 X15 Y30 Z-1.6 R0.5 P0.5 F25" in lines
        assert "G4 P0.5" not in lines

    def test_stepped_peck(self):
        lines = _lines([_peck_plan(cycle="G73")], post_processor="linuxcnc")
        assert "G73 X15 Y30 Z-1.6 R0.5 Q0.5 F25" in lines

    def test_each_hole_cancels_its_cycle(self):
        second = _peck_plan()
        second.start = (25.0, 30.0)
        second.commands[0] = MotionCommand(MoveType.RAPID, x=25.0, y=30.0)
        lines = _lines([_peck_plan(), second], post_processor="linuxcnc", include_comments=False)
        assert lines.count("G80") == 2
        k = lines.index("G83 X25 Y30 Z-1.6 R0.5 Q0.5 F25")
        assert lines[k - 2:k] == ["X25 Y30", "Z0.5"]

    def test_profiles_that_support_cycles(self):
        supported = {p.name for p in list_profiles() if p.supports_canned_cycles}
        assert supported == {"grblHAL", "linuxcnc", "mach3"}


# ---------------------------------------------------------------------------
# Writer helpers
# ---------------------------------------------------------------------------


class TestWriterHelpers:
    @pytest.mark.parametrize("value,expected", [
        (1.5, "1.5"),
        (2.0, "2"),
        (-0.00001, "0"),
        (0.12346, "0.1235"),
        (-3.25, "-3.25"),
    ])
    def test_fmt(self, value, expected):
        assert fmt(value) == expected

    def test_words_order(self):
        assert words(x=1.0, z=-0.5, j=2.0, f=100.0) == ["X1", "Z-0.5", "J2", "F100"]

    def test_cycle_words_order(self):
        assert words(x=1.0, z=-1.6, r=0.5, q=0.25, f=25.0) == ["X1", "Z-1.6", "R0.5", "Q0.25", "F25"]

    def test_comment_strips_parens(self):
        assert comment("T1 (0.1mm)") == "(T1 0.1mm)"

    def test_dwell(self):
        assert dwell(0.5) == "G4 P0.5"
        assert dwell(0.5, in_ms=True) == "G4 P500"

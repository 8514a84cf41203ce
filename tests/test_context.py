"""Tests for toolpath context building, settings and post-processor profiles."""

import dataclasses

import pytest

from tracecam.config.defaults import OPERATION_DEFAULTS, build_default_tool_library
from tracecam.config.machine_profiles import PostProcessor, get_profile, list_profiles
from tracecam.config.settings import MachineSettings, SettingsStore
from tracecam.core.context import (
    build_context,
    calculate_depth_levels,
    calculate_offset_distances,
    compute_z_levels,
)
from tracecam.core.operation import Operation, OperationType
from tracecam.core.tool import Tool, ToolLibrary, ToolType


def _params(kind: str, **overrides) -> dict:
    return {**OPERATION_DEFAULTS[kind], **overrides}


# ---------------------------------------------------------------------------
# Offset distances and depths
# ---------------------------------------------------------------------------


class TestOffsetDistances:
    def test_three_passes_half_stepover(self):
        assert calculate_offset_distances(0.2, 3, 50.0) == pytest.approx([0.1, 0.2, 0.3])

    def test_internal_is_negative(self):
        assert calculate_offset_distances(0.2, 3, 50.0, internal=True) == pytest.approx([-0.1, -0.2, -0.3])

    def test_zero_stepover_is_full_tool(self):
        assert calculate_offset_distances(1.0, 2, 0.0) == pytest.approx([0.5, 1.5])

    @pytest.mark.parametrize("tool,passes,step", [(0.0, 1, 50.0), (0.1, 0, 50.0), (0.1, 1, 100.0)])
    def test_invalid_input(self, tool, passes, step):
        with pytest.raises(ValueError):
            calculate_offset_distances(tool, passes, step)


class TestDepthLevels:
    def test_multi_depth_ends_on_floor(self):
        assert calculate_depth_levels(-1.8, 0.5, True) == pytest.approx([-0.5, -1.0, -1.5, -1.8])

    def test_single_pass(self):
        assert calculate_depth_levels(-1.8, 0.5, False) == [-1.8]

    def test_step_deeper_than_cut(self):
        assert calculate_depth_levels(-0.1, 0.5, True) == [-0.1]

    def test_exact_division(self):
        assert compute_z_levels(0.0, -1.0, 0.25) == pytest.approx([-0.25, -0.5, -0.75, -1.0])

    def test_bad_step(self):
        with pytest.raises(ValueError):
            compute_z_levels(0.0, -1.0, 0.0)


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class TestBuildContext:
    def test_isolation(self):
        op = Operation(id="top", type=OperationType.ISOLATION)
        ctx = build_context(op, _params("isolation", tool_diameter=0.2))
        assert ctx.strategy.offset_distances == pytest.approx((0.1, 0.2, 0.3))
        assert ctx.tool.radius == pytest.approx(0.1)
        assert ctx.cutout is None and ctx.drill is None

    def test_clearing_is_internal(self):
        op = Operation(id="pour", type=OperationType.CLEARING)
        ctx = build_context(op, _params("clearing"))
        assert all(d < 0 for d in ctx.strategy.offset_distances)

    @pytest.mark.parametrize("side,expected", [("outside", (0.5,)), ("inside", (-0.5,)), ("on", (0.0,))])
    def test_cutout_side(self, side, expected):
        op = Operation(id="edge", type=OperationType.CUTOUT)
        ctx = build_context(op, _params("cutout", cut_side=side))
        assert ctx.strategy.offset_distances == pytest.approx(expected)
        assert ctx.cutout.cut_side == side
        assert ctx.cutout.tabs == 4

    def test_unknown_cut_side(self):
        op = Operation(id="edge", type=OperationType.CUTOUT)
        with pytest.raises(ValueError):
            build_context(op, _params("cutout", cut_side="middle"))

    def test_unknown_canned_cycle(self):
        op = Operation(id="drl", type=OperationType.DRILL)
        with pytest.raises(ValueError):
            build_context(op, _params("drill", canned_cycle="G84"))

    def test_drill_has_no_distances(self):
        op = Operation(id="drl", type=OperationType.DRILL)
        ctx = build_context(op, _params("drill", peck_depth=0.4))
        assert ctx.strategy.offset_distances == ()
        assert ctx.drill.peck_depth == pytest.approx(0.4)
        assert ctx.strategy.depth_levels == pytest.approx((-0.5, -1.0, -1.5, -1.8))

    def test_context_is_frozen(self):
        op = Operation(id="top", type=OperationType.ISOLATION)
        ctx = build_context(op, _params("isolation"))
        with pytest.raises(dataclasses.FrozenInstanceError):
            ctx.tool = None

    def test_parameters_not_mutated(self):
        op = Operation(id="top", type=OperationType.ISOLATION)
        params = _params("isolation")
        before = dict(params)
        build_context(op, params)
        assert params == before
        assert op.settings == {}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettingsStore:
    def test_precedence(self):
        store = SettingsStore()
        store.set_category("isolation", feed_rate=120.0, passes=2)
        store.set_operation("top", feed_rate=140.0)
        op = Operation(id="top", type=OperationType.ISOLATION, settings={"passes": 5})
        params = store.get_all_parameters(op)
        assert params["feed_rate"] == 140.0
        assert params["passes"] == 5
        assert params["tool_diameter"] == OPERATION_DEFAULTS["isolation"]["tool_diameter"]

    def test_round_trip(self, tmp_path):
        path = tmp_path / "settings.json"
        store = SettingsStore(machine={"safe_z": 10.0, "coolant": "mist"})
        store.set_operation("top", feed_rate=90.0)
        store.save(path)
        loaded = SettingsStore.load(path)
        assert loaded.machine_settings().safe_z == 10.0
        assert loaded.machine_settings().coolant == "mist"
        assert loaded.get_operation("top") == {"feed_rate": 90.0}

    def test_missing_file_gives_defaults(self, tmp_path):
        store = SettingsStore.load(tmp_path / "absent.json")
        assert store.machine_settings() == MachineSettings()

    def test_unknown_keys_ignored(self):
        settings = MachineSettings.from_dict({"travel_z": 3.0, "envelope": {}})
        assert settings.travel_z == 3.0


class TestProfiles:
    def test_lookup_by_name(self):
        assert get_profile("grblHAL").name == "grblHAL"
        assert get_profile(PostProcessor.LINUXCNC).name == "linuxcnc"

    def test_unknown_profile(self):
        with pytest.raises(KeyError):
            get_profile("fanuc")

    def test_roland_is_not_a_gcode_target(self):
        with pytest.raises(KeyError, match="RML-1"):
            get_profile("roland")
        assert "roland" not in {p.name for p in list_profiles()}

    def test_marlin_dwell_in_ms(self):
        assert get_profile("marlin").dwell_in_ms
        assert not get_profile("grbl").dwell_in_ms

    def test_every_profile_listed(self):
        assert len(list_profiles()) == len(PostProcessor)


class TestToolLibrary:
    def test_defaults_cover_every_operation(self):
        lib = build_default_tool_library()
        for kind, params in OPERATION_DEFAULTS.items():
            tool = lib.get(params["tool_number"])
            assert tool is not None, kind
            assert tool.diameter == pytest.approx(params["tool_diameter"])

    def test_as_parameters(self):
        params = build_default_tool_library().get(3).as_parameters()
        assert params["tool_type"] == "drill"
        assert params["plunge_rate"] == 25.0

    def test_json_round_trip(self, tmp_path):
        path = tmp_path / "tools.json"
        lib = ToolLibrary(path)
        lib.add(Tool(5, "0.2mm 20deg V-bit", ToolType.V_BIT, 0.2, default_rpm=15000))
        lib.save()
        loaded = ToolLibrary(path)
        assert [t.number for t in loaded.list_tools()] == [5]
        assert loaded.get(5).tool_type is ToolType.V_BIT

    def test_in_memory_library_cannot_save(self):
        with pytest.raises(RuntimeError):
            build_default_tool_library().save()

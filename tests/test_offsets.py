"""Tests for the offset pipeline and arc reconstruction."""

import pytest

from tracecam.config.defaults import GeometryConfig
from tracecam.core.geometry.arcs import ArcReconstructor
from tracecam.core.geometry.boolean import BooleanEngine, BooleanEngineError, BooleanOperationError
from tracecam.core.geometry.curves import CurveRegistry
from tracecam.core.geometry.offsetter import GeometryOffsetter
from tracecam.core.geometry.tessellate import tessellate
from tracecam.core.offsets import OffsetPipeline, PipelineCancelled, offset_type_for
from tracecam.core.operation import Operation, OperationType
from tracecam.core.primitives import CirclePrimitive, PathPrimitive, RectanglePrimitive


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> GeometryConfig:
    return GeometryConfig()


@pytest.fixture
def registry() -> CurveRegistry:
    return CurveRegistry()


@pytest.fixture
def pipeline(config, registry) -> OffsetPipeline:
    engine = BooleanEngine(config.clipper_scale, config.fill_rule)
    engine.initialize()
    return OffsetPipeline(
        GeometryOffsetter(config, registry),
        engine,
        ArcReconstructor(registry, config),
        config,
    )


def _isolation(*primitives) -> Operation:
    return Operation(id="top", type=OperationType.ISOLATION, primitives=list(primitives))


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestOffsetPipeline:
    def test_one_group_per_distance(self, pipeline):
        op = _isolation(RectanglePrimitive((0.0, 0.0), 4.0, 2.0))
        groups = pipeline.run(op, [0.1, 0.2, 0.3], {"tool_diameter": 0.2})
        assert [g.distance for g in groups] == [0.1, 0.2, 0.3]
        assert [g.pass_index for g in groups] == [0, 1, 2]
        assert op.offsets is not None and len(op.offsets) == 3
        assert groups[0].metadata["tool_diameter"] == 0.2

    def test_lone_circle_skips_booleans(self, pipeline):
        op = _isolation(CirclePrimitive((5.0, 5.0), 0.8))
        group = pipeline.run(op, [0.1])[0]
        assert group.metadata["analytic"] is True
        (prim,) = group.primitives
        assert isinstance(prim, CirclePrimitive)
        assert prim.radius == pytest.approx(0.9)
        assert prim.properties["offset_type"] == "external"
        assert prim.properties["pass"] == 1

    def test_circle_recovered_after_union(self, pipeline):
        op = _isolation(
            CirclePrimitive((0.0, 0.0), 1.0),
            RectanglePrimitive((10.0, 10.0), 2.0, 2.0),
        )
        group = pipeline.run(op, [0.1])[0]
        assert group.metadata["analytic"] is False
        circles = [p for p in group.primitives if isinstance(p, CirclePrimitive)]
        assert len(circles) == 1
        assert circles[0].radius == pytest.approx(1.1)
        assert circles[0].properties["reconstructed"] is True

    def test_overlapping_pads_merge(self, pipeline):
        op = _isolation(
            RectanglePrimitive((0.0, 0.0), 2.0, 2.0),
            RectanglePrimitive((1.5, 0.0), 2.0, 2.0),
        )
        group = pipeline.run(op, [0.1])[0]
        assert len(group.primitives) == 1
        assert group.metadata["union_count"] == 1

    def test_clear_primitive_becomes_hole(self, pipeline):
        op = _isolation(
            RectanglePrimitive((0.0, 0.0), 10.0, 10.0),
            RectanglePrimitive((4.0, 4.0), 2.0, 2.0, properties={"polarity": "clear"}),
        )
        (prim,) = pipeline.run(op, [0.1])[0].primitives
        holes = [c for c in prim.contours if c.is_hole]
        assert len(holes) == 1
        # the hole shrinks by the offset distance
        assert abs(holes[0].signed_area) == pytest.approx(1.8 * 1.8, rel=1e-3)

    def test_failed_union_keeps_every_pass(self, pipeline, monkeypatch):
        def broken(*args, **kwargs):
            raise BooleanOperationError("union failed")

        monkeypatch.setattr(pipeline.engine, "union", broken)
        op = _isolation(
            RectanglePrimitive((0.0, 0.0), 10.0, 10.0),
            RectanglePrimitive((4.0, 4.0), 2.0, 2.0, properties={"polarity": "clear"}),
        )
        groups = pipeline.run(op, [0.1, 0.2])
        assert [g.pass_index for g in groups] == [0, 1]
        for group in groups:
            assert group.metadata["union_failed"] is True
            assert group.primitives
            assert all(p.properties["union_failed"] is True for p in group.primitives)
            clear = [p for p in group.primitives if p.properties.get("polarity") == "clear"]
            assert len(clear) == 1
            assert len(group.primitives) > len(clear)

    def test_clearing_distances_are_internal(self, pipeline):
        op = Operation(id="pour", type=OperationType.CLEARING,
                       primitives=[RectanglePrimitive((0.0, 0.0), 10.0, 10.0)])
        group = pipeline.run(op, [-0.4])[0]
        assert group.offset_type == "internal"
        (prim,) = group.primitives
        assert abs(prim.contours[0].signed_area) == pytest.approx(9.2 * 9.2, rel=1e-3)

    def test_drill_roles_are_skipped(self, pipeline):
        op = _isolation(
            RectanglePrimitive((0.0, 0.0), 2.0, 2.0),
            CirclePrimitive((5.0, 5.0), 0.5, properties={"role": "drill_hole"}),
        )
        group = pipeline.run(op, [0.1])[0]
        assert group.metadata["source_count"] == 1

    def test_explicit_primitives_replace_source(self, pipeline):
        op = _isolation(RectanglePrimitive((0.0, 0.0), 2.0, 2.0))
        group = pipeline.run(op, [0.1], primitives=[CirclePrimitive((0.0, 0.0), 1.0)])[0]
        assert isinstance(group.primitives[0], CirclePrimitive)
        assert len(op.primitives) == 1

    def test_combined_group(self, pipeline):
        op = _isolation(RectanglePrimitive((0.0, 0.0), 2.0, 2.0))
        groups = pipeline.run(op, [0.1, 0.2], {"combine_offsets": True})
        assert len(groups) == 1
        assert groups[0].kind == "combined"
        assert groups[0].metadata["distances"] == [0.1, 0.2]
        assert len(groups[0].primitives) == 2

    def test_cancel_between_passes(self, pipeline):
        op = _isolation(RectanglePrimitive((0.0, 0.0), 2.0, 2.0))
        calls = []

        def cancel():
            calls.append(1)
            return len(calls) > 1

        with pytest.raises(PipelineCancelled):
            pipeline.run(op, [0.1, 0.2, 0.3], cancel=cancel)

    def test_engine_must_be_ready(self, config, registry):
        pipeline = OffsetPipeline(
            GeometryOffsetter(config, registry),
            BooleanEngine(),
            ArcReconstructor(registry, config),
            config,
        )
        with pytest.raises(BooleanEngineError):
            pipeline.run(_isolation(CirclePrimitive((0.0, 0.0), 1.0)), [0.1])

    def test_offset_type_names(self):
        assert offset_type_for(0.1) == "external"
        assert offset_type_for(-0.1) == "internal"
        assert offset_type_for(0.0) == "on"


# ---------------------------------------------------------------------------
# Reconstruction
# ---------------------------------------------------------------------------


class TestArcReconstructor:
    def test_untagged_path_passes_through(self, config, registry):
        square = PathPrimitive.polygon([(0, 0), (1, 0), (1, 1), (0, 1)])
        (out,) = ArcReconstructor(registry, config).reconstruct([square])
        assert out is square

    def test_rounded_corners_become_arcs(self, config, registry):
        engine = BooleanEngine()
        engine.initialize()
        offset = GeometryOffsetter(config, registry).offset_primitive(
            RectanglePrimitive((0.0, 0.0), 4.0, 4.0), 0.5
        )
        merged = engine.union([offset])
        reconstructor = ArcReconstructor(registry, config)
        (out,) = reconstructor.reconstruct(merged)
        arcs = out.contours[0].arc_segments
        assert len(arcs) == 4
        for arc in arcs:
            assert arc.radius == pytest.approx(0.5)
            assert abs(arc.sweep_angle) == pytest.approx(3.14159 / 2, rel=0.05)
        assert out.properties["reconstructed"] is True

    def test_full_ring_becomes_circle(self, config, registry):
        poly = tessellate(CirclePrimitive((2.0, 2.0), 0.75), config, registry)
        (out,) = ArcReconstructor(registry, config).reconstruct([poly])
        assert isinstance(out, CirclePrimitive)
        assert out.center == (2.0, 2.0)
        assert out.radius == pytest.approx(0.75)

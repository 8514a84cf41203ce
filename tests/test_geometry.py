"""Tests for curve tagging, tessellation, stitching, booleans and offsets."""

import itertools
import math

import pytest

from tracecam.config.defaults import GeometryConfig
from tracecam.core.geometry.boolean import BooleanEngine, BooleanEngineError
from tracecam.core.geometry.curves import CurveKind, CurveMetadata, CurveRegistry, CurveTag
from tracecam.core.geometry.offsetter import GeometryOffsetter
from tracecam.core.geometry.stitcher import SegmentStitcher
from tracecam.core.geometry.tessellate import outline, segment_count, tessellate
from tracecam.core.geometry.utils import TWO_PI, normalize_sweep
from tracecam.core.primitives import (
    ArcPrimitive,
    CirclePrimitive,
    ObroundPrimitive,
    PathPrimitive,
    RectanglePrimitive,
)


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
def engine() -> BooleanEngine:
    e = BooleanEngine()
    e.initialize()
    return e


def _square(x0, y0, size, **props) -> PathPrimitive:
    return PathPrimitive.polygon(
        [(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)], **props
    )


def _square_sides() -> list[PathPrimitive]:
    corners = [(0, 0), (10, 0), (10, 10), (0, 10)]
    return [PathPrimitive.polyline([a, b]) for a, b in zip(corners, corners[1:] + corners[:1])]


# ---------------------------------------------------------------------------
# Curves
# ---------------------------------------------------------------------------


class TestCurveTags:
    def test_pack_unpack(self):
        tag = CurveTag(curve_id=1234, segment_index=77, clockwise=True)
        assert CurveTag.unpack(tag.pack()) == tag

    def test_zero_curve_id_rejected(self):
        with pytest.raises(ValueError):
            CurveTag(curve_id=0).pack()

    def test_reserved_bits_rejected(self):
        with pytest.raises(ValueError):
            CurveTag.unpack(1 << 60)


class TestCurveRegistry:
    def test_same_geometry_same_id(self, registry):
        meta = CurveMetadata(CurveKind.CIRCLE, (1.0, 2.0), 0.5)
        first = registry.register(meta)
        again = registry.register(CurveMetadata(CurveKind.CIRCLE, (1.0001, 2.0), 0.5))
        assert first == again
        assert len(registry) == 1
        assert registry.stats["cache_hits"] == 1

    def test_ids_start_at_one_after_clear(self, registry):
        registry.register(CurveMetadata(CurveKind.CIRCLE, (0.0, 0.0), 1.0))
        registry.register(CurveMetadata(CurveKind.CIRCLE, (5.0, 0.0), 1.0))
        registry.clear()
        assert len(registry) == 0
        assert registry.register(CurveMetadata(CurveKind.CIRCLE, (9.0, 9.0), 1.0)) == 1

    def test_clear_offset_curves_keeps_sources(self, registry):
        keep = registry.register(CurveMetadata(CurveKind.CIRCLE, (0.0, 0.0), 1.0))
        registry.register(CurveMetadata(CurveKind.CIRCLE, (0.0, 0.0), 1.1, offset_derived=True))
        assert registry.clear_offset_curves() == 1
        assert keep in registry
        assert len(registry) == 1


class TestSweep:
    def test_equal_angles_full_turn(self):
        assert normalize_sweep(0.0, 0.0, False) == pytest.approx(TWO_PI)
        assert normalize_sweep(1.0, 1.0, True) == pytest.approx(-TWO_PI)

    def test_clockwise_is_negative(self):
        assert normalize_sweep(0.0, math.pi / 2, True) == pytest.approx(-1.5 * math.pi)
        assert normalize_sweep(0.0, math.pi / 2, False) == pytest.approx(0.5 * math.pi)


# ---------------------------------------------------------------------------
# Tessellation
# ---------------------------------------------------------------------------


class TestTessellation:
    def test_segment_count_is_clamped(self, config):
        assert segment_count(0.001, TWO_PI, config) == config.min_segments
        assert segment_count(100.0, TWO_PI, config) == config.max_segments

    def test_circle_keeps_its_arc(self, config, registry):
        contours = outline(CirclePrimitive((0.0, 0.0), 1.0), config, registry)
        assert len(contours) == 1
        arcs = contours[0].arc_segments
        assert len(arcs) == 1
        assert arcs[0].curve_id in registry
        assert registry.get(arcs[0].curve_id).is_circle

    def test_circle_vertices_all_tagged(self, config, registry):
        poly = tessellate(CirclePrimitive((3.0, 3.0), 0.5), config, registry)
        tags = poly.contours[0].tags
        assert tags and all(t is not None for t in tags)
        assert len({t.curve_id for t in tags}) == 1

    def test_obround_is_two_half_circles(self, config, registry):
        contour = outline(ObroundPrimitive((0.0, 0.0), 3.0, 1.0), config, registry)[0]
        assert len(contour.arc_segments) == 2
        assert abs(contour.signed_area) == pytest.approx(2.0 + math.pi * 0.25, rel=1e-3)

    def test_open_path_without_width_has_no_outline(self, config):
        assert outline(PathPrimitive.polyline([(0, 0), (5, 0)]), config) == []

    def test_stroke_outline_area(self, config, registry):
        trace = PathPrimitive.polyline([(0, 0), (10, 0)], stroke_width=0.4)
        contour = outline(trace, config, registry)[0]
        expected = 10 * 0.4 + math.pi * 0.2 ** 2
        assert abs(contour.signed_area) == pytest.approx(expected, rel=1e-2)
        assert any(t is not None for t in contour.tags)

    def test_zero_width_arc_has_no_area(self, config):
        arc = ArcPrimitive((0.0, 0.0), 1.0, 0.0, math.pi)
        assert tessellate(arc, config) is None


# ---------------------------------------------------------------------------
# Stitching
# ---------------------------------------------------------------------------


class TestStitcher:
    @pytest.mark.parametrize("order", list(itertools.permutations(range(4)))[:8])
    def test_any_order_closes(self, config, order):
        sides = _square_sides()
        segments = [sides[i] for i in order]
        result = SegmentStitcher(config).stitch(segments)
        assert result.ok
        contour = result.primitive.contours[0]
        assert len(contour.points) == 4
        assert abs(contour.signed_area) == pytest.approx(100.0)

    def test_reversed_segments(self, config):
        sides = _square_sides()
        sides[1] = PathPrimitive.polyline(list(reversed(sides[1].points)))
        sides[3] = PathPrimitive.polyline(list(reversed(sides[3].points)))
        result = SegmentStitcher(config).stitch(sides)
        assert result.ok
        assert any(rev for _, rev in result.order)

    def test_arc_and_line(self, config, registry):
        arc = ArcPrimitive((0.0, 0.0), 5.0, 0.0, math.pi)
        chord = PathPrimitive.polyline([(-5.0, 0.0), (5.0, 0.0)])
        result = SegmentStitcher(config, registry).stitch([arc, chord])
        assert result.ok
        contour = result.primitive.contours[0]
        assert len(contour.arc_segments) == 1
        assert contour.arc_segments[0].curve_id in registry
        assert result.primitive.properties["stitched"] is True

    def test_missing_side_fails(self, config):
        result = SegmentStitcher(config).stitch(_square_sides()[:3])
        assert not result.ok
        assert result.primitive is None
        assert result.reason == "odd_degree"

    def test_branching_fails(self, config):
        tri_a = [(0, 0), (1, 0), (0.5, 1)]
        tri_b = [(0, 0), (-1, 0), (-0.5, -1)]
        segments = [
            PathPrimitive.polyline([a, b])
            for tri in (tri_a, tri_b)
            for a, b in zip(tri, tri[1:] + tri[:1])
        ]
        result = SegmentStitcher(config).stitch(segments)
        assert not result.ok
        assert result.reason == "branching"

    def test_two_loops_fail(self, config):
        other = [
            PathPrimitive.polyline([(x + 20, y) for x, y in side.points])
            for side in _square_sides()
        ]
        result = SegmentStitcher(config).stitch(_square_sides() + other)
        assert not result.ok
        assert result.reason == "disconnected"


# ---------------------------------------------------------------------------
# Booleans
# ---------------------------------------------------------------------------


class TestBooleanEngine:
    def test_requires_initialization(self):
        with pytest.raises(BooleanEngineError):
            BooleanEngine().union([_square(0, 0, 1)])

    def test_union_minus_hole(self, engine):
        outers = [_square(0, 0, 10), _square(5, 0, 10)]
        hole = [_square(2, 2, 2)]
        result = engine.difference(outers, hole)
        assert len(result) == 1
        assert BooleanEngine.area(result) == pytest.approx(146.0)
        assert any(c.is_hole for c in result[0].contours)

    def test_disjoint_union_keeps_pieces(self, engine):
        result = engine.union([_square(0, 0, 1), _square(5, 5, 1)])
        assert len(result) == 2

    def test_evenodd_drops_overlap(self, engine):
        result = engine.union([_square(0, 0, 10), _square(5, 0, 10)], fill_rule="evenodd")
        assert BooleanEngine.area(result) == pytest.approx(100.0)

    def test_tags_survive_union(self, engine, config, registry):
        circle = tessellate(CirclePrimitive((0.0, 0.0), 1.0), config, registry)
        result = engine.union([circle, _square(5, 5, 1)])
        ring = next(p for p in result if p.contours[0].curve_ids)
        assert all(t is not None for t in ring.contours[0].tags)

    def test_unknown_fill_rule(self):
        with pytest.raises(ValueError):
            BooleanEngine(fill_rule="winding")


# ---------------------------------------------------------------------------
# Offsetting
# ---------------------------------------------------------------------------


class TestOffsetter:
    def test_circle_stays_analytic(self, config):
        result = GeometryOffsetter(config).offset_primitive(CirclePrimitive((1.0, 1.0), 1.0), 0.2)
        assert isinstance(result, CirclePrimitive)
        assert result.radius == pytest.approx(1.2)
        assert result.properties["is_offset"] is True
        assert result.properties["offset_distance"] == pytest.approx(0.2)

    def test_circle_shrinks_away(self, config):
        assert GeometryOffsetter(config).offset_primitive(CirclePrimitive((0.0, 0.0), 1.0), -1.5) is None

    def test_tiny_distance_is_identity(self, config):
        circle = CirclePrimitive((0.0, 0.0), 1.0)
        assert GeometryOffsetter(config).offset_primitive(circle, 0.0) is circle

    def test_obround_grows_both_ways(self, config):
        result = GeometryOffsetter(config).offset_primitive(ObroundPrimitive((0.0, 0.0), 3.0, 1.0), 0.1)
        assert result.width == pytest.approx(3.2)
        assert result.height == pytest.approx(1.2)

    def test_stroke_widens(self, config):
        trace = PathPrimitive.polyline([(0, 0), (5, 0)], stroke_width=0.3)
        result = GeometryOffsetter(config).offset_primitive(trace, 0.1)
        assert result.stroke_width == pytest.approx(0.5)

    def test_rectangle_round_corners(self, config, registry):
        rect = RectanglePrimitive((0.0, 0.0), 10.0, 10.0)
        result = GeometryOffsetter(config, registry).offset_primitive(rect, 1.0)
        assert isinstance(result, PathPrimitive)
        contour = result.contours[0]
        assert abs(contour.signed_area) == pytest.approx(100 + 40 + math.pi, rel=1e-3)
        # corner joins land on registered circles
        assert any(t is not None for t in contour.tags)

    def test_open_path_without_width_rejected(self, config):
        with pytest.raises(ValueError):
            GeometryOffsetter(config).offset_primitive(PathPrimitive.polyline([(0, 0), (1, 0)]), 0.1)

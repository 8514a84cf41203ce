"""Job orchestrator: ties operations, settings and the pipeline together.

The Job class is the top-level entry point for the CLI.  It owns every
stateful collaborator of one pipeline run (curve registry, boolean engine,
machine position), so two jobs never share state.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..config.defaults import GeometryConfig, ToolpathConfig, build_default_tool_library
from ..config.settings import SettingsStore
from ..gcode.generator import GcodeGenerator, GcodeOptions
from .context import ToolpathContext, build_context
from .drill import generate_drill_strategy
from .geometry.arcs import ArcReconstructor
from .geometry.boolean import BooleanEngine
from .geometry.curves import CurveRegistry
from .geometry.offsetter import GeometryOffsetter
from .geometry.stitcher import SegmentStitcher
from .offsets import OffsetPipeline
from .operation import Operation, OperationType
from .primitives import Primitive, primitive_from_dict, primitive_to_dict
from .tool import ToolLibrary
from .toolpath.base import MachinePosition, ToolpathPlan
from .toolpath.machine import MachineProcessor
from .toolpath.optimizer import ToolpathOptimizer
from .toolpath.translator import GeometryTranslator
from .units import Units

logger = logging.getLogger(__name__)


@dataclass
class Job:
    """Represents a complete PCB job: operations plus their settings."""

    name: str = "Untitled"
    units: Units = Units.MM
    operations: list[Operation] = field(default_factory=list)
    settings: SettingsStore = field(default_factory=SettingsStore)
    tools: ToolLibrary = field(default_factory=build_default_tool_library)
    geometry_config: GeometryConfig = field(default_factory=GeometryConfig)
    toolpath_config: ToolpathConfig = field(default_factory=ToolpathConfig)

    def __post_init__(self) -> None:
        cfg = self.geometry_config
        self.registry = CurveRegistry(cfg.hash_precision)
        self.engine = BooleanEngine(cfg.clipper_scale, cfg.fill_rule)
        self.offsetter = GeometryOffsetter(cfg, self.registry)
        self.reconstructor = ArcReconstructor(self.registry, cfg)
        self.stitcher = SegmentStitcher(cfg, self.registry)
        self.pipeline = OffsetPipeline(self.offsetter, self.engine, self.reconstructor, cfg)
        self.position = MachinePosition()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_operation(self, operation_id: str) -> Operation:
        for op in self.operations:
            if op.id == operation_id:
                return op
        raise KeyError(f"Unknown operation: {operation_id!r}")

    def add_operation(self, operation: Operation) -> Operation:
        if any(op.id == operation.id for op in self.operations):
            raise ValueError(f"Duplicate operation id: {operation.id!r}")
        self.operations.append(operation)
        return operation

    def assign_tool(self, operation_id: str, tool_number: int) -> None:
        """Select a library tool for an operation (stored as an override)."""
        self.get_operation(operation_id)
        tool = self.tools.get(tool_number)
        if tool is None:
            raise KeyError(f"Tool T{tool_number} not in library")
        self.settings.set_operation(operation_id, **tool.as_parameters())

    def parameters(self, operation_id: str) -> dict:
        return self.settings.get_all_parameters(self.get_operation(operation_id))

    # ------------------------------------------------------------------
    # Geometry pipeline
    # ------------------------------------------------------------------

    def stitch_cutout(self, operation: Operation) -> list[Primitive]:
        """Source geometry for a cutout: fragments merged into one loop when possible."""
        if operation.type is not OperationType.CUTOUT or len(operation.primitives) < 2:
            return list(operation.primitives)
        result = self.stitcher.stitch(operation.primitives)
        if result.ok:
            logger.debug("Stitched %d cutout segments of %s", len(operation.primitives), operation.id)
            return [result.primitive]
        logger.warning("Could not stitch cutout %s: %s", operation.id, result.reason)
        operation.warn("stitch_failed", f"Cutout outline could not be closed ({result.reason})")
        return list(operation.primitives)

    def generate_offsets(self, operation_id: str, cancel: Optional[Callable[[], bool]] = None):
        """Offset geometry for one milling operation (drill operations plan holes)."""
        op = self.get_operation(operation_id)
        if op.type is OperationType.DRILL:
            return self.generate_drill_strategy(operation_id)
        if op.offsets:
            # finished offsets no longer need their curves; drop them before regenerating
            self.registry.clear_offset_curves()
        if not self.engine.ready:
            self.engine.initialize()
        params = self.parameters(operation_id)
        ctx = build_context(op, params, geometry=self.geometry_config, toolpath=self.toolpath_config)
        source = self.stitch_cutout(op)
        return self.pipeline.run(op, ctx.strategy.offset_distances, params, cancel, primitives=source)

    def generate_drill_strategy(self, operation_id: str):
        """Peck/mill planning; needs no boolean engine."""
        op = self.get_operation(operation_id)
        params = self.parameters(operation_id)
        return generate_drill_strategy(
            op,
            float(params["tool_diameter"]),
            bool(params.get("mill_holes", True)),
            self.toolpath_config,
            settings=params,
            precision=self.geometry_config.coordinate_precision,
        )

    def run_pipeline(self, cancel: Optional[Callable[[], bool]] = None) -> list[Operation]:
        """Regenerate the geometry of every operation from scratch."""
        self.registry.clear()
        for op in self.operations:
            op.warnings = []
            op.offsets = []
            self.generate_offsets(op.id, cancel)
        return self.operations

    # ------------------------------------------------------------------
    # Toolpaths
    # ------------------------------------------------------------------

    def build_context(self, operation_id: str, parameter_source: Optional[SettingsStore] = None) -> ToolpathContext:
        op = self.get_operation(operation_id)
        source = parameter_source or self.settings
        return build_context(
            op,
            source.get_all_parameters(op),
            machine=source.machine_settings(),
            gcode=source.gcode_settings(),
            geometry=self.geometry_config,
            toolpath=self.toolpath_config,
        )

    def compute_toolpaths(self, order: Optional[Sequence[str]] = None) -> list[ToolpathPlan]:
        """Machine-ready plans for the operations in *order* (default: all).

        One machine position is carried from operation to operation and is
        left in ``self.position`` afterwards.
        """
        machine = self.settings.machine_settings()
        pos = MachinePosition(machine.home_x, machine.home_y, machine.safe_z)
        optimizer = ToolpathOptimizer(self.toolpath_config)
        ready: list[ToolpathPlan] = []

        for op_id in order or [op.id for op in self.operations]:
            op = self.get_operation(op_id)
            if not op.offsets:
                logger.debug("Operation %s has no geometry, skipping", op_id)
                continue
            ctx = self.build_context(op_id)
            translator = GeometryTranslator(ctx)
            plans = translator.translate(op)
            op.warnings = [w for w in op.warnings if w.kind != "tab_risk"] + translator.warnings
            plans = optimizer.optimize(plans, pos.xy)
            batch, pos = MachineProcessor(ctx).process(plans, pos)
            ready.extend(batch)

        self.position = pos
        return ready

    def export_gcode(self, output: Optional[Path] = None, plans: Optional[Sequence[ToolpathPlan]] = None) -> str:
        if plans is None:
            plans = self.compute_toolpaths()
        options = GcodeOptions.from_settings(
            self.settings.gcode_settings(),
            self.settings.machine_settings(),
            program_name=self.name,
        )
        options = replace(options, units=self.units)
        text = GcodeGenerator(options).generate(plans)
        if output is not None:
            output.write_text(text)
        return text

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "units": self.units.value,
            "machine": dict(self.settings.machine),
            "gcode": dict(self.settings.gcode),
            "categories": dict(self.settings.categories),
            "overrides": {key: dict(values) for key, values in self.settings.operations.items()},
            "operations": [
                {
                    "id": op.id,
                    "type": op.type.value,
                    "file_name": op.file_name,
                    "settings": dict(op.settings),
                    "primitives": [primitive_to_dict(p) for p in op.primitives],
                }
                for op in self.operations
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Job:
        settings = SettingsStore(
            machine=dict(data.get("machine", {})),
            gcode=dict(data.get("gcode", {})),
            categories=dict(data.get("categories", {})),
            operations={key: dict(values) for key, values in data.get("overrides", {}).items()},
        )
        job = cls(
            name=data.get("name", "Untitled"),
            units=Units.parse(data.get("units", "mm")),
            settings=settings,
        )
        for entry in data.get("operations", []):
            job.add_operation(Operation(
                id=entry["id"],
                type=OperationType(entry["type"]),
                primitives=[primitive_from_dict(p) for p in entry.get("primitives", [])],
                settings=dict(entry.get("settings", {})),
                file_name=entry.get("file_name", ""),
            ))
        return job


def load_job(path: Path) -> Job:
    """Read a job file (JSON) into a :class:`Job`."""
    job = Job.from_dict(json.loads(Path(path).read_text()))
    logger.debug("Loaded job %s with %d operations", job.name, len(job.operations))
    return job


def save_job(job: Job, path: Path) -> None:
    Path(path).write_text(json.dumps(job.to_dict(), indent=2, sort_keys=True))

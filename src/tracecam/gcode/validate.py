"""G-code validation and sanity checks.

Checks machine-ready plans against machine travel limits and other safety
rules before cutting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..core.toolpath.base import MotionCommand, MoveType, ToolpathPlan


@dataclass
class MachineEnvelope:
    """Axis travel limits of a desktop PCB router, in millimetres."""

    x_min: float = 0.0
    x_max: float = 300.0
    y_min: float = 0.0
    y_max: float = 200.0
    z_min: float = -45.0
    z_max: float = 45.0
    max_rpm: int = 30000
    min_rpm: int = 0
    max_feed: float = 3000.0  # mm/min

    @classmethod
    def from_dict(cls, data: dict) -> "MachineEnvelope":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class ValidationIssue:
    """A single validation problem found in the plans."""

    severity: str  # "error" or "warning"
    message: str
    command: Optional[MotionCommand] = None


@dataclass
class ValidationResult:
    """Result of validating one or more plans."""

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(i.severity == "error" for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        return any(i.severity == "warning" for i in self.issues)

    @property
    def is_ok(self) -> bool:
        return len(self.issues) == 0


def validate_plans(
    plans: Sequence[ToolpathPlan],
    envelope: MachineEnvelope,
    rpm: Optional[int] = None,
) -> ValidationResult:
    """Check machine-ready *plans* against *envelope* limits.

    Checks performed:
    - All XYZ coordinates within machine travel
    - Feed rates within machine maximum
    - RPM within machine range (each plan's spindle speed, or *rpm*)
    - No rapid XY move while the tool is below the surface
    - Plans are non-empty
    """
    result = ValidationResult()

    speeds = {rpm} if rpm is not None else {p.metadata.spindle_speed for p in plans}
    for speed in sorted(speeds):
        if speed < envelope.min_rpm:
            result.issues.append(ValidationIssue(
                "error",
                f"RPM {speed} below machine minimum ({envelope.min_rpm})",
            ))
        if speed > envelope.max_rpm:
            result.issues.append(ValidationIssue(
                "error",
                f"RPM {speed} above machine maximum ({envelope.max_rpm})",
            ))

    z: Optional[float] = None
    all_empty = True
    for plan in plans:
        if not plan.commands:
            continue
        all_empty = False

        for cmd in plan.commands:
            # Travel limit checks
            if cmd.x is not None and not envelope.x_min <= cmd.x <= envelope.x_max:
                result.issues.append(ValidationIssue(
                    "error",
                    f"X={cmd.x:.4f} outside travel [{envelope.x_min}, {envelope.x_max}]",
                    cmd,
                ))
            if cmd.y is not None and not envelope.y_min <= cmd.y <= envelope.y_max:
                result.issues.append(ValidationIssue(
                    "error",
                    f"Y={cmd.y:.4f} outside travel [{envelope.y_min}, {envelope.y_max}]",
                    cmd,
                ))
            if cmd.z is not None and not envelope.z_min <= cmd.z <= envelope.z_max:
                result.issues.append(ValidationIssue(
                    "error",
                    f"Z={cmd.z:.4f} outside travel [{envelope.z_min}, {envelope.z_max}]",
                    cmd,
                ))

            # Feed rate check
            if cmd.feed is not None and cmd.feed > envelope.max_feed:
                result.issues.append(ValidationIssue(
                    "warning",
                    f"Feed {cmd.feed:.1f} exceeds machine max ({envelope.max_feed:.1f})",
                    cmd,
                ))

            # Rapid through material
            if cmd.type is MoveType.RAPID and (cmd.x is not None or cmd.y is not None):
                if z is not None and z < 0:
                    result.issues.append(ValidationIssue(
                        "error",
                        f"Rapid XY move at Z={z:.4f} (below surface) in {plan.metadata.path_id}",
                        cmd,
                    ))
            if cmd.z is not None:
                z = cmd.z

    if all_empty:
        result.issues.append(ValidationIssue(
            "warning",
            "All plans are empty; no G-code will be generated",
        ))

    return result

"""Toolpath generation package."""

from .base import MachinePosition, MotionCommand, MoveType, PathElement, PlanMetadata, ToolpathPlan

__all__ = ["MachinePosition", "MotionCommand", "MoveType", "PathElement", "PlanMetadata", "ToolpathPlan"]

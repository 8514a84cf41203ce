"""Cutting tool definitions and tool library with JSON persistence."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Optional


class ToolType(Enum):
    END_MILL = "end_mill"
    V_BIT = "v_bit"
    DRILL = "drill"


@dataclass
class Tool:
    """A cutting tool definition.  Dimensions are in millimetres."""
    number: int
    name: str
    tool_type: ToolType
    diameter: float
    default_rpm: int = 0
    default_feed: float = 0.0
    default_plunge: float = 0.0

    def as_parameters(self) -> dict:
        """Operation parameters implied by selecting this tool."""
        params = {
            "tool_number": self.number,
            "tool_diameter": self.diameter,
            "tool_type": self.tool_type.value,
        }
        if self.default_rpm:
            params["spindle_speed"] = self.default_rpm
        if self.default_feed:
            params["feed_rate"] = self.default_feed
        if self.default_plunge:
            params["plunge_rate"] = self.default_plunge
        return params

    def to_dict(self) -> dict:
        d = asdict(self)
        d["tool_type"] = self.tool_type.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Tool:
        d = dict(d)
        d["tool_type"] = ToolType(d["tool_type"])
        return cls(**d)


class ToolLibrary:
    """Persistent tool library backed by a JSON file."""

    def __init__(self, path: Optional[Path] = None):
        if path is None:
            path = Path.home() / ".tracecam" / "tools.json"
        self._path = path
        self._tools: dict[int, Tool] = {}
        if self._path.exists():
            self.load()

    def add(self, tool: Tool) -> None:
        self._tools[tool.number] = tool

    def get(self, number: int) -> Optional[Tool]:
        return self._tools.get(number)

    def list_tools(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: t.number)

    def save(self) -> None:
        if self._path is None:
            raise RuntimeError("In-memory tool library has no backing file")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = [t.to_dict() for t in self.list_tools()]
        self._path.write_text(json.dumps(data, indent=2))

    def load(self) -> None:
        data = json.loads(self._path.read_text())
        self._tools = {}
        for d in data:
            tool = Tool.from_dict(d)
            self._tools[tool.number] = tool

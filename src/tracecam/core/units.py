"""Unit system enum and conversion helpers.

Geometry is always processed in millimetres; inches only matter when
G-code is written.
"""

from enum import Enum


class Units(Enum):
    MM = "mm"
    INCH = "in"

    def to_mm(self, value: float) -> float:
        if self is Units.MM:
            return value
        return value * 25.4

    def from_mm(self, value: float) -> float:
        if self is Units.MM:
            return value
        return value / 25.4

    def label(self) -> str:
        return "in" if self is Units.INCH else "mm"

    @property
    def gcode_modal(self) -> str:
        """G-code modal group 6 word."""
        return "G20" if self is Units.INCH else "G21"

    @classmethod
    def parse(cls, text: str) -> "Units":
        """Accept ``mm``, ``in`` or ``inch``."""
        text = text.strip().lower()
        if text in ("in", "inch", "inches"):
            return cls.INCH
        if text in ("mm", "millimeter", "millimetre"):
            return cls.MM
        raise ValueError(f"Unknown units: {text!r}")

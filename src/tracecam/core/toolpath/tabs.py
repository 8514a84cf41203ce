"""Holding-tab placement for board cutouts.

Tabs are placed on the closed cutout path by arc-length.  Sharp corners
(turning by more than ``min_corner_angle``) split the path into sections;
a tab centre must sit at least the corner margin plus half the tab gap
away from every sharp corner, on a section at least
``tab_width * min_tab_length_factor`` long, and tab centres must be at
least ``tab_width + 2 * tool_diameter`` apart.  Tabs are aimed at
equidistant positions around the path and snapped to the nearest allowed
spot.
"""

from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

from ...config.defaults import ToolpathConfig
from ..geometry.utils import TWO_PI
from .base import PathElement

logger = logging.getLogger(__name__)


@dataclass
class TabLayout:
    """Tab gaps as ``(start, end)`` arc-length intervals along the path."""

    intervals: list[tuple[float, float]] = field(default_factory=list)
    requested: int = 0
    perimeter: float = 0.0

    @property
    def placed(self) -> int:
        return len(self.intervals)

    @property
    def complete(self) -> bool:
        return self.placed >= self.requested


def _turn(a: float, b: float) -> float:
    """Absolute turning angle in degrees between two headings."""
    d = (b - a) % TWO_PI
    if d > math.pi:
        d = TWO_PI - d
    return math.degrees(d)


class TabPlanner:
    def __init__(self, tool_diameter: float, tab_width: float, config: ToolpathConfig):
        self.tool_diameter = tool_diameter
        self.tab_width = tab_width
        self.config = config

    @property
    def gap(self) -> float:
        """Length of path the tool skips over for one tab."""
        return self.tab_width + self.tool_diameter

    @property
    def corner_margin(self) -> float:
        return max(self.tool_diameter * self.config.corner_margin_factor, self.tab_width)

    @property
    def min_spacing(self) -> float:
        return self.tab_width + 2.0 * self.tool_diameter

    def corners(self, elements: Sequence[PathElement]) -> list[float]:
        """Arc-length positions of sharp corners on a closed path."""
        positions: list[float] = []
        s = 0.0
        n = len(elements)
        for k, elem in enumerate(elements):
            prev = elements[k - 1] if n > 1 else elem
            if n > 1 and _turn(prev.end_tangent(), elem.start_tangent()) >= self.config.min_corner_angle:
                positions.append(s)
            s += elem.length
        return positions

    def allowed(self, elements: Sequence[PathElement]) -> list[tuple[float, float]]:
        """Intervals where a tab centre may go."""
        perimeter = sum(e.length for e in elements)
        half = self.gap / 2.0
        clearance = half + self.corner_margin
        corners = self.corners(elements)
        if not corners:
            lo, hi = half, perimeter - half
            return [(lo, hi)] if hi > lo else []

        spans: list[tuple[float, float]] = []
        min_section = self.tab_width * self.config.min_tab_length_factor
        for k, a in enumerate(corners):
            b = corners[k + 1] if k + 1 < len(corners) else corners[0] + perimeter
            if b - a < min_section:
                continue
            lo, hi = a + clearance, b - clearance
            if hi < lo:
                continue
            # keep intervals inside [0, perimeter) so gaps never straddle the seam
            if lo < perimeter and hi > perimeter:
                if perimeter - half > lo:
                    spans.append((lo, perimeter - half))
                if hi - perimeter > half:
                    spans.append((half, hi - perimeter))
                continue
            if lo >= perimeter:
                lo, hi = lo - perimeter, hi - perimeter
            lo, hi = max(lo, half), min(hi, perimeter - half)
            if hi >= lo:
                spans.append((lo, hi))
        return sorted(spans)

    def plan(self, elements: Sequence[PathElement], count: int) -> TabLayout:
        perimeter = sum(e.length for e in elements)
        layout = TabLayout(requested=count, perimeter=perimeter)
        if count <= 0 or self.tab_width <= 0 or perimeter <= 0:
            return layout

        spans = self.allowed(elements)
        if not spans:
            logger.debug("No straight section long enough for tabs (perimeter %.2f)", perimeter)
            return layout

        targets = [perimeter * (k + 0.5) / count for k in range(count)]
        # span midpoints are second-choice spots when a target collides
        targets += [(lo + hi) / 2.0 for lo, hi in spans]
        centres: list[float] = []
        for target in targets:
            if len(centres) >= count:
                break
            pos = self._snap(target, spans)
            if all(self._circular(pos, c, perimeter) >= self.min_spacing for c in centres):
                bisect.insort(centres, pos)

        half = self.gap / 2.0
        layout.intervals = [(c - half, c + half) for c in centres]
        return layout

    @staticmethod
    def _snap(target: float, spans: list[tuple[float, float]]) -> float:
        best, best_d = None, math.inf
        for lo, hi in spans:
            pos = min(max(target, lo), hi)
            d = abs(pos - target)
            if d < best_d:
                best, best_d = pos, d
        return best

    @staticmethod
    def _circular(a: float, b: float, perimeter: float) -> float:
        d = abs(a - b) % perimeter
        return min(d, perimeter - d)

"""Low-level G-code line formatting helpers."""

from __future__ import annotations

from typing import Optional


def fmt(value: float, decimals: int = 4) -> str:
    """Format a float for G-code, stripping trailing zeros."""
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def words(
    x: Optional[float] = None,
    y: Optional[float] = None,
    z: Optional[float] = None,
    i: Optional[float] = None,
    j: Optional[float] = None,
    r: Optional[float] = None,
    q: Optional[float] = None,
    p: Optional[float] = None,
    f: Optional[float] = None,
    decimals: int = 4,
) -> list[str]:
    """Axis and feed words for the values that are given."""
    parts = []
    for letter, value in (("X", x), ("Y", y), ("Z", z), ("I", i), ("J", j), ("R", r), ("Q", q), ("P", p)):
        if value is not None:
            parts.append(f"{letter}{fmt(value, decimals)}")
    if f is not None:
        parts.append(f"F{fmt(f, 1)}")
    return parts


def motion(code: Optional[str], *axis_words: str) -> str:
    """Join a (possibly modal, so omitted) G word with its axis words."""
    parts = [code] if code else []
    parts.extend(axis_words)
    return " ".join(parts)


def dwell(seconds: float, in_ms: bool = False) -> str:
    """G4 dwell; some controllers take the P word in milliseconds."""
    value = seconds * 1000.0 if in_ms else seconds
    return f"G4 P{fmt(value, 3)}"


def comment(text: str) -> str:
    """Wrap *text* in a parenthetical comment."""
    # nested parens end the comment early on most controllers
    cleaned = text.replace("(", "").replace(")", "")
    return f"({cleaned})"

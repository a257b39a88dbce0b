"""
unit_utils.py

Utilities to parse human-friendly dimensions like '85.6mm', '25cm', '8in' or
'320px' and convert between millimeters and pixels.
"""

import re
from typing import Optional, Tuple, Union

from .config import DEFAULT_PX_PER_MM, MM_PER_INCH, POINTS_PER_INCH, PX_PER_MM_CSS

_LENGTH_RE = re.compile(r"^\s*([-+]?[\d.]+(?:e[-+]?\d+)?)\s*(px|mm|cm|in|pt)?\s*$", re.IGNORECASE)


def parse_length(value: Optional[str]) -> Tuple[Optional[float], Optional[str]]:
    """
    Split a length attribute into its number and unit.

    Returns (None, None) when the value is empty or not a plain length.
    Percentages and other CSS units are treated as unparseable.
    """
    if value is None:
        return None, None
    m = _LENGTH_RE.match(str(value))
    if not m:
        return None, None
    try:
        number = float(m.group(1))
    except ValueError:
        return None, None
    unit = m.group(2).lower() if m.group(2) else None
    return number, unit


def to_mm(size: Union[str, int, float], px_per_mm: float = PX_PER_MM_CSS) -> float:
    """
    Parse a size specification and return millimeters.

    Args:
        size: e.g. "85.6mm", "5.4cm", "2in", "72pt", "320px" or a number (mm).
        px_per_mm: pixels per millimeter used for "px" values.
    """
    if isinstance(size, (int, float)):
        return float(size)
    number, unit = parse_length(size)
    if number is None:
        raise ValueError(f"Invalid size string: {size}")
    unit = unit or "mm"
    if unit == "mm":
        return number
    if unit == "cm":
        return number * 10
    if unit == "in":
        return number * MM_PER_INCH
    if unit == "pt":
        return number / POINTS_PER_INCH * MM_PER_INCH
    if unit == "px":
        return number / px_per_mm
    raise ValueError(f"Unsupported unit: {unit}")


def px_to_mm(px: float, px_per_mm: float = DEFAULT_PX_PER_MM) -> float:
    return px / px_per_mm


def mm_to_points(mm: float) -> float:
    return mm / MM_PER_INCH * POINTS_PER_INCH


def dpi_to_px_per_mm(dpi: float) -> float:
    return dpi / MM_PER_INCH


def parse_dimensions(value: str) -> Tuple[float, float]:
    """
    Parse "85.6x54" (optionally with units on each side, e.g. "210mmx297mm")
    into a (width_mm, height_mm) tuple.
    """
    parts = re.split(r"\s*[xX×]\s*", str(value).strip())
    if len(parts) != 2:
        raise ValueError(f"Expected WIDTHxHEIGHT, got '{value}'")
    return to_mm(parts[0]), to_mm(parts[1])

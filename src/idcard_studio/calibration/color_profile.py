"""
This module calibrates printed colour.

A sheet of solid swatches (see `solid_fill_renderer`) is printed and
photographed. The photograph is registered through the corner markers and
warped back onto the sheet grid, then every swatch is sampled at its cell
centre. The difference between what was printed and what was asked for
(measured minus expected, per channel) is stored per colour in a
ColorProfile.

Applying a profile to an SVG moves each paint colour the opposite way, so a
printer that prints a red 10 levels too bright is sent a red 10 levels darker.
Colours that are not in the profile borrow the adjustment of the closest
profile colour, as long as it is within COLOR_MATCH_DISTANCE.
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, Field, field_validator

from ..config import COLOR_MATCH_DISTANCE, COLOR_PROFILE_VERSION, SWATCH_SAMPLE_RADIUS_PX, SWATCH_TRIM_FRACTION
from ..config_models import DetectorConfig, SheetLayoutConfig
from ..fields.svg_utils import local_name, parse_svg, serialize
from ..layout.grid import compute_grid
from ..layout.sheet import card_slots, marker_cells
from .registration import check_registration, rectify

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

COLOR_ATTRS = ("fill", "stroke", "stop-color", "flood-color", "lighting-color")

NAMED_COLORS = {
    "black": (0, 0, 0),
    "white": (255, 255, 255),
    "red": (255, 0, 0),
    "green": (0, 128, 0),
    "blue": (0, 0, 255),
    "yellow": (255, 255, 0),
    "cyan": (0, 255, 255),
    "magenta": (255, 0, 255),
    "gray": (128, 128, 128),
    "grey": (128, 128, 128),
}

_HEX6 = re.compile(r"^#([0-9a-f]{6})$")
_HEX3 = re.compile(r"^#([0-9a-f]{3})$")
_RGB_FUNC = re.compile(r"^rgb\s*\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*\)$")
_STYLE_COLOR = re.compile(r"(?<![\w-])(" + "|".join(COLOR_ATTRS) + r")\s*:\s*([^;]+)", re.IGNORECASE)


# ==============================================================================
# Colour values
# ==============================================================================


def parse_color(value: str) -> Optional[RGB]:
    """
    RGB triple for "#rrggbb", "#rgb", "rgb(r, g, b)" or a basic colour name.
    Anything else (gradients, "none", "currentColor") gives None.
    """
    text = value.strip().lower()
    m = _HEX6.match(text)
    if m:
        h = m.group(1)
        return int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)
    m = _HEX3.match(text)
    if m:
        return tuple(int(ch * 2, 16) for ch in m.group(1))
    m = _RGB_FUNC.match(text)
    if m:
        return tuple(min(255, int(c)) for c in m.groups())
    return NAMED_COLORS.get(text)


def to_hex(rgb: Sequence[int]) -> str:
    return "#" + "".join(f"{int(c):02x}" for c in rgb)


class ColorDelta(BaseModel):
    """Printed minus expected, per channel."""
    r: int = 0
    g: int = 0
    b: int = 0

    def as_tuple(self) -> RGB:
        return self.r, self.g, self.b


class ColorProfile(BaseModel):
    """
    Colour drift of one printer.

    Attributes:
        adjustments (Dict[str, ColorDelta]): Keyed by the expected colour as
            upper-case "#RRGGBB".
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = "default"
    device: str = ""
    adjustments: Dict[str, ColorDelta] = Field(default_factory=dict)

    @field_validator("adjustments")
    @classmethod
    def _normalize_keys(cls, value: Dict[str, ColorDelta]) -> Dict[str, ColorDelta]:
        normalized = {}
        for key, delta in value.items():
            rgb = parse_color(key)
            if rgb is None:
                raise ValueError(f"Not a colour: {key!r}")
            normalized[to_hex(rgb).upper()] = delta
        return normalized


def save_profiles(profiles: Sequence[ColorProfile], path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {"version": COLOR_PROFILE_VERSION, "profiles": [p.model_dump() for p in profiles]}
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path


def load_profiles(path: Union[str, Path]) -> List[ColorProfile]:
    """
    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a profile export of a supported version.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Profile file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict) or data.get("version") != COLOR_PROFILE_VERSION:
        raise ValueError(f"Unsupported colour profile file: {path}")
    return [ColorProfile.model_validate(p) for p in data.get("profiles", [])]


# ==============================================================================
# Measuring a printed swatch sheet
# ==============================================================================


@dataclass
class SwatchSample:
    card_index: int
    expected: str
    measured: str
    delta: RGB
    center_px: Tuple[int, int]


def average_color(image: np.ndarray, center: Tuple[float, float], radius: int = SWATCH_SAMPLE_RADIUS_PX) -> RGB:
    """
    Mean RGB of the (2r+1)^2 window around `center` in a BGR image, after
    dropping the darkest and brightest SWATCH_TRIM_FRACTION of its pixels
    (dust, paper fibres, specular highlights).

    Raises:
        ValueError: If the window lies outside the image.
    """
    x, y = int(round(center[0])), int(round(center[1]))
    h, w = image.shape[:2]
    window = image[max(0, y - radius):min(h, y + radius + 1), max(0, x - radius):min(w, x + radius + 1)]
    pixels = window.reshape(-1, 3).astype(np.float64)
    if len(pixels) == 0:
        raise ValueError(f"Sample point {center} is outside the image.")

    order = np.argsort(pixels.sum(axis=1), kind="stable")
    start = int(len(order) * SWATCH_TRIM_FRACTION)
    end = int(len(order) * (1 - SWATCH_TRIM_FRACTION))
    kept = pixels[order[start:end]] if end > start else pixels
    b, g, r = kept.mean(axis=0)
    return int(round(r)), int(round(g)), int(round(b))


def sample_swatches(rectified: np.ndarray, sheet: SheetLayoutConfig, colors: Optional[Sequence[str]] = None) -> List[SwatchSample]:
    """
    Sample every card cell of a rectified swatch sheet.

    Card k was printed with colors[k % len(colors)], the same rule
    `solid_fill_renderer` follows. Marker cells are skipped.
    """
    colors = list(colors or sheet.colors)
    if not colors:
        raise ValueError("No swatch colours given; the sheet config lists none either.")
    expected = []
    for c in colors:
        rgb = parse_color(c)
        if rgb is None:
            raise ValueError(f"Not a colour: {c!r}")
        expected.append(rgb)

    grid = compute_grid(sheet.sheet_width_mm, sheet.sheet_height_mm, sheet.columns, sheet.rows, sheet.gap_mm, sheet.margin_mm)
    skip = marker_cells(grid, sheet.marker_ids) if sheet.use_markers else {}

    samples = []
    for slot in card_slots(grid, sheet.px_per_mm, skip):
        x0, y0, x1, y1 = slot.rect_px
        center = ((x0 + x1) // 2, (y0 + y1) // 2)
        radius = max(0, min(SWATCH_SAMPLE_RADIUS_PX, (min(slot.size_px) - 1) // 2))
        want = expected[slot.card_index % len(expected)]
        got = average_color(rectified, center, radius)
        samples.append(SwatchSample(
            card_index=slot.card_index,
            expected=to_hex(want).upper(),
            measured=to_hex(got),
            delta=tuple(m - e for m, e in zip(got, want)),
            center_px=center,
        ))
    logger.debug("Sampled %d swatches", len(samples))
    return samples


def build_profile(samples: Sequence[SwatchSample], name: str = "default", device: str = "") -> ColorProfile:
    """Average the deltas of all swatches printed with the same colour."""
    grouped: Dict[str, List[RGB]] = {}
    for sample in samples:
        grouped.setdefault(sample.expected, []).append(sample.delta)
    adjustments = {}
    for color, deltas in grouped.items():
        r, g, b = np.round(np.mean(np.array(deltas, dtype=np.float64), axis=0)).astype(int)
        adjustments[color] = ColorDelta(r=int(r), g=int(g), b=int(b))
    return ColorProfile(name=name, device=device, adjustments=adjustments)


def analyze_color_chart(
    image: np.ndarray,
    sheet: Optional[SheetLayoutConfig] = None,
    colors: Optional[Sequence[str]] = None,
    detector_config: Optional[DetectorConfig] = None,
    name: str = "default",
    device: str = "",
) -> ColorProfile:
    """
    Build a profile from a photograph of a printed swatch sheet.

    Raises:
        ValueError: If the corner markers cannot be registered or no colours are known.
    """
    sheet = sheet or SheetLayoutConfig()
    report = check_registration(image, sheet, detector_config)
    if not report.complete:
        raise ValueError(f"Cannot sample swatches: corner markers {report.missing_ids} not found.")
    samples = sample_swatches(rectify(image, report, sheet), sheet, colors)
    profile = build_profile(samples, name, device)
    logger.info("Colour profile '%s': %d colours from %d swatches", name, len(profile.adjustments), len(samples))
    return profile


# ==============================================================================
# Correcting documents
# ==============================================================================


def _nearest(rgb: RGB, adjustments: Dict[str, ColorDelta]) -> Optional[ColorDelta]:
    best, best_distance = None, COLOR_MATCH_DISTANCE
    for key in sorted(adjustments):
        other = parse_color(key)
        distance = float(np.linalg.norm(np.subtract(rgb, other)))
        if distance < best_distance:
            best, best_distance = adjustments[key], distance
    return best


def correct_color(value: str, adjustments: Dict[str, ColorDelta]) -> str:
    """
    Compensate one colour value. Values that are not plain colours, and
    colours with no profile colour nearby, are returned unchanged.
    """
    rgb = parse_color(value)
    if rgb is None:
        return value
    delta = adjustments.get(to_hex(rgb).upper())
    if delta is None:
        delta = _nearest(rgb, adjustments)
    if delta is None:
        return value
    return to_hex(min(255, max(0, c - d)) for c, d in zip(rgb, delta.as_tuple()))


def _correct_style(style: str, adjustments: Dict[str, ColorDelta]) -> str:
    def replace(match):
        corrected = correct_color(match.group(2).strip(), adjustments)
        if corrected == match.group(2).strip():
            return match.group(0)
        return f"{match.group(1)}: {corrected}"

    return _STYLE_COLOR.sub(replace, style)


def apply_color_correction(document: str, profile: ColorProfile) -> str:
    """
    Rewrite paint colours (presentation attributes and inline styles) of an
    SVG document with the profile's compensation.

    Raises:
        ParseFailure: If the document cannot be parsed.
    """
    if not profile.adjustments:
        return document
    root = parse_svg(document)
    changed = 0
    for el in root.iter():
        if not local_name(el):
            continue
        for attr in COLOR_ATTRS:
            value = el.get(attr)
            if value is None:
                continue
            corrected = correct_color(value, profile.adjustments)
            if corrected != value:
                el.set(attr, corrected)
                changed += 1
        style = el.get("style")
        if style:
            corrected = _correct_style(style, profile.adjustments)
            if corrected != style:
                el.set("style", corrected)
                changed += 1
    logger.debug("Colour profile '%s' changed %d values", profile.name, changed)
    return serialize(root)

"""
Tests for printer colour calibration: swatch sampling, profile building and
SVG colour compensation.
"""

import cv2
import numpy as np
import pytest
from pydantic import ValidationError

from idcard_studio.calibration.color_profile import (
    ColorDelta,
    ColorProfile,
    analyze_color_chart,
    apply_color_correction,
    average_color,
    correct_color,
    load_profiles,
    parse_color,
    sample_swatches,
    save_profiles,
)
from idcard_studio.config_models import SheetLayoutConfig
from idcard_studio.fields.svg_utils import parse_svg
from idcard_studio.layout.sheet import PrintSheetGenerator

SWATCHES = ["#806040", "#40a0c0", "#c08060"]
# BGR drift of the simulated printer; in RGB that is (+20, +5, -10)
DRIFT_BGR = (-10, 5, 20)


@pytest.fixture(scope="module")
def sheet_config():
    return SheetLayoutConfig(
        sheet_width_mm=85.6,
        sheet_height_mm=54.0,
        columns=11,
        rows=7,
        gap_mm=0.5,
        margin_mm=5.0,
        px_per_mm=20.0,
        colors=SWATCHES,
    )


@pytest.fixture(scope="module")
def printed(sheet_config):
    """The swatch sheet as a drifting printer would put it on paper."""
    sheet = PrintSheetGenerator(sheet_config).build()
    return np.clip(sheet.astype(int) + np.array(DRIFT_BGR), 0, 255).astype(np.uint8)


def _photograph(sheet):
    h, w = sheet.shape[:2]
    src = np.float32([[0, 0], [w, 0], [w, h], [0, h]])
    dst = np.float32([[110, 80], [w + 150, 70], [w + 120, h + 140], [80, h + 100]])
    return cv2.warpPerspective(sheet, cv2.getPerspectiveTransform(src, dst), (w + 260, h + 240), borderValue=(255, 255, 255))


# --- Colour values ----------------------------------------------------------------

def test_parse_color_formats():
    assert parse_color("#806040") == (128, 96, 64)
    assert parse_color(" #F00 ") == (255, 0, 0)
    assert parse_color("rgb(1, 2, 3)") == (1, 2, 3)
    assert parse_color("Green") == (0, 128, 0)
    assert parse_color("none") is None
    assert parse_color("url(#grad)") is None


def test_average_color_drops_outliers():
    image = np.zeros((11, 11, 3), dtype=np.uint8)
    image[:] = (64, 96, 128)
    image[5, 5] = (255, 255, 255)  # highlight
    image[0, 0] = (0, 0, 0)  # dust
    assert average_color(image, (5, 5), radius=5) == (128, 96, 64)

    with pytest.raises(ValueError):
        average_color(image, (50, 50), radius=2)


# --- Measuring ----------------------------------------------------------------------

def test_flat_sheet_swatches_measure_the_drift(sheet_config, printed):
    samples = sample_swatches(printed, sheet_config)
    assert len(samples) == 77 - 4
    assert [s.expected for s in samples[:4]] == ["#806040", "#40A0C0", "#C08060", "#806040"]
    for sample in samples:
        assert sample.delta == (20, 5, -10)


def test_photographed_sheet_gives_the_profile(sheet_config, printed):
    profile = analyze_color_chart(_photograph(printed), sheet_config, name="office", device="laser")
    assert profile.name == "office" and profile.device == "laser"
    assert sorted(profile.adjustments) == ["#40A0C0", "#806040", "#C08060"]
    for delta in profile.adjustments.values():
        assert delta.as_tuple() == pytest.approx((20, 5, -10), abs=2)


def test_unregistered_photo_raises(sheet_config):
    with pytest.raises(ValueError):
        analyze_color_chart(np.full((400, 600, 3), 255, dtype=np.uint8), sheet_config)


def test_sampling_needs_colours(sheet_config, printed):
    with pytest.raises(ValueError):
        sample_swatches(printed, sheet_config.model_copy(update={"colors": []}))


# --- Profiles -----------------------------------------------------------------------

def test_profile_keys_are_normalized():
    profile = ColorProfile(adjustments={"#abc": {"r": 1, "g": 2, "b": 3}, "rgb(0, 0, 255)": ColorDelta()})
    assert sorted(profile.adjustments) == ["#0000FF", "#AABBCC"]
    with pytest.raises(ValidationError):
        ColorProfile(adjustments={"gradient": ColorDelta()})


def test_profiles_save_and_load(tmp_path):
    profile = ColorProfile(name="office", adjustments={"#806040": ColorDelta(r=20, g=5, b=-10)})
    path = save_profiles([profile], tmp_path / "profiles" / "office.json")
    (loaded,) = load_profiles(path)
    assert loaded == profile

    path.write_text('{"version": "0.1", "profiles": []}', encoding="utf-8")
    with pytest.raises(ValueError):
        load_profiles(path)
    with pytest.raises(FileNotFoundError):
        load_profiles(tmp_path / "missing.json")


# --- Correcting ---------------------------------------------------------------------

@pytest.fixture
def adjustments():
    return ColorProfile(adjustments={"#806040": ColorDelta(r=20, g=5, b=-10), "#808080": ColorDelta(r=10, g=10, b=10)}).adjustments


def test_correct_color_exact_and_nearest(adjustments):
    assert correct_color("#806040", adjustments) == "#6c5b4a"
    assert correct_color("rgb(128, 96, 64)", adjustments) == "#6c5b4a"
    assert correct_color("gray", adjustments) == "#767676"
    # a close neighbour borrows the adjustment
    assert correct_color("#826242", adjustments) == "#6e5d4c"
    # too far from every profile colour
    assert correct_color("#00ff00", adjustments) == "#00ff00"
    assert correct_color("none", adjustments) == "none"


def test_correct_color_clamps():
    adjustments = ColorProfile(adjustments={"#050505": ColorDelta(r=10, g=-10, b=0)}).adjustments
    assert correct_color("#050505", adjustments) == "#000f05"


def test_apply_color_correction_rewrites_paint(adjustments):
    document = """<svg xmlns="http://www.w3.org/2000/svg" width="20" height="20">
  <defs><linearGradient id="g"><stop offset="0" stop-color="#806040"/></linearGradient></defs>
  <rect width="10" height="10" fill="#806040" stroke="none"/>
  <rect width="10" height="10" fill="url(#g)" style="stroke: #806040; stroke-width: 2"/>
  <filter id="f"><feFlood flood-color="gray"/></filter>
</svg>"""
    root = parse_svg(apply_color_correction(document, ColorProfile(adjustments=adjustments)))
    by_tag = {}
    for el in root.iter():
        if isinstance(el.tag, str):
            by_tag.setdefault(el.tag.split("}")[-1], []).append(el)

    first, second = by_tag["rect"]
    assert first.get("fill") == "#6c5b4a"
    assert first.get("stroke") == "none"
    assert second.get("fill") == "url(#g)"
    assert second.get("style") == "stroke: #6c5b4a; stroke-width: 2"
    assert by_tag["stop"][0].get("stop-color") == "#6c5b4a"
    assert by_tag["feFlood"][0].get("flood-color") == "#767676"


def test_empty_profile_leaves_the_document_alone():
    document = '<svg xmlns="http://www.w3.org/2000/svg"><rect fill="#806040"/></svg>'
    assert apply_color_correction(document, ColorProfile()) == document

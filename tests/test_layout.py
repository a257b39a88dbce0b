"""
Tests for the N-up grid, sheet composition and sheet export.
"""

import asyncio
import re

import numpy as np
import pytest
from PIL import Image

from idcard_studio.config_models import SheetLayoutConfig
from idcard_studio.layout.drawing_utils import clamp_rect, fit_into, hex_to_bgr, paste
from idcard_studio.layout.export_utils import save_sheet
from idcard_studio.layout.grid import compute_grid
from idcard_studio.layout.sheet import PrintSheetGenerator, layout, layout_async, marker_cells, solid_fill_renderer
from idcard_studio.markers.detector import detect

CARD = (85.6, 54.0)


# --- Grid ------------------------------------------------------------------------

def test_calibration_card_grid():
    grid = compute_grid(*CARD, columns=11, rows=7, gap_mm=0.5, margin_mm=5)
    assert grid.cell_mm == pytest.approx(41 / 7)
    assert grid.origin_mm == pytest.approx((8.0857, 5.0), abs=1e-3)
    assert grid.count == 77
    assert grid.corner_indices() == [0, 10, 66, 76]


def test_grid_is_centered_and_fits():
    grid = compute_grid(210, 297, columns=2, rows=5, gap_mm=3, margin_mm=10)
    w, h = grid.extent_mm
    assert w <= 210 - 20 + 1e-9 and h <= 297 - 20 + 1e-9
    assert grid.origin_mm[0] == pytest.approx((210 - w) / 2)
    assert grid.origin_mm[1] == pytest.approx((297 - h) / 2)
    assert grid.cell_center_mm(0) == pytest.approx((grid.origin_mm[0] + grid.cell_mm / 2, grid.origin_mm[1] + grid.cell_mm / 2))


def test_grid_rejects_impossible_layouts():
    with pytest.raises(ValueError):
        compute_grid(20, 20, columns=5, rows=5, gap_mm=1, margin_mm=10)
    with pytest.raises(ValueError):
        compute_grid(20, 20, columns=0, rows=5)
    with pytest.raises(ValueError):
        compute_grid(20, 20, columns=2, rows=2, gap_mm=-1)
    with pytest.raises(IndexError):
        compute_grid(20, 20, columns=2, rows=2).position(4)


def test_pixel_cells_keep_gaps_within_one_pixel():
    grid = compute_grid(*CARD, columns=11, rows=7, gap_mm=0.5, margin_mm=5)
    gaps = set()
    for index in range(grid.columns - 1):
        _, _, x1, _ = grid.cell_rect_px(index, 10)
        nx0, _, _, _ = grid.cell_rect_px(index + 1, 10)
        gaps.add(nx0 - x1)
    assert max(gaps) - min(gaps) <= 1


def test_marker_cells_need_distinct_corners_and_ids():
    grid = compute_grid(*CARD, columns=1, rows=3)
    with pytest.raises(ValueError):
        marker_cells(grid, (0, 1, 2, 3))
    grid = compute_grid(*CARD, columns=3, rows=3)
    with pytest.raises(ValueError):
        marker_cells(grid, (0, 1, 1, 3))
    assert marker_cells(grid, (4, 5, 6, 7)) == {0: 4, 2: 5, 6: 6, 8: 7}


# --- Drawing helpers --------------------------------------------------------------

def test_drawing_helpers():
    assert hex_to_bgr("#ff8000") == (0, 128, 255)
    assert hex_to_bgr("#f00") == (0, 0, 255)
    assert clamp_rect((-5, 2, 15, 22), 100, 100) == (0, 2, 20, 22)
    assert clamp_rect((90, 90, 110, 110), 100, 100) == (80, 80, 100, 100)

    canvas = np.zeros((10, 10, 3), dtype=np.uint8)
    paste(canvas, np.full((4, 4), 200, dtype=np.uint8), (2, 2, 6, 6))
    assert (canvas[2:6, 2:6] == 200).all() and canvas[0, 0].sum() == 0

    fitted = fit_into(np.zeros((10, 20, 3), dtype=np.uint8), 40, 40, (255, 255, 255))
    assert fitted.shape == (40, 40, 3)
    assert (fitted[0, 0] == 255).all() and (fitted[20, 20] == 0).all()


# --- Sheets -----------------------------------------------------------------------

def test_layout_calls_renderer_once_per_card_cell_in_order():
    calls = []
    fill = solid_fill_renderer(["#ff0000", "#00ff00"])

    def renderer(slot):
        calls.append((slot.row, slot.column))
        return fill(slot)

    sheet = layout(CARD, 11, 7, 0.5, 5, renderer, px_per_mm=10)
    assert sheet.shape == (540, 856, 3)
    assert len(calls) == 73
    assert calls == sorted(calls)
    assert (0, 0) not in calls and (6, 10) not in calls

    # first card cell is red, the second green
    grid = compute_grid(*CARD, 11, 7, 0.5, 5)
    x0, y0, x1, y1 = grid.cell_rect_px(1, 10)
    assert tuple(sheet[(y0 + y1) // 2, (x0 + x1) // 2]) == (0, 0, 255)
    x0, y0, x1, y1 = grid.cell_rect_px(2, 10)
    assert tuple(sheet[(y0 + y1) // 2, (x0 + x1) // 2]) == (0, 255, 0)


def test_sheet_markers_are_detected_at_the_corners():
    sheet = layout(CARD, 11, 7, 0.5, 5, solid_fill_renderer(["#ffe08a", "#a8d8ff"]), px_per_mm=20)
    found = {d.identity: d.center for d in detect(sheet)}
    assert set(found) >= {0, 1, 2, 3}
    h, w = sheet.shape[:2]
    assert found[0][0] < w / 2 and found[0][1] < h / 2
    assert found[1][0] > w / 2 and found[1][1] < h / 2
    assert found[2][0] < w / 2 and found[2][1] > h / 2
    assert found[3][0] > w / 2 and found[3][1] > h / 2


def test_layout_without_markers_fills_every_cell():
    calls = []
    layout(CARD, 4, 2, 1, 2, lambda slot: calls.append(slot.index), px_per_mm=5, use_markers=False)
    assert calls == list(range(8))


def test_layout_async_matches_layout():
    fill = solid_fill_renderer(["#336699", "#ffcc00", "#cc3366"])

    async def renderer(slot):
        await asyncio.sleep(0.001 * (slot.card_index % 3))
        return fill(slot)

    expected = layout(CARD, 6, 4, 1, 3, fill, px_per_mm=8)
    result = asyncio.run(layout_async(CARD, 6, 4, 1, 3, renderer, px_per_mm=8))
    np.testing.assert_array_equal(result, expected)


def test_save_sheet_formats(tmp_path):
    sheet = layout(CARD, 4, 3, 1, 2, solid_fill_renderer(["#123456"]), px_per_mm=10)

    png = save_sheet(sheet, tmp_path / "out" / "sheet.png", 10)
    with Image.open(png) as image:
        assert image.size == (856, 540)
        assert image.info["dpi"][0] == pytest.approx(254, abs=0.5)

    pdf = save_sheet(sheet, tmp_path / "sheet.pdf", 10)
    content = pdf.read_bytes()
    assert content.startswith(b"%PDF")
    box = re.search(rb"/MediaBox\s*\[\s*0 0 ([\d.]+) ([\d.]+)", content)
    # 85.6 x 54 mm in points
    assert float(box.group(1)) == pytest.approx(242.646, abs=0.01)
    assert float(box.group(2)) == pytest.approx(153.071, abs=0.01)

    with pytest.raises(ValueError):
        save_sheet(sheet, tmp_path / "sheet.gif", 10)


def test_print_sheet_generator(tmp_path):
    gen = PrintSheetGenerator(SheetLayoutConfig(sheet_width_mm=85.6, sheet_height_mm=54.0, columns=5, rows=3, colors=["#ff0000"]))
    with pytest.raises(RuntimeError):
        gen.save(tmp_path / "early.png")
    canvas = gen.build()
    assert canvas.shape[:2] == (540, 856)
    assert gen.save(tmp_path / "sheet.png").exists()

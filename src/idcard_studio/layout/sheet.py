"""
sheet.py

Composes print sheets: an N-up grid of cards with registration markers in
the four corner cells.

Compositing order is background, then cards left-to-right and top-to-bottom,
then markers. Markers are drawn last so nothing covers them, and are shifted
back inside the sheet if rounding pushes them over an edge.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from ..config import DEFAULT_BG, DEFAULT_MARKER_DICT, DEFAULT_MARKER_IDS, DEFAULT_PX_PER_MM
from ..config_models import SheetLayoutConfig
from ..fields.svg_utils import parse_svg
from ..fields.template_parser import declared_size
from ..markers.aruco_utils import render_marker_bgr
from ..rendering.rasterize import rasterize_svg
from .drawing_utils import blank_canvas, clamp_rect, fit_into, paste, to_bgr
from .export_utils import save_sheet
from .grid import LayoutGrid, compute_grid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CardSlot:
    """
    One non-marker cell handed to a card renderer.

    Attributes:
        index (int): Row-major cell index in the grid.
        card_index (int): Position among the card cells only (markers skipped).
        rect_px (Tuple[int, int, int, int]): (x0, y0, x1, y1) on the sheet, end exclusive.
    """
    index: int
    card_index: int
    row: int
    column: int
    rect_px: Tuple[int, int, int, int]

    @property
    def size_px(self) -> Tuple[int, int]:
        x0, y0, x1, y1 = self.rect_px
        return x1 - x0, y1 - y0


CardRenderer = Callable[[CardSlot], Optional[np.ndarray]]
AsyncCardRenderer = Callable[[CardSlot], Awaitable[Optional[np.ndarray]]]


def sheet_size_px(sheet_size_mm: Tuple[float, float], px_per_mm: float) -> Tuple[int, int]:
    return int(round(sheet_size_mm[0] * px_per_mm)), int(round(sheet_size_mm[1] * px_per_mm))


def marker_cells(grid: LayoutGrid, marker_ids: Sequence[int]) -> Dict[int, int]:
    """
    Map corner cell index -> marker identity.

    Raises:
        ValueError: If the grid has no four distinct corners or ids repeat.
    """
    corners = grid.corner_indices()
    if len(set(corners)) != 4:
        raise ValueError("Corner markers need a grid of at least 2x2 cells.")
    if len(marker_ids) != 4 or len(set(marker_ids)) != 4:
        raise ValueError(f"Expected four distinct marker ids, got {list(marker_ids)}.")
    return dict(zip(corners, marker_ids))


def card_slots(grid: LayoutGrid, px_per_mm: float, skip: Sequence[int] = ()) -> List[CardSlot]:
    slots = []
    for index in grid.cells():
        if index in skip:
            continue
        row, col = grid.position(index)
        slots.append(CardSlot(index, len(slots), row, col, grid.cell_rect_px(index, px_per_mm)))
    return slots


def marker_rects_px(grid: LayoutGrid, markers: Dict[int, int], px_per_mm: float, width_px: int, height_px: int) -> Dict[int, Tuple[int, int, int, int]]:
    """
    Printed square of each marker, keyed by identity.

    A marker takes the larger side of its rounded cell and is shifted inside
    the sheet when that pushes it past an edge.
    """
    rects = {}
    for index, identity in markers.items():
        x0, y0, x1, y1 = grid.cell_rect_px(index, px_per_mm)
        side = max(x1 - x0, y1 - y0)
        rects[identity] = clamp_rect((x0, y0, x0 + side, y0 + side), width_px, height_px)
    return rects


def _draw_markers(canvas: np.ndarray, grid: LayoutGrid, markers: Dict[int, int], px_per_mm: float, dict_name: str):
    H, W = canvas.shape[:2]
    for identity, rect in marker_rects_px(grid, markers, px_per_mm, W, H).items():
        patch = render_marker_bgr(identity, rect[2] - rect[0], dict_name)
        paste(canvas, patch, rect, interpolation=cv2.INTER_NEAREST)
        logger.debug("Marker %d -> %s", identity, rect)


def _composite(canvas: np.ndarray, slots: Sequence[CardSlot], patches: Sequence[Optional[np.ndarray]]):
    for slot, patch in zip(slots, patches):
        if patch is None:
            continue
        paste(canvas, patch, slot.rect_px)


def _prepare(sheet_size_mm, columns, rows, gap_mm, margin_mm, px_per_mm, marker_ids, use_markers, background):
    grid = compute_grid(sheet_size_mm[0], sheet_size_mm[1], columns, rows, gap_mm, margin_mm)
    markers = marker_cells(grid, marker_ids) if use_markers else {}
    slots = card_slots(grid, px_per_mm, skip=list(markers))
    width_px, height_px = sheet_size_px(sheet_size_mm, px_per_mm)
    canvas = blank_canvas(width_px, height_px, background)
    logger.info(
        "Sheet %.2fx%.2f mm at %.2f px/mm: %dx%d grid, cell %.3f mm, origin (%.3f, %.3f) mm",
        sheet_size_mm[0], sheet_size_mm[1], px_per_mm, columns, rows, grid.cell_mm, *grid.origin_mm,
    )
    return grid, markers, slots, canvas


def layout(
    sheet_size_mm: Tuple[float, float],
    columns: int,
    rows: int,
    gap_mm: float,
    margin_mm: float,
    card_renderer: CardRenderer,
    px_per_mm: float = DEFAULT_PX_PER_MM,
    marker_ids: Sequence[int] = DEFAULT_MARKER_IDS,
    use_markers: bool = True,
    background=DEFAULT_BG,
    dict_name: str = DEFAULT_MARKER_DICT,
) -> np.ndarray:
    """
    Render a sheet as a BGR image.

    `card_renderer` is called once per non-marker cell, in row-major order,
    and returns a BGR patch (resized to the cell) or None to leave it empty.

    Raises:
        ValueError: If the grid does not fit or the marker cells are not distinct.
    """
    grid, markers, slots, canvas = _prepare(
        sheet_size_mm, columns, rows, gap_mm, margin_mm, px_per_mm, marker_ids, use_markers, background
    )
    _composite(canvas, slots, [card_renderer(slot) for slot in slots])
    _draw_markers(canvas, grid, markers, px_per_mm, dict_name)
    return canvas


async def layout_async(
    sheet_size_mm: Tuple[float, float],
    columns: int,
    rows: int,
    gap_mm: float,
    margin_mm: float,
    card_renderer: AsyncCardRenderer,
    px_per_mm: float = DEFAULT_PX_PER_MM,
    marker_ids: Sequence[int] = DEFAULT_MARKER_IDS,
    use_markers: bool = True,
    background=DEFAULT_BG,
    dict_name: str = DEFAULT_MARKER_DICT,
) -> np.ndarray:
    """Like `layout`, awaiting all cards concurrently before compositing in order."""
    grid, markers, slots, canvas = _prepare(
        sheet_size_mm, columns, rows, gap_mm, margin_mm, px_per_mm, marker_ids, use_markers, background
    )
    patches = await asyncio.gather(*(card_renderer(slot) for slot in slots))
    _composite(canvas, slots, patches)
    _draw_markers(canvas, grid, markers, px_per_mm, dict_name)
    return canvas


# --------------------- Card renderers ---------------------

def solid_fill_renderer(colors: Sequence[Union[str, Sequence[int]]]) -> CardRenderer:
    """
    Swatch cards for a calibration sheet: card k is filled with colors[k % len(colors)].
    """
    palette = [to_bgr(c) for c in colors]
    if not palette:
        raise ValueError("At least one colour is required.")

    def render(slot: CardSlot) -> np.ndarray:
        w, h = slot.size_px
        return blank_canvas(w, h, palette[slot.card_index % len(palette)])

    return render


def svg_card_renderer(documents: Union[str, Sequence[str]], background=DEFAULT_BG) -> CardRenderer:
    """
    Cards from rendered SVG documents, fitted into each cell keeping their aspect.

    A single document fills every card cell. With a sequence, card k shows
    documents[k] and cells past the end stay empty.
    """
    repeat = isinstance(documents, str)
    docs = [documents] if repeat else list(documents)
    cache: Dict[Tuple[int, Tuple[int, int]], np.ndarray] = {}

    def render(slot: CardSlot) -> Optional[np.ndarray]:
        k = 0 if repeat else slot.card_index
        if k >= len(docs):
            return None
        key = (k, slot.size_px)
        if key not in cache:
            cache[key] = _fit_card(docs[k], *slot.size_px, background)
        return cache[key]

    return render


def _fit_card(document: str, width_px: int, height_px: int, background) -> np.ndarray:
    card_w, card_h, _ = declared_size(parse_svg(document))
    scale = min(width_px / card_w, height_px / card_h)
    nw, nh = max(1, int(round(card_w * scale))), max(1, int(round(card_h * scale)))
    raster = rasterize_svg(document, nw, nh, background="white")
    return fit_into(raster, width_px, height_px, background)


class PrintSheetGenerator:
    """
    High level sheet builder driven by a SheetLayoutConfig.

    Example:
        gen = PrintSheetGenerator(SheetLayoutConfig(colors=["#ff0000", "#00ff00"]))
        gen.build()
        gen.save("sheet.pdf")
    """

    def __init__(self, config: Optional[SheetLayoutConfig] = None, card_renderer: Optional[CardRenderer] = None, dict_name: str = DEFAULT_MARKER_DICT):
        self.config = config or SheetLayoutConfig()
        if card_renderer is None and self.config.colors:
            card_renderer = solid_fill_renderer(self.config.colors)
        self.card_renderer = card_renderer or (lambda slot: None)
        self.dict_name = dict_name

        # Will be produced by build()
        self.canvas = None
        self.grid = compute_grid(
            self.config.sheet_width_mm, self.config.sheet_height_mm,
            self.config.columns, self.config.rows, self.config.gap_mm, self.config.margin_mm,
        )

    @property
    def sheet_size_mm(self) -> Tuple[float, float]:
        return self.config.sheet_width_mm, self.config.sheet_height_mm

    def build(self) -> np.ndarray:
        cfg = self.config
        self.canvas = layout(
            self.sheet_size_mm, cfg.columns, cfg.rows, cfg.gap_mm, cfg.margin_mm, self.card_renderer,
            px_per_mm=cfg.px_per_mm, marker_ids=cfg.marker_ids, use_markers=cfg.use_markers,
            background=cfg.background, dict_name=self.dict_name,
        )
        return self.canvas

    def save(self, filename: str):
        """
        Save the generated sheet to PNG/JPG/PDF via export_utils.save_sheet.
        """
        if self.canvas is None:
            raise RuntimeError("Sheet not built yet. Call build() first.")
        return save_sheet(self.canvas, filename, self.config.px_per_mm)

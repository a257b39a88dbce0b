"""
grid.py

N-up grid geometry for a print sheet. All values are kept as floats in
millimetres; rounding to pixels only happens per cell edge, so rounding error
never accumulates across a row.
"""

from dataclasses import dataclass
from typing import Iterator, List, Tuple

Rect = Tuple[float, float, float, float]


@dataclass(frozen=True)
class LayoutGrid:
    """
    Derived placement of `columns` x `rows` square cells centered on a sheet.

    Attributes:
        cell_mm (float): Side of one square cell.
        origin_mm (Tuple[float, float]): Top-left corner of the first cell.
    """
    columns: int
    rows: int
    cell_mm: float
    gap_mm: float
    margin_mm: float
    origin_mm: Tuple[float, float]
    sheet_mm: Tuple[float, float]

    @property
    def count(self) -> int:
        return self.columns * self.rows

    @property
    def extent_mm(self) -> Tuple[float, float]:
        """Width and height covered by the cells and the gaps between them."""
        return (
            self.columns * self.cell_mm + (self.columns - 1) * self.gap_mm,
            self.rows * self.cell_mm + (self.rows - 1) * self.gap_mm,
        )

    @property
    def pitch_mm(self) -> float:
        return self.cell_mm + self.gap_mm

    def position(self, index: int) -> Tuple[int, int]:
        """(row, column) of a row-major cell index."""
        if not 0 <= index < self.count:
            raise IndexError(f"Cell {index} is outside a {self.columns}x{self.rows} grid.")
        return divmod(index, self.columns)

    def cell_rect_mm(self, index: int) -> Rect:
        """(x, y, width, height) of a cell in millimetres."""
        row, col = self.position(index)
        x = self.origin_mm[0] + col * self.pitch_mm
        y = self.origin_mm[1] + row * self.pitch_mm
        return x, y, self.cell_mm, self.cell_mm

    def cell_center_mm(self, index: int) -> Tuple[float, float]:
        x, y, w, h = self.cell_rect_mm(index)
        return x + w / 2, y + h / 2

    def cell_rect_px(self, index: int, px_per_mm: float) -> Tuple[int, int, int, int]:
        """
        Pixel rectangle (x0, y0, x1, y1), end exclusive.

        Both edges are rounded from their exact float position, so neighbouring
        cells keep the gap width within one pixel everywhere on the sheet.
        """
        x, y, w, h = self.cell_rect_mm(index)
        x0, y0 = round(x * px_per_mm), round(y * px_per_mm)
        x1, y1 = round((x + w) * px_per_mm), round((y + h) * px_per_mm)
        return x0, y0, max(x1, x0 + 1), max(y1, y0 + 1)

    def corner_indices(self) -> List[int]:
        """Indices of the top-left, top-right, bottom-left and bottom-right cells."""
        c, r = self.columns, self.rows
        return [0, c - 1, (r - 1) * c, r * c - 1]

    def cells(self) -> Iterator[int]:
        return iter(range(self.count))


def compute_grid(
    sheet_width_mm: float,
    sheet_height_mm: float,
    columns: int,
    rows: int,
    gap_mm: float = 0.0,
    margin_mm: float = 0.0,
) -> LayoutGrid:
    """
    Fit `columns` x `rows` square cells on the sheet.

    The cell side is the smaller of the width-limited and height-limited
    sizes, and the resulting block is centered on the sheet.

    Raises:
        ValueError: If the counts are not positive or nothing fits inside the margins.
    """
    if columns < 1 or rows < 1:
        raise ValueError("A layout grid needs at least one column and one row.")
    if gap_mm < 0 or margin_mm < 0:
        raise ValueError("Gap and margin cannot be negative.")

    by_width = (sheet_width_mm - 2 * margin_mm - gap_mm * (columns - 1)) / columns
    by_height = (sheet_height_mm - 2 * margin_mm - gap_mm * (rows - 1)) / rows
    cell = min(by_width, by_height)
    if cell <= 0:
        raise ValueError(
            f"A {columns}x{rows} grid with {gap_mm} mm gaps does not fit on "
            f"{sheet_width_mm}x{sheet_height_mm} mm with {margin_mm} mm margins."
        )

    grid_w = columns * cell + (columns - 1) * gap_mm
    grid_h = rows * cell + (rows - 1) * gap_mm
    origin = ((sheet_width_mm - grid_w) / 2, (sheet_height_mm - grid_h) / 2)
    return LayoutGrid(
        columns=columns,
        rows=rows,
        cell_mm=cell,
        gap_mm=gap_mm,
        margin_mm=margin_mm,
        origin_mm=origin,
        sheet_mm=(sheet_width_mm, sheet_height_mm),
    )

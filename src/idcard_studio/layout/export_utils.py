"""
export_utils.py

Functions to save a composed sheet to PNG/JPG or PDF with its physical size.
Uses ReportLab for PDF export so the printed sheet matches the layout in mm.
"""

import logging
from io import BytesIO
from pathlib import Path
from typing import Union

import cv2
import numpy as np
from PIL import Image
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas as pdfcanvas

from ..unit_utils import mm_to_points, px_to_mm

logger = logging.getLogger(__name__)

RASTER_EXTENSIONS = ('png', 'jpg', 'jpeg', 'tif', 'tiff', 'bmp')


def save_sheet(image: np.ndarray, path: Union[str, Path], px_per_mm: float) -> Path:
    """
    Save a BGR sheet. The file extension decides the format.

    Raster formats carry the sheet resolution as DPI metadata; PDF pages are
    exactly the physical sheet size.

    Raises:
        ValueError: For an unsupported extension.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ext = path.suffix.lstrip('.').lower()
    if ext == 'pdf':
        save_pdf(image, path, px_per_mm)
    elif ext in RASTER_EXTENSIONS:
        save_raster(image, path, px_per_mm)
    else:
        raise ValueError(f"Unsupported export format: .{ext}")
    logger.info("Saved sheet %dx%d px to %s", image.shape[1], image.shape[0], path)
    return path


def _to_pil(image: np.ndarray) -> Image.Image:
    if image.ndim == 2:
        return Image.fromarray(image)
    # convert BGR (OpenCV) to RGB for Pillow/ReportLab
    return Image.fromarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))


def save_raster(image: np.ndarray, path: Path, px_per_mm: float):
    dpi = px_per_mm * 25.4
    _to_pil(image).save(path, dpi=(dpi, dpi))


def save_pdf(image: np.ndarray, path: Path, px_per_mm: float):
    """
    Single-page PDF whose page is width_px / px_per_mm by height_px / px_per_mm mm.
    """
    img_buffer = BytesIO()
    _to_pil(image).save(img_buffer, format='PNG')
    img_buffer.seek(0)

    page_width_pt = mm_to_points(px_to_mm(image.shape[1], px_per_mm))
    page_height_pt = mm_to_points(px_to_mm(image.shape[0], px_per_mm))

    c = pdfcanvas.Canvas(str(path), pagesize=(page_width_pt, page_height_pt))
    # place image at (0,0) with full page size
    c.drawImage(ImageReader(img_buffer), 0, 0, width=page_width_pt, height=page_height_pt)
    c.showPage()
    c.save()

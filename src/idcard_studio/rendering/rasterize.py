"""
rasterize.py

SVG to raster conversion with cairosvg. cairosvg (and the cairo library it
binds) is imported on first use so that modules which never rasterize stay
importable on machines without cairo.
"""

import asyncio
import functools
import io
import logging
from typing import Optional

import cv2
import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


def rasterize_svg(document: str, width_px: int, height_px: int, background: Optional[str] = "white") -> np.ndarray:
    """
    Render an SVG document to a BGR image of exactly width_px x height_px.
    """
    import cairosvg

    png = cairosvg.svg2png(
        bytestring=document.encode("utf-8"),
        output_width=int(width_px),
        output_height=int(height_px),
        background_color=background,
    )
    with Image.open(io.BytesIO(png)) as image:
        rgb = np.array(image.convert("RGB"))
    if rgb.shape[:2] != (int(height_px), int(width_px)):
        rgb = cv2.resize(rgb, (int(width_px), int(height_px)), interpolation=cv2.INTER_AREA)
    logger.debug("Rasterized SVG to %dx%d", width_px, height_px)
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)


async def rasterize_svg_async(document: str, width_px: int, height_px: int, background: Optional[str] = "white", executor=None) -> np.ndarray:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, functools.partial(rasterize_svg, document, width_px, height_px, background))

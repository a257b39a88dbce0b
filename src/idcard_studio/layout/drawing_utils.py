"""
drawing_utils.py

Low level raster helpers for composing sheets with OpenCV + numpy.
"""

from typing import Sequence, Tuple, Union

import cv2
import numpy as np

Color = Union[str, Sequence[int]]


def hex_to_bgr(hex_color: str) -> Tuple[int, int, int]:
    """
    Convert "#RRGGBB" (or "#RGB") to a BGR tuple.
    """
    h = hex_color.strip().lstrip('#')
    if len(h) == 3:
        h = "".join(ch * 2 for ch in h)
    if len(h) != 6:
        raise ValueError(f"Not a hex colour: {hex_color!r}")
    r = int(h[0:2], 16); g = int(h[2:4], 16); b = int(h[4:6], 16)
    return (b, g, r)


def to_bgr(color: Color) -> Tuple[int, int, int]:
    """Accept a hex string or a BGR triple."""
    if isinstance(color, str):
        return hex_to_bgr(color)
    b, g, r = (int(c) for c in color)
    return (b, g, r)


def blank_canvas(width_px: int, height_px: int, background: Color = (255, 255, 255)) -> np.ndarray:
    canvas = np.empty((height_px, width_px, 3), dtype=np.uint8)
    canvas[:] = to_bgr(background)
    return canvas


def clamp_rect(rect: Tuple[int, int, int, int], width_px: int, height_px: int) -> Tuple[int, int, int, int]:
    """
    Shift a rectangle so it lies fully inside the canvas, keeping its size.

    A rectangle larger than the canvas is anchored at the top-left corner.
    """
    x0, y0, x1, y1 = rect
    w, h = x1 - x0, y1 - y0
    x0 = min(max(0, x0), max(0, width_px - w))
    y0 = min(max(0, y0), max(0, height_px - h))
    return x0, y0, x0 + w, y0 + h


def paste(canvas: np.ndarray, patch: np.ndarray, rect: Tuple[int, int, int, int], interpolation: int = cv2.INTER_AREA) -> np.ndarray:
    """
    Draw `patch` into `rect`, resizing it to the exact rectangle size first.
    Parts falling outside the canvas are dropped.
    """
    x0, y0, x1, y1 = rect
    w, h = x1 - x0, y1 - y0
    if w <= 0 or h <= 0:
        return canvas
    if patch.ndim == 2:
        patch = cv2.cvtColor(patch, cv2.COLOR_GRAY2BGR)
    elif patch.shape[2] == 4:
        patch = cv2.cvtColor(patch, cv2.COLOR_BGRA2BGR)
    if patch.shape[:2] != (h, w):
        patch = cv2.resize(patch, (w, h), interpolation=interpolation)

    H, W = canvas.shape[:2]
    cx0, cy0 = max(0, x0), max(0, y0)
    cx1, cy1 = min(W, x1), min(H, y1)
    if cx0 >= cx1 or cy0 >= cy1:
        return canvas
    canvas[cy0:cy1, cx0:cx1] = patch[cy0 - y0:cy1 - y0, cx0 - x0:cx1 - x0]
    return canvas


def fit_into(patch: np.ndarray, width_px: int, height_px: int, background: Color = (255, 255, 255)) -> np.ndarray:
    """Scale `patch` to fit inside width x height keeping its aspect ratio, centered."""
    out = blank_canvas(width_px, height_px, background)
    ph, pw = patch.shape[:2]
    if ph == 0 or pw == 0:
        return out
    scale = min(width_px / pw, height_px / ph)
    nw, nh = max(1, int(round(pw * scale))), max(1, int(round(ph * scale)))
    ox, oy = (width_px - nw) // 2, (height_px - nh) // 2
    return paste(out, patch, (ox, oy, ox + nw, oy + nh))

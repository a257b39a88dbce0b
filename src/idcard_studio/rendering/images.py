"""
images.py

Loading image sources referenced by card data, fitting them to a field box
with Pillow and encoding rasters as PNG data URIs for embedding in SVG.
"""

import base64
import io
import logging
import re
from pathlib import Path
from typing import Tuple
from urllib.parse import unquote, urlparse

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)


def png_data_uri(image: Image.Image) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return f"data:image/png;base64,{base64.b64encode(buffer.getvalue()).decode('ascii')}"


def is_data_uri(src: str) -> bool:
    return src.startswith("data:")


def load_image_source(src: str) -> Image.Image:
    """
    Open a data URI, file:// URL or local path as a Pillow image.

    Raises:
        ValueError: For malformed data URIs or unsupported URL schemes.
        FileNotFoundError: If a local file does not exist.
    """
    if is_data_uri(src):
        m = _DATA_URI_RE.match(src)
        if not m:
            raise ValueError("Malformed data URI.")
        payload = m.group("data")
        raw = base64.b64decode(payload) if m.group("b64") else unquote(payload).encode("latin-1")
        return Image.open(io.BytesIO(raw))

    parsed = urlparse(src)
    if parsed.scheme == "file":
        path = Path(unquote(parsed.path))
    elif len(parsed.scheme) <= 1:  # plain path, possibly with a drive letter
        path = Path(src)
    else:
        raise ValueError(f"Cannot load images over '{parsed.scheme}'.")
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    return Image.open(path)


def target_size(box: Tuple[float, float], long_edge_px: int) -> Tuple[int, int]:
    """Pixel size with the box's aspect ratio and the given long edge."""
    w, h = box
    if w <= 0 or h <= 0:
        raise ValueError("Box must have a positive size.")
    if w >= h:
        return long_edge_px, max(1, round(long_edge_px * h / w))
    return max(1, round(long_edge_px * w / h)), long_edge_px


def fit_image(image: Image.Image, size: Tuple[int, int], fit_mode: str) -> Image.Image:
    """
    Map an image onto a `size` canvas.

    cover: fill the canvas, cropping overflow, keeping aspect.
    contain: fit inside, keeping aspect, transparent letterbox.
    fill: stretch to the canvas.
    """
    image = ImageOps.exif_transpose(image).convert("RGBA")
    if fit_mode == "cover":
        return ImageOps.fit(image, size, method=Image.LANCZOS)
    if fit_mode == "contain":
        return ImageOps.pad(image, size, method=Image.LANCZOS, color=(0, 0, 0, 0))
    return image.resize(size, Image.LANCZOS)


def embed_image(src: str, box: Tuple[float, float], fit_mode: str, long_edge_px: int) -> str:
    """Load `src`, fit it to the box aspect and return it as a PNG data URI."""
    with load_image_source(src) as image:
        fitted = fit_image(image, target_size(box, long_edge_px), fit_mode)
    logger.debug("Embedded image %s at %s (%s)", src[:40], fitted.size, fit_mode)
    return png_data_uri(fitted)

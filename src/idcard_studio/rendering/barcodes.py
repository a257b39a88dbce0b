"""
barcodes.py

Barcode payload validation and symbol rasters for barcode fields.

Linear symbols (Code 128, Code 39, EAN-13) are drawn with python-barcode's
ImageWriter, QR codes with qrcode. Each symbol type has one sizing policy:
linear symbols stretch to fill the field box, QR codes stay square and are
centered inside it.

An invalid payload never raises out of `render_barcode`; it produces a
visibly marked placeholder raster instead.
"""

import logging
import re
from dataclasses import dataclass
from typing import Tuple

import barcode
import qrcode
from barcode.writer import ImageWriter
from PIL import Image, ImageDraw, ImageFont

from ..config import DEFAULT_FONT
from ..errors import InvalidPayload
from .images import png_data_uri

logger = logging.getLogger(__name__)

_CODE39_RE = re.compile(r"^[0-9A-Z \-.$/+%]+$")


@dataclass(frozen=True)
class SizingPolicy:
    """How a symbol raster is placed in its field box."""
    preserve_aspect_ratio: str
    quiet_zone: float


SIZING = {
    "code128": SizingPolicy(preserve_aspect_ratio="none", quiet_zone=2.0),
    "code39": SizingPolicy(preserve_aspect_ratio="none", quiet_zone=2.0),
    "ean13": SizingPolicy(preserve_aspect_ratio="none", quiet_zone=2.0),
    "qr": SizingPolicy(preserve_aspect_ratio="xMidYMid meet", quiet_zone=1.0),
}


@dataclass(frozen=True)
class BarcodeRender:
    data_uri: str
    preserve_aspect_ratio: str
    valid: bool
    reason: str = ""


def normalize_type(barcode_type: str) -> str:
    name = (barcode_type or "").strip().lower().replace("-", "")
    return "qr" if name == "qrcode" else name


def ean13_checksum(digits: str) -> int:
    """Check digit for the first 12 digits of an EAN-13."""
    total = sum(int(d) for d in digits[::2]) + 3 * sum(int(d) for d in digits[1::2])
    return (10 - total % 10) % 10


def validate_payload(barcode_type: str, text: str) -> str:
    """
    Return the payload to encode, normalized for its symbol type.

    Raises:
        InvalidPayload: If the text cannot be encoded as `barcode_type`.
    """
    kind = normalize_type(barcode_type)
    if kind not in SIZING:
        raise InvalidPayload(barcode_type, "unsupported symbol type")
    text = (text or "").strip()
    if not text:
        raise InvalidPayload(kind, "payload is empty")

    if kind == "ean13":
        if not re.fullmatch(r"\d{12,13}", text):
            raise InvalidPayload(kind, "EAN-13 requires 12 or 13 digits")
        if len(text) == 13 and ean13_checksum(text[:12]) != int(text[12]):
            raise InvalidPayload(kind, "EAN-13 check digit does not match")
        return text[:12]
    if kind == "code39":
        text = text.upper()
        if not _CODE39_RE.match(text):
            raise InvalidPayload(kind, "Code 39 supports 0-9, A-Z, space and - . $ / + %")
        return text
    if kind == "code128":
        if any(not 32 <= ord(ch) <= 126 for ch in text):
            raise InvalidPayload(kind, "Code 128 supports printable ASCII only")
        return text
    return text


def symbol_image(barcode_type: str, text: str, dpi: int = 300) -> Image.Image:
    """
    Draw the symbol for a valid payload.

    Raises:
        InvalidPayload: If the payload fails validation.
    """
    kind = normalize_type(barcode_type)
    payload = validate_payload(kind, text)
    policy = SIZING[kind]
    if kind == "qr":
        qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=10, border=int(policy.quiet_zone))
        qr.add_data(payload)
        qr.make(fit=True)
        return qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")

    options = {
        "write_text": False,
        "quiet_zone": policy.quiet_zone,
        "module_height": 10.0,
        "module_width": 0.2,
        "dpi": dpi,
    }
    symbol = barcode.get_barcode_class(kind)(payload, writer=ImageWriter())
    return symbol.render(writer_options=options).convert("RGB")


def _load_font(size: int):
    try:
        return ImageFont.truetype(DEFAULT_FONT, size)
    except OSError:
        return ImageFont.load_default()


def placeholder_image(barcode_type: str, size: Tuple[int, int], reason: str = "") -> Image.Image:
    """White tile with a gray border, the symbol type, "INVALID" and a red cross."""
    w, h = max(int(size[0]), 24), max(int(size[1]), 24)
    image = Image.new("RGB", (w, h), "white")
    draw = ImageDraw.Draw(image)
    draw.rectangle([1, 1, w - 2, h - 2], outline=(204, 204, 204), width=2)
    draw.line([(0, 0), (w - 1, h - 1)], fill=(220, 38, 38), width=2)
    draw.line([(0, h - 1), (w - 1, 0)], fill=(220, 38, 38), width=2)
    font = _load_font(max(10, h // 6))
    label = f"{normalize_type(barcode_type).upper() or 'BARCODE'}\nINVALID"
    left, top, right, bottom = draw.multiline_textbbox((0, 0), label, font=font, align="center")
    origin = ((w - (right - left)) / 2 - left, (h - (bottom - top)) / 2 - top)
    draw.multiline_text(origin, label, fill=(153, 153, 153), font=font, align="center")
    return image


def render_barcode(barcode_type: str, text: str, box_px: Tuple[int, int], dpi: int = 300) -> BarcodeRender:
    """Symbol (or invalid-payload placeholder) for a field box, as a PNG data URI."""
    kind = normalize_type(barcode_type)
    policy = SIZING.get(kind, SIZING["code128"])
    try:
        image = symbol_image(kind, text, dpi=dpi)
    except InvalidPayload as e:
        logger.info("Invalid %s payload %r: %s", kind, text, e.reason)
        placeholder = placeholder_image(kind, box_px, e.reason)
        return BarcodeRender(png_data_uri(placeholder), "none", valid=False, reason=e.reason)
    return BarcodeRender(png_data_uri(image), policy.preserve_aspect_ratio, valid=True)

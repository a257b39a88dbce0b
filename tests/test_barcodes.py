import base64
import io

import pytest
from PIL import Image

from idcard_studio.errors import InvalidPayload
from idcard_studio.rendering.barcodes import (
    SIZING,
    ean13_checksum,
    placeholder_image,
    render_barcode,
    symbol_image,
    validate_payload,
)
from idcard_studio.rendering.images import fit_image, load_image_source, png_data_uri, target_size


def test_ean13_checksum():
    assert ean13_checksum("590123412345") == 7
    assert ean13_checksum("400638133393") == 1


@pytest.mark.parametrize(
    "kind, text, expected",
    [
        ("ean13", "590123412345", "590123412345"),
        ("ean13", "5901234123457", "590123412345"),
        ("code39", "abc-12", "ABC-12"),
        ("code128", "Member #42", "Member #42"),
        ("qr-code", "https://example.org/m/42", "https://example.org/m/42"),
    ],
)
def test_validate_payload_accepts(kind, text, expected):
    assert validate_payload(kind, text) == expected


@pytest.mark.parametrize(
    "kind, text",
    [
        ("ean13", "12345"),
        ("ean13", "5901234123450"),
        ("ean13", "59012341234a"),
        ("code39", "a_b"),
        ("code128", "café"),
        ("qr", "   "),
        ("pdf417", "x"),
    ],
)
def test_validate_payload_rejects(kind, text):
    with pytest.raises(InvalidPayload):
        validate_payload(kind, text)


def test_sizing_policy_per_symbol_type():
    assert SIZING["qr"].preserve_aspect_ratio == "xMidYMid meet"
    assert {SIZING[k].preserve_aspect_ratio for k in ("code128", "code39", "ean13")} == {"none"}


def test_symbol_images():
    qr = symbol_image("qr", "HELLO")
    assert qr.mode == "RGB" and qr.width == qr.height
    linear = symbol_image("code128", "ID-0042")
    assert linear.width > linear.height


def test_render_barcode_reports_invalid_payloads():
    result = render_barcode("ean13", "not digits", (300, 90))
    assert not result.valid and result.reason
    assert result.preserve_aspect_ratio == "none"
    raw = base64.b64decode(result.data_uri.split(",", 1)[1])
    with Image.open(io.BytesIO(raw)) as image:
        assert image.size == (300, 90)

    ok = render_barcode("qr", "HELLO", (100, 100))
    assert ok.valid and ok.preserve_aspect_ratio == "xMidYMid meet"


def test_placeholder_has_a_minimum_size():
    assert placeholder_image("code39", (5, 5)).size == (24, 24)


# --- Image sources ---------------------------------------------------------------

def test_load_image_from_path_and_data_uri(photo_file):
    with load_image_source(str(photo_file)) as image:
        assert image.size == (60, 80)
    with load_image_source(photo_file.as_uri()) as image:
        assert image.size == (60, 80)
    uri = png_data_uri(Image.new("RGB", (4, 3)))
    with load_image_source(uri) as image:
        assert image.size == (4, 3)


def test_load_image_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_image_source(str(tmp_path / "nope.png"))
    with pytest.raises(ValueError):
        load_image_source("https://example.org/face.png")
    with pytest.raises(ValueError):
        load_image_source("data:image/png;base64")


def test_fit_modes_produce_the_target_size():
    image = Image.new("RGB", (60, 80), "red")
    size = target_size((200, 100), 100)
    assert size == (100, 50)
    for mode in ("cover", "contain", "fill"):
        assert fit_image(image, size, mode).size == (100, 50)
    # contain letterboxes with transparency
    assert fit_image(image, size, "contain").getpixel((0, 25))[3] == 0
    with pytest.raises(ValueError):
        target_size((0, 10), 100)

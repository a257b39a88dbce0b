"""
Tests for data binding: text substitution, image placement, barcode fields
and the never-raise guarantees of the renderer.
"""

import asyncio

import pytest

from idcard_studio.config_models import RenderConfig
from idcard_studio.fields.models import FieldDefinition, ImageValue, Template
from idcard_studio.fields.svg_utils import parse_svg, read_numeric
from idcard_studio.fields.template_parser import parse_template
from idcard_studio.rendering.engine import (
    INVALID_PAYLOAD_ATTR,
    PreviewRenderer,
    render,
    render_async,
)
from idcard_studio.rendering.fonts import FontResolver


@pytest.fixture
def imported(card_svg):
    return parse_template(card_svg, name="card.svg")


def _by_field(document, field_id):
    root = parse_svg(document)
    return next(el for el in root.iter() if isinstance(el.tag, str) and el.get("data-field-id") == field_id)


def _images(element):
    return [el for el in element.iter() if isinstance(el.tag, str) and el.tag.endswith("image")]


def test_text_and_photo_are_substituted(imported, photo_file):
    data = {
        "name": "Ada Lovelace",
        "photo": ImageValue(src=str(photo_file), offset_x=0.1, offset_y=-0.05, scale=1.5),
    }
    document = render(imported.template, imported.fields, data)

    name = _by_field(document, "name")
    assert "".join(name.itertext()) == "Ada Lovelace"
    assert name.get("font-size") == "18"

    (image,) = _images(_by_field(document, "photo"))
    # box 10,20 80x100 scaled by 1.5 around its centre moved by (0.1 * 80, -0.05 * 100)
    assert read_numeric(image.get("width")) == pytest.approx(120)
    assert read_numeric(image.get("height")) == pytest.approx(150)
    assert read_numeric(image.get("x")) == pytest.approx(-2)
    assert read_numeric(image.get("y")) == pytest.approx(-10)
    assert image.get("preserveAspectRatio") == "xMidYMid slice"
    assert image.get("href") == str(photo_file)


NESTED_SVG = """<svg xmlns="http://www.w3.org/2000/svg" width="100" height="100" viewBox="0 0 100 100">
  <g data-field-id="photo" data-field-type="image">
    <rect x="10" y="10" width="40" height="50"/>
    <text data-field-id="name" data-field-type="text" x="12" y="70">Name</text>
  </g>
</svg>"""


@pytest.mark.parametrize("order", [("photo", "name"), ("name", "photo")])
def test_text_nested_in_an_image_group_is_kept(order):
    template = Template(document=NESTED_SVG, width=100, height=100)
    kinds = {"photo": "image", "name": "text"}
    fields = [FieldDefinition(id=fid, kind=kinds[fid]) for fid in order]
    document = render(template, fields, {"name": "Ada", "photo": ImageValue(src="a.png")})

    assert "".join(_by_field(document, "name").itertext()) == "Ada"
    (image,) = _images(_by_field(document, "photo"))
    assert image.get("href") == "a.png"


def test_multiline_text_becomes_tspans(imported):
    document = render(imported.template, imported.fields, {"name": "Ada\nLovelace"})
    name = _by_field(document, "name")
    lines = [el.text for el in name if isinstance(el.tag, str)]
    assert lines == ["Ada", "Lovelace"]


def test_embedded_images_are_data_uris(imported, photo_file):
    config = RenderConfig(embed_images=True, embed_long_edge_px=64)
    document = render(imported.template, imported.fields, {"photo": ImageValue(src=str(photo_file))}, config)
    (image,) = _images(_by_field(document, "photo"))
    assert image.get("href").startswith("data:image/png;base64,")


def test_empty_data_keeps_defaults_and_never_raises(imported):
    document = render(imported.template, imported.fields, {})
    name = _by_field(document, "name")
    assert "".join(name.itertext()) == "Full Name"
    assert _images(parse_svg(document)) == []


def test_missing_image_source_leaves_the_field_unchanged(imported, tmp_path):
    data = {"photo": ImageValue(src=str(tmp_path / "missing.png"))}
    document = render(imported.template, imported.fields, data, RenderConfig(embed_images=True))
    assert _images(_by_field(document, "photo")) == []


def test_unparseable_document_is_returned_unchanged():
    template = Template(document="<svg><g></svg>", width=10, height=10)
    fields = [FieldDefinition(id="name")]
    assert render(template, fields, {"name": "Ada"}) == template.document


def test_invalid_barcode_payload_is_marked(imported):
    document = render(imported.template, imported.fields, {"member": "12345"})
    member = _by_field(document, "member")
    assert member.get(INVALID_PAYLOAD_ATTR) == "true"
    (image,) = _images(member)
    assert image.get("preserveAspectRatio") == "none"


def test_valid_qr_is_centered_square(card_svg):
    qr = parse_template(card_svg.replace('data-barcode-type="ean13"', 'data-barcode-type="qr"'))
    document = render(qr.template, qr.fields, {"member": "MEMBER-0042"})
    member = _by_field(document, "member")
    assert member.get(INVALID_PAYLOAD_ATTR) is None
    (image,) = _images(member)
    assert image.get("preserveAspectRatio") == "xMidYMid meet"
    assert image.get("href").startswith("data:image/png;base64,")


def test_unavailable_font_falls_back_to_inherited(imported):
    fields = [f.model_copy(update={"font_family": "Comic Neue"}) if f.id == "name" else f for f in imported.fields]
    document = render(imported.template, fields, {"name": "Ada"}, font_resolver=FontResolver(["Inter"]))
    assert _by_field(document, "name").get("font-family") is None

    document = render(imported.template, fields, {"name": "Ada"}, font_resolver=FontResolver(["Comic Neue"]))
    assert _by_field(document, "name").get("font-family") == "Comic Neue"


def test_rendering_is_deterministic(imported, photo_file):
    data = {"name": "Ada", "photo": ImageValue(src=str(photo_file)), "member": "590123412345"}
    first = render(imported.template, imported.fields, data)
    assert render(imported.template, imported.fields, data) == first


def test_render_async_matches_render(imported, photo_file):
    data = {"name": "Ada", "photo": ImageValue(src=str(photo_file), scale=0.5), "member": "590123412345"}
    expected = render(imported.template, imported.fields, data)
    assert asyncio.run(render_async(imported.template, imported.fields, data)) == expected


def test_preview_renderer_discards_stale_results(imported):
    preview = PreviewRenderer()
    old, new = preview.next_generation(), preview.next_generation()
    assert preview.accept(new, "<svg/>")
    assert not preview.accept(old, "<svg><g/></svg>")
    assert preview.latest == "<svg/>"

    shown = asyncio.run(preview.submit(imported.template, imported.fields, {"name": "Grace"}))
    assert shown is not None and preview.latest == shown
    assert "Grace" in shown

import pytest

from idcard_studio.designer.compiler import compile_design, compile_to_template, extract_fields
from idcard_studio.designer.objects import (
    BarcodeObject,
    CircleShape,
    DesignGraph,
    DynamicText,
    ImagePlaceholder,
    LineShape,
    RectShape,
    StaticObject,
    StaticText,
)
from idcard_studio.errors import DuplicateId, ParseFailure
from idcard_studio.fields.svg_utils import parse_svg


@pytest.fixture
def graph():
    return DesignGraph(
        width_mm=85.6,
        height_mm=54.0,
        background="#fafafa",
        objects=[
            RectShape(id="band", left=0, top=0, width=324, height=40, fill="#1e3a8a"),
            StaticText(id="school", left=10, top=8, width=200, height=24, text="Springfield High", fill="#ffffff"),
            StaticObject(id="seal", svg='<circle cx="300" cy="20" r="12" fill="gold"/>'),
            DynamicText(left=120, top=60, width=190, height=30, field_id="name", default_text="Full Name", align="center"),
            ImagePlaceholder(left=10, top=50, width=90, height=110, field_id="photo", fit_mode="contain"),
            BarcodeObject(left=120, top=150, width=180, height=40, field_id="member", barcode_type="qr"),
            LineShape(left=10, top=170, width=90, height=0),
            CircleShape(left=290, top=170, width=20, height=20, angle=45),
        ],
    )


def test_compile_then_extract_reproduces_bindings(graph):
    document = compile_design(graph)
    assert extract_fields(document) == graph.bindings()


def test_compiled_document_is_sized_in_millimeters(graph):
    root = parse_svg(compile_design(graph))
    assert root.get("width") == "85.6mm"
    assert root.get("height") == "54mm"
    assert root.get("viewBox").startswith("0 0 323.5")


def test_dynamic_objects_carry_annotations(graph):
    root = parse_svg(compile_design(graph))
    name = next(el for el in root.iter() if el.get("data-field-id") == "name")
    assert name.tag.endswith("text")
    assert name.get("text-anchor") == "middle"
    assert name.text == "Full Name"
    photo = next(el for el in root.iter() if el.get("data-field-id") == "photo")
    assert photo.get("data-fit-mode") == "contain"
    assert photo.get("id") == "obj-4"


def test_compile_is_deterministic(graph):
    assert compile_design(graph) == compile_design(graph)


def test_duplicate_field_ids_are_rejected():
    graph = DesignGraph(objects=[
        DynamicText(field_id="name"),
        BarcodeObject(field_id="name"),
    ])
    with pytest.raises(DuplicateId):
        compile_design(graph)


def test_repeated_object_ids_are_rejected():
    graph = DesignGraph(objects=[RectShape(id="a"), RectShape(id="a")])
    with pytest.raises(ValueError):
        compile_design(graph)


def test_malformed_static_fragment_raises_parse_failure():
    graph = DesignGraph(objects=[StaticObject(id="broken", svg="<circle r='3'>")])
    with pytest.raises(ParseFailure):
        compile_design(graph)


def test_static_fragments_do_not_bind_fields():
    graph = DesignGraph(objects=[
        StaticObject(id="art", svg='<text data-field-id="ghost" data-field-type="text" data-default-text="x">x</text>'),
        DynamicText(field_id="name"),
    ])
    document = compile_design(graph)
    assert extract_fields(document) == graph.bindings()
    assert [b.field_id for b in extract_fields(document)] == ["name"]
    # the artwork itself survives
    assert ">x</text>" in document


def test_compile_to_template_imports_fields(graph):
    imported = compile_to_template(graph, name="badge.svg")
    assert imported.template.name == "badge.svg"
    assert imported.template.unit == "mm"
    assert imported.template.size_mm() == pytest.approx((85.6, 54.0))
    kinds = {f.id: f.kind for f in imported.fields}
    assert kinds == {"name": "text", "photo": "image", "member": "barcode"}
    member = next(f for f in imported.fields if f.id == "member")
    assert member.barcode_type == "qr"

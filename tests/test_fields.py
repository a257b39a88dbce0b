"""
Tests for field detection, template import and the field/data transitions.
"""

import pytest
from pydantic import ValidationError

from idcard_studio.errors import DuplicateId, FieldNotFound, InvalidState, ParseFailure
from idcard_studio.fields.field_model import (
    add_field,
    append_field,
    detect_fields,
    next_field_id,
    remove_field,
    rename_field,
    set_image_value,
    set_text_value,
    update_image_value,
    validate_state,
)
from idcard_studio.fields.models import FieldDefinition, ImageValue, Template
from idcard_studio.fields.template_parser import declared_size, load_template, parse_template, reimport
from idcard_studio.fields.svg_utils import parse_svg


def _field(field_id, kind="text"):
    return FieldDefinition(id=field_id, label=field_id, kind=kind)


# --- Detection -----------------------------------------------------------------

def test_detect_fields_reads_annotations_and_styling(card_svg):
    fields = {f.id: f for f in detect_fields(card_svg)}
    assert set(fields) == {"name", "photo", "member"}

    name = fields["name"]
    assert name.kind == "text"
    assert name.font_size == 18.0
    assert name.default_text == "Full Name"
    assert name.x == pytest.approx(120 / 325 * 100)
    assert name.auto and name.source_id == "name-label"

    photo = fields["photo"]
    assert photo.kind == "image" and photo.fit_mode == "cover"
    assert photo.width == pytest.approx(80 / 325 * 100)
    assert photo.height == pytest.approx(100 / 204 * 100)

    assert fields["member"].kind == "barcode"
    assert fields["member"].barcode_type == "ean13"


def test_detect_fields_legacy_placeholder_ids():
    svg = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 200 100">
      <text id="{{field:first_name}}" x="20" y="30" font-weight="bold">First</text>
      <rect id="{{image:portrait}}" x="100" y="10" width="50" height="60"/>
      <text id="{{date:issued}}" x="20" y="60">2024-01-01</text>
    </svg>"""
    fields = {f.id: f for f in detect_fields(svg)}
    assert fields["first_name"].kind == "text"
    assert fields["first_name"].font_weight == 700
    assert fields["first_name"].label == "First Name"
    assert fields["portrait"].kind == "image"
    assert fields["issued"].kind == "text"


def test_repeated_annotation_ids_are_suffixed():
    svg = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 100 100">
      <text data-field-id="name" x="1" y="10">A</text>
      <text data-field-id="name" x="1" y="20">B</text>
    </svg>"""
    ids = [f.id for f in detect_fields(svg)]
    assert ids == ["name", "name-2"]


def test_detect_fields_rejects_non_svg():
    with pytest.raises(ParseFailure):
        detect_fields("<html><body/></html>")
    with pytest.raises(ParseFailure):
        detect_fields("not xml at all <")


# --- Import --------------------------------------------------------------------

def test_parse_template_builds_template(card_svg):
    imported = parse_template(card_svg, name="card.svg")
    template = imported.template
    assert (template.width, template.height, template.unit) == (86.0, 54.0, "mm")
    assert template.view_box.width == 325
    assert "Open Sans" in template.fonts
    assert [f.id for f in imported.fields] == ["name", "photo", "member"]


def test_parse_template_gives_idless_annotations_an_id():
    svg = """<svg xmlns="http://www.w3.org/2000/svg" width="300" height="200">
      <text data-field-id="title" x="10" y="20">Title</text>
    </svg>"""
    imported = parse_template(svg)
    (field,) = imported.fields
    assert field.source_id == "placeholder-field-0"
    assert 'id="placeholder-field-0"' in imported.template.document
    assert imported.template.unit == "px"


def test_parse_template_heuristics_without_annotations():
    svg = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 300 200">
      <text x="30" y="40" font-size="14" text-anchor="middle">Jane Doe</text>
      <text x="30" y="80">   </text>
      <g id="photo-area"><rect x="200" y="20" width="80" height="100"/></g>
    </svg>"""
    imported = parse_template(svg)
    kinds = {f.kind for f in imported.fields}
    assert kinds == {"text", "image"}
    text = next(f for f in imported.fields if f.kind == "text")
    assert text.label == "Jane Doe"
    assert text.align == "center"
    assert text.source_id == "text-field-1"
    image = next(f for f in imported.fields if f.kind == "image")
    assert image.id == "photo-area" and image.source_id == "photo-area"


def test_declared_size_units_and_fallbacks():
    w, h, unit = declared_size(parse_svg('<svg xmlns="http://www.w3.org/2000/svg" width="8.56cm" height="5.4cm"/>'))
    assert (w, h) == pytest.approx((85.6, 54.0)) and unit == "mm"
    assert declared_size(parse_svg('<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 640 400"/>')) == (640.0, 400.0, "px")
    assert declared_size(parse_svg('<svg xmlns="http://www.w3.org/2000/svg"/>')) == (86.0, 54.0, "mm")


def test_reimport_keeps_identity(card_svg, tmp_path):
    path = tmp_path / "card.svg"
    path.write_text(card_svg, encoding="utf-8")
    original = load_template(path).template
    replaced = reimport(original, card_svg.replace("Full Name", "Name"))
    assert replaced.template.id == original.id
    assert replaced.template.name == "card.svg"
    assert replaced.template.document != original.document


def test_template_invariants():
    with pytest.raises(ValidationError):
        Template(document="<svg/>", width=0, height=10)
    with pytest.raises(ValidationError):
        FieldDefinition(id="x", auto=True)
    with pytest.raises(ValidationError):
        FieldDefinition(id="x", auto=False, source_id="el")


# --- Transitions ---------------------------------------------------------------

def test_add_field_never_reuses_a_removed_id():
    fields = [_field("field_1"), _field("field_2"), _field("field_3")]
    fields, data = remove_field(fields, {}, "field_2")
    new = add_field(fields, "image")
    assert new.id == "field_4"
    assert new.kind == "image" and new.fit_mode == "cover"
    assert not new.auto and new.source_id is None


def test_next_field_id_counts_foreign_ids():
    assert next_field_id([_field("name"), _field("photo")]) == "field_3"
    assert next_field_id([]) == "field_1"


def test_append_field_with_kind_defaults():
    fields, data = append_field([], {}, "barcode")
    (f,) = fields
    assert (f.x, f.y, f.width, f.height, f.barcode_type) == (10.0, 70.0, 40.0, 15.0, "code128")
    with pytest.raises(ValueError):
        add_field([], "video")


def test_rename_migrates_data_like_a_rebuild():
    fields = [_field("name"), _field("photo", "image")]
    data = {"name": "Ada", "photo": ImageValue(src="ada.png")}
    new_fields, new_data = rename_field(fields, data, "name", "full_name")

    assert [f.id for f in new_fields] == ["full_name", "photo"]
    assert new_fields[0].label == "name"
    assert new_data == {"full_name": "Ada", "photo": ImageValue(src="ada.png")}
    # inputs untouched
    assert fields[0].id == "name" and "name" in data


def test_rename_collision_raises_and_leaves_inputs_unchanged():
    fields = [_field("name"), _field("title")]
    data = {"name": "Ada", "title": "Countess"}
    with pytest.raises(DuplicateId):
        rename_field(fields, data, "name", "title")
    assert [f.id for f in fields] == ["name", "title"]
    assert data == {"name": "Ada", "title": "Countess"}

    with pytest.raises(FieldNotFound):
        rename_field(fields, data, "missing", "other")


def test_remove_field_drops_value_and_ignores_unknown_ids():
    fields = [_field("name"), _field("title")]
    data = {"name": "Ada", "title": "Countess"}
    new_fields, new_data = remove_field(fields, data, "title")
    assert [f.id for f in new_fields] == ["name"]
    assert new_data == {"name": "Ada"}
    assert remove_field(new_fields, new_data, "ghost") == (new_fields, new_data)


def test_validate_state_catches_orphans_and_duplicates():
    with pytest.raises(InvalidState):
        validate_state([_field("a")], {"b": "x"})
    with pytest.raises(InvalidState):
        validate_state([_field("a"), _field("a")], {})


def test_image_value_assignment_and_adjustment():
    fields = [_field("name"), _field("photo", "image")]
    data = set_image_value(fields, {}, "photo", "ada.png")
    assert data["photo"] == ImageValue(src="ada.png", offset_x=0, offset_y=0, scale=1)

    moved = update_image_value(data, "photo", offset_x=0.25, scale=1.25)
    assert moved["photo"].src == "ada.png"
    assert (moved["photo"].offset_x, moved["photo"].offset_y, moved["photo"].scale) == (0.25, 0.0, 1.25)
    assert data["photo"].offset_x == 0.0

    with pytest.raises(ValueError):
        update_image_value(data, "photo", rotation=90)
    with pytest.raises(InvalidState):
        set_image_value(fields, data, "name", "ada.png")
    with pytest.raises(FieldNotFound):
        set_image_value(fields, data, "logo", "x.png")


def test_update_image_value_on_text_value_is_a_no_op():
    data = {"name": "Ada"}
    assert update_image_value(data, "name", scale=2.0) == {"name": "Ada"}
    assert update_image_value(data, "missing", scale=2.0) == {"name": "Ada"}


def test_set_text_value():
    fields = [_field("name")]
    assert set_text_value(fields, {}, "name", "Ada") == {"name": "Ada"}
    with pytest.raises(FieldNotFound):
        set_text_value(fields, {}, "title", "x")

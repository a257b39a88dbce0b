"""
field_model.py

Field detection on canonical documents and the explicit state transitions
used to edit a template's field list together with its card data.

Every transition takes the current (fields, data) and returns new objects;
inputs are never modified. Transitions validate fully before building their
result, so a rejected edit leaves no partial state behind.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple, Union

from lxml import etree

from ..errors import DuplicateId, FieldNotFound, InvalidState
from .models import (
    BARCODE_TYPES,
    FIT_MODES,
    CardData,
    FieldDefinition,
    ImageValue,
    is_image_value,
)
from .svg_utils import (
    BARCODE_TYPE_ATTR,
    DEFAULT_TEXT_ATTR,
    FIELD_ID_ATTR,
    FIELD_TYPE_ATTR,
    FIT_MODE_ATTR,
    PLACEHOLDER_PATTERN,
    anchor_to_align,
    element_box,
    ensure_node_id,
    get_fill_color,
    get_font_family,
    get_font_size,
    get_font_weight,
    local_name,
    parse_css_font_sizes,
    parse_svg,
    parse_view_box,
    read_numeric,
    text_position,
    to_label,
    to_percent,
)

logger = logging.getLogger(__name__)

Fields = List[FieldDefinition]

_FIELD_ID_SUFFIX = re.compile(r"^field_(\d+)$")

_KIND_DEFAULTS = {
    "text": dict(
        x=10.0, y=10.0, width=20.0, height=6.0, font_size=16.0, color="#000000",
        align="left", font_family="Inter", font_weight=400,
    ),
    "image": dict(x=10.0, y=10.0, width=25.0, height=35.0, fit_mode="cover"),
    "barcode": dict(x=10.0, y=70.0, width=40.0, height=15.0, barcode_type="code128"),
}


# ==============================================================================
# Detection
# ==============================================================================


def normalize_kind(raw: Optional[str]) -> str:
    """Annotation kinds map onto text/image/barcode; dates are text."""
    raw = (raw or "").strip().lower()
    if raw in ("image", "barcode"):
        return raw
    return "text"


def normalize_barcode_type(raw: Optional[str]) -> str:
    raw = (raw or "").strip().lower().replace("-", "")
    if raw == "qrcode":
        raw = "qr"
    return raw if raw in BARCODE_TYPES else "code128"


def reference_size(root: etree._Element) -> Tuple[Optional[float], Optional[float]]:
    """User-unit size percentages are measured against: the viewBox, else width/height."""
    view_box = parse_view_box(root.get("viewBox"))
    if view_box is not None and view_box[2] > 0 and view_box[3] > 0:
        return view_box[2], view_box[3]
    return read_numeric(root.get("width")), read_numeric(root.get("height"))


def dedupe_fields(fields: Sequence[FieldDefinition]) -> Fields:
    """Suffix repeated ids with -2, -3, ... and their labels with (2), (3), ..."""
    seen: Dict[str, int] = {}
    taken = {f.id for f in fields}
    result = []
    for f in fields:
        count = seen.get(f.id)
        if count is None:
            seen[f.id] = 1
            result.append(f)
            continue
        while True:
            count += 1
            candidate = f"{f.id}-{count}"
            if candidate not in taken:
                break
        seen[f.id] = count
        taken.add(candidate)
        result.append(f.model_copy(update={"id": candidate, "label": f"{f.label} ({count})"}))
    return result


def _annotation(element: etree._Element) -> Optional[Tuple[str, str]]:
    """(field id, raw kind) for an annotated element, or None."""
    field_id = element.get(FIELD_ID_ATTR)
    if field_id:
        return field_id.strip(), element.get(FIELD_TYPE_ATTR) or "text"
    m = PLACEHOLDER_PATTERN.fullmatch((element.get("id") or "").strip())
    if m:
        return m.group(2), m.group(1)
    return None


def annotated_fields(root: etree._Element, assign_ids: bool = False) -> Fields:
    """
    One auto-detected field per annotated element of a parsed document.

    Args:
        root: Parsed SVG root.
        assign_ids: Give id-less annotated elements a generated id
            ("placeholder-field-<n>") so `source_id` always resolves by id.
    """
    width, height = reference_size(root)
    css_sizes = parse_css_font_sizes(root)
    fields = []
    fallback = 10.0
    index = 0
    for el in root.iter():
        if not local_name(el):
            continue
        found = _annotation(el)
        if found is None:
            continue
        field_id, raw_kind = found
        kind = normalize_kind(raw_kind)

        if assign_ids:
            source_id = ensure_node_id(el, "placeholder-field", index)
        else:
            source_id = (el.get("id") or "").strip() or field_id

        box = element_box(el)
        if box is not None:
            x, y, w, h = box
            w_pct, h_pct = to_percent(w, width, 20.0), to_percent(h, height, 10.0)
        else:
            x, y = text_position(el) if local_name(el) == "text" else (read_numeric(el.get("x")), read_numeric(el.get("y")))
            w_pct = h_pct = None

        attrs = dict(
            id=field_id,
            label=to_label(field_id),
            kind=kind,
            x=to_percent(x, width, fallback),
            y=to_percent(y, height, fallback),
            width=w_pct,
            height=h_pct,
            auto=True,
            source_id=source_id,
        )
        if kind == "text":
            attrs.update(
                font_family=get_font_family(el),
                font_size=get_font_size(el, css_sizes) or 16.0,
                font_weight=get_font_weight(el),
                color=get_fill_color(el) or "#000000",
                align=anchor_to_align(el.get("text-anchor")),
                default_text=el.get(DEFAULT_TEXT_ATTR),
            )
        elif kind == "image":
            fit = (el.get(FIT_MODE_ATTR) or "cover").strip().lower()
            attrs["fit_mode"] = fit if fit in FIT_MODES else "cover"
        else:
            attrs["barcode_type"] = normalize_barcode_type(el.get(BARCODE_TYPE_ATTR))
            attrs["default_text"] = el.get(DEFAULT_TEXT_ATTR)

        fields.append(FieldDefinition(**attrs))
        fallback += 8.0
        index += 1
    return dedupe_fields(fields)


def detect_fields(document: Union[str, etree._Element]) -> Fields:
    """
    Scan a canonical document for field annotations.

    Elements carrying `data-field-id` (kind from `data-field-type`) or a legacy
    `{{kind:name}}` id each produce one field. Styling is read from the element,
    geometry is expressed in percent of the view box.

    Raises:
        ParseFailure: If the document cannot be parsed.
    """
    root = parse_svg(document) if isinstance(document, str) else document
    return annotated_fields(root)


# ==============================================================================
# Transitions
# ==============================================================================


def validate_state(fields: Sequence[FieldDefinition], data: CardData):
    """
    Check the field list and card data agree.

    Raises:
        InvalidState: On duplicate field ids or data keyed by an unknown id.
    """
    ids = [f.id for f in fields]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise InvalidState(f"Duplicate field ids: {duplicates}")
    orphans = sorted(set(data) - set(ids))
    if orphans:
        raise InvalidState(f"Card data references unknown fields: {orphans}")


def next_field_id(fields: Sequence[FieldDefinition]) -> str:
    """
    "field_<n>" with n past both the field count and every existing field_<k>,
    so an id that was removed is never handed out again while a later one exists.
    """
    highest = len(fields)
    for f in fields:
        m = _FIELD_ID_SUFFIX.match(f.id)
        if m:
            highest = max(highest, int(m.group(1)))
    taken = {f.id for f in fields}
    n = highest + 1
    while f"field_{n}" in taken:
        n += 1
    return f"field_{n}"


def add_field(fields: Sequence[FieldDefinition], kind: str = "text") -> FieldDefinition:
    """A new manually-added field with a fresh id and defaults for `kind`."""
    if kind not in _KIND_DEFAULTS:
        raise ValueError(f"Unknown field kind: {kind}")
    field_id = next_field_id(fields)
    return FieldDefinition(id=field_id, label=to_label(field_id), kind=kind, auto=False, **_KIND_DEFAULTS[kind])


def append_field(fields: Sequence[FieldDefinition], data: CardData, kind: str = "text") -> Tuple[Fields, CardData]:
    """Add a field of `kind` to the end of the list."""
    validate_state(fields, data)
    new_fields = list(fields) + [add_field(fields, kind)]
    new_data = dict(data)
    validate_state(new_fields, new_data)
    return new_fields, new_data


def rename_field(fields: Sequence[FieldDefinition], data: CardData, old_id: str, new_id: str) -> Tuple[Fields, CardData]:
    """
    Rename a field id and migrate its bound value.

    Raises:
        FieldNotFound: If no field has `old_id`.
        DuplicateId: If another field already uses `new_id`.
    """
    validate_state(fields, data)
    if not any(f.id == old_id for f in fields):
        raise FieldNotFound(old_id)
    if new_id == old_id:
        return list(fields), dict(data)
    if any(f.id == new_id for f in fields):
        raise DuplicateId(new_id)

    new_fields = [
        FieldDefinition.model_validate({**f.model_dump(), "id": new_id}) if f.id == old_id else f
        for f in fields
    ]
    new_data = {(new_id if key == old_id else key): value for key, value in data.items()}
    validate_state(new_fields, new_data)
    logger.debug("Renamed field '%s' -> '%s'", old_id, new_id)
    return new_fields, new_data


def remove_field(fields: Sequence[FieldDefinition], data: CardData, field_id: str) -> Tuple[Fields, CardData]:
    """Remove a field and its bound value. Unknown ids leave the state as it is."""
    validate_state(fields, data)
    new_fields = [f for f in fields if f.id != field_id]
    new_data = {k: v for k, v in data.items() if k != field_id}
    return new_fields, new_data


def set_text_value(fields: Sequence[FieldDefinition], data: CardData, field_id: str, value: str) -> CardData:
    validate_state(fields, data)
    if not any(f.id == field_id for f in fields):
        raise FieldNotFound(field_id)
    new_data = dict(data)
    new_data[field_id] = str(value)
    return new_data


def set_image_value(fields: Sequence[FieldDefinition], data: CardData, field_id: str, src: str) -> CardData:
    """
    Bind an image source to an image field with offsets (0, 0) and scale 1.

    Raises:
        FieldNotFound: If the field does not exist.
        InvalidState: If the field is not an image field.
    """
    validate_state(fields, data)
    field = next((f for f in fields if f.id == field_id), None)
    if field is None:
        raise FieldNotFound(field_id)
    if field.kind != "image":
        raise InvalidState(f"Field '{field_id}' is a {field.kind} field, not an image field.")
    new_data = dict(data)
    new_data[field_id] = ImageValue(src=src, offset_x=0.0, offset_y=0.0, scale=1.0)
    return new_data


def update_image_value(data: CardData, field_id: str, **patch) -> CardData:
    """
    Adjust offset_x, offset_y, scale (or src) of an existing image value.

    A missing or non-image value is left alone and the data is returned unchanged.
    """
    existing = data.get(field_id)
    if not is_image_value(existing):
        return dict(data)
    unknown = set(patch) - set(ImageValue.model_fields)
    if unknown:
        raise ValueError(f"Unknown image value attributes: {sorted(unknown)}")
    new_data = dict(data)
    new_data[field_id] = ImageValue.model_validate({**existing.model_dump(), **patch})
    return new_data

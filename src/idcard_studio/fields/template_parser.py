"""
This module imports SVG designs as Templates.

Import reads the declared size and viewBox, collects referenced font
families and detects fields. Annotated elements take precedence; a document
without any annotation falls back to heuristics, turning every visible
<text> into a text field and every photo/image group into an image field.

Elements that become fields are given an id when they have none, and the
normalized document (with those ids) is what the Template stores.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from lxml import etree

from ..config import DEFAULT_CARD_SIZE_MM
from ..unit_utils import parse_length, to_mm
from .field_model import Fields, annotated_fields, dedupe_fields, reference_size
from .models import FieldDefinition, Template, ViewBox
from .svg_utils import (
    PLACEHOLDER_PATTERN,
    anchor_to_align,
    element_box,
    ensure_node_id,
    extract_font_families,
    get_fill_color,
    get_font_family,
    get_font_size,
    get_font_weight,
    in_defs,
    iter_local,
    parse_css_font_sizes,
    parse_svg,
    parse_view_box,
    sanitize_identifier,
    serialize,
    slugify,
    text_content,
    text_position,
    to_label,
    to_percent,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateImport:
    template: Template
    fields: Fields


def declared_size(root: etree._Element) -> Tuple[float, float, str]:
    """
    (width, height, unit) of the document.

    Units other than mm/px are converted to mm. Without a usable size the
    viewBox dimensions are used (px); without either, a standard card.
    """
    w, w_unit = parse_length(root.get("width"))
    h, h_unit = parse_length(root.get("height"))
    unit = w_unit or h_unit or "px"
    if unit not in ("mm", "px"):
        w = to_mm(root.get("width")) if w else w
        h = to_mm(root.get("height")) if h else h
        unit = "mm"

    view_box = parse_view_box(root.get("viewBox"))
    if (not w or not h) and view_box is not None:
        w = w or view_box[2]
        h = h or view_box[3]
        unit = "px"

    if not w or not h or w <= 0 or h <= 0:
        w, h = DEFAULT_CARD_SIZE_MM
        unit = "mm"
    return float(w), float(h), unit


def heuristic_text_fields(root: etree._Element) -> Fields:
    width, height = reference_size(root)
    css_sizes = parse_css_font_sizes(root)
    fields = []
    index = 1
    for node in iter_local(root, "text"):
        if in_defs(node):
            continue
        content = " ".join(text_content(node).split())
        if not content:
            continue
        x, y = text_position(node)
        source_id = ensure_node_id(node, "text-field", index)
        base = sanitize_identifier(source_id) or slugify(content)
        fields.append(
            FieldDefinition(
                id=f"{base}_{index}",
                label=content,
                kind="text",
                x=to_percent(x, width, 10 + index * 5),
                y=to_percent(y, height, 10 + index * 5),
                font_family=get_font_family(node),
                font_size=get_font_size(node, css_sizes) or 16.0,
                font_weight=get_font_weight(node),
                color=get_fill_color(node) or "#000000",
                align=anchor_to_align(node.get("text-anchor")),
                auto=True,
                source_id=source_id,
            )
        )
        index += 1
    return dedupe_fields(fields)


def heuristic_image_fields(root: etree._Element) -> Fields:
    width, height = reference_size(root)
    fields = []
    index = 1
    for group in iter_local(root, "g"):
        group_id = (group.get("id") or "").strip()
        if not group_id or PLACEHOLDER_PATTERN.search(group_id):
            continue
        if "photo" not in group_id.lower() and "image" not in group_id.lower():
            continue
        box = element_box(group)
        if box is None:
            continue
        x, y, w, h = box
        fields.append(
            FieldDefinition(
                id=sanitize_identifier(group_id) or f"image_{index}",
                label=to_label(group_id),
                kind="image",
                x=to_percent(x, width, 10 + index * 5),
                y=to_percent(y, height, 10 + index * 5),
                width=to_percent(w, width, 20.0),
                height=to_percent(h, height, 20.0),
                auto=True,
                source_id=group_id,
            )
        )
        index += 1
    return dedupe_fields(fields)


def parse_template(document: str, name: str = "template.svg", template_id: Optional[str] = None) -> TemplateImport:
    """
    Build a Template and its auto-detected fields from SVG text.

    Raises:
        ParseFailure: If the text is not an SVG document.
    """
    root = parse_svg(document)
    width, height, unit = declared_size(root)
    vb = parse_view_box(root.get("viewBox"))
    view_box = ViewBox(x=vb[0], y=vb[1], width=vb[2], height=vb[3]) if vb and vb[2] > 0 and vb[3] > 0 else None

    fields = annotated_fields(root, assign_ids=True)
    if not fields:
        fields = dedupe_fields(heuristic_text_fields(root) + heuristic_image_fields(root))
        logger.info("No field annotations in '%s'; detected %d field(s) heuristically.", name, len(fields))
    else:
        logger.info("Detected %d annotated field(s) in '%s'.", len(fields), name)

    params = dict(
        name=name,
        document=serialize(root),
        width=width,
        height=height,
        unit=unit,
        view_box=view_box,
        fonts=tuple(extract_font_families(root)),
    )
    if template_id:
        params["id"] = template_id
    return TemplateImport(template=Template(**params), fields=fields)


def load_template(path: Union[str, Path]) -> TemplateImport:
    """Read an SVG file and import it."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        document = f.read()
    return parse_template(document, name=path.name)


def reimport(template: Template, document: str) -> TemplateImport:
    """Replace a template wholesale with a new document, keeping its id and name."""
    return parse_template(document, name=template.name, template_id=template.id)

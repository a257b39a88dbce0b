"""
compiler.py

Compiles a DesignGraph into the canonical, field-annotated SVG document
that templates store and the renderer consumes.

The document is sized in millimeters with a viewBox in 96-DPI user units.
Every dynamic object becomes one element carrying `data-field-id`,
`data-field-type` and its kind-specific attribute, so the renderer never has
to infer fields from shape heuristics. `extract_fields` reads those
attributes back; compiling and then extracting reproduces `graph.bindings()`.
"""

import logging
from collections import Counter
from typing import List, Optional, Union

from lxml import etree

from ..config import LINE_HEIGHT_RATIO, PX_PER_MM_CSS
from ..errors import DuplicateId, ParseFailure
from ..fields.field_model import normalize_barcode_type, normalize_kind
from ..fields.models import FIT_MODES
from ..fields.svg_utils import (
    BARCODE_TYPE_ATTR,
    DEFAULT_TEXT_ATTR,
    FIELD_ID_ATTR,
    FIELD_TYPE_ATTR,
    FIT_MODE_ATTR,
    SVG_NS,
    XLINK_NS,
    align_to_anchor,
    format_number,
    local_name,
    parse_svg,
    serialize,
    write_text_lines,
)
from ..fields.template_parser import TemplateImport, parse_template
from .objects import (
    BarcodeObject,
    CircleShape,
    DesignGraph,
    DynamicText,
    FieldBinding,
    ImagePlaceholder,
    LineShape,
    RectShape,
    Shape,
    StaticObject,
    StaticText,
    TextStyle,
)

logger = logging.getLogger(__name__)

_n = format_number

_BINDING_ATTRS = (FIELD_ID_ATTR, FIELD_TYPE_ATTR, BARCODE_TYPE_ATTR, FIT_MODE_ATTR, DEFAULT_TEXT_ATTR)


def _tag(name: str) -> str:
    return f"{{{SVG_NS}}}{name}"


def check_unique_fields(graph: DesignGraph):
    """
    Raises:
        DuplicateId: If two dynamic objects are bound to the same field id.
    """
    counts = Counter(graph.field_ids())
    for field_id in graph.field_ids():
        if counts[field_id] > 1:
            raise DuplicateId(field_id)


def _object_ids(graph: DesignGraph) -> List[str]:
    ids = []
    for i, obj in enumerate(graph.objects):
        ids.append(obj.id or f"obj-{i}")
    repeated = sorted(i for i, c in Counter(ids).items() if c > 1)
    if repeated:
        raise ValueError(f"Design object ids must be unique, repeated: {repeated}")
    return ids


def _common(el: etree._Element, obj: Shape):
    if obj.angle:
        cx, cy = obj.left + obj.width / 2, obj.top + obj.height / 2
        el.set("transform", f"rotate({_n(obj.angle)} {_n(cx)} {_n(cy)})")
    if obj.opacity < 1:
        el.set("opacity", _n(obj.opacity))


def _rect(parent, obj: Shape, fill: str, stroke: str, stroke_width: float, **extra) -> etree._Element:
    rect = etree.SubElement(parent, _tag("rect"))
    rect.set("x", _n(obj.left))
    rect.set("y", _n(obj.top))
    rect.set("width", _n(obj.width))
    rect.set("height", _n(obj.height))
    rect.set("fill", fill)
    if stroke_width > 0:
        rect.set("stroke", stroke)
        rect.set("stroke-width", _n(stroke_width))
    for key, value in extra.items():
        if value is not None:
            rect.set(key.replace("_", "-"), value)
    return rect


def _text(parent, obj: TextStyle, content: str) -> etree._Element:
    anchor = align_to_anchor(obj.align)
    if anchor == "middle":
        x = obj.left + obj.width / 2
    elif anchor == "end":
        x = obj.left + obj.width
    else:
        x = obj.left
    # Baseline one font size below the top edge of the text box.
    y = obj.top + obj.font_size
    el = etree.SubElement(parent, _tag("text"))
    el.set("x", _n(x))
    el.set("y", _n(y))
    el.set("font-family", obj.font_family)
    el.set("font-size", _n(obj.font_size))
    if obj.font_weight != 400:
        el.set("font-weight", str(obj.font_weight))
    el.set("fill", obj.fill)
    if anchor != "start":
        el.set("text-anchor", anchor)
    write_text_lines(el, content.split("\n"), _n(x), _n(y), obj.font_size * LINE_HEIGHT_RATIO)
    return el


def _static_fragment(parent, obj: StaticObject) -> etree._Element:
    wrapper = f'<g xmlns="{SVG_NS}" xmlns:xlink="{XLINK_NS}">{obj.svg}</g>'
    try:
        fragment = etree.fromstring(wrapper.encode("utf-8"), etree.XMLParser(resolve_entities=False, no_network=True))
    except etree.XMLSyntaxError as e:
        raise ParseFailure(f"Static object '{obj.id}' is not a well-formed SVG fragment: {e}") from e
    # static artwork never binds data
    for el in fragment.iter():
        if not local_name(el):
            continue
        for attr in _BINDING_ATTRS:
            if el.attrib.pop(attr, None) is not None:
                logger.debug("Dropped %s from static object '%s'", attr, obj.id)
    group = etree.SubElement(parent, _tag("g"))
    group.text = fragment.text
    for child in list(fragment):
        group.append(child)
    return group


def _emit(parent, obj, object_id: str):
    if isinstance(obj, StaticObject):
        el = _static_fragment(parent, obj)
    elif isinstance(obj, RectShape):
        el = _rect(parent, obj, obj.fill, obj.stroke, obj.stroke_width, rx=_n(obj.rx) if obj.rx else None)
    elif isinstance(obj, CircleShape):
        el = etree.SubElement(parent, _tag("ellipse"))
        el.set("cx", _n(obj.left + obj.width / 2))
        el.set("cy", _n(obj.top + obj.height / 2))
        el.set("rx", _n(obj.width / 2))
        el.set("ry", _n(obj.height / 2))
        el.set("fill", obj.fill)
        if obj.stroke_width > 0:
            el.set("stroke", obj.stroke)
            el.set("stroke-width", _n(obj.stroke_width))
    elif isinstance(obj, LineShape):
        el = etree.SubElement(parent, _tag("line"))
        el.set("x1", _n(obj.left))
        el.set("y1", _n(obj.top))
        el.set("x2", _n(obj.left + obj.width))
        el.set("y2", _n(obj.top + obj.height))
        el.set("stroke", obj.stroke)
        el.set("stroke-width", _n(obj.stroke_width))
    elif isinstance(obj, StaticText):
        el = _text(parent, obj, obj.text)
    elif isinstance(obj, DynamicText):
        el = _text(parent, obj, obj.default_text)
        el.set(FIELD_ID_ATTR, obj.field_id)
        el.set(FIELD_TYPE_ATTR, "text")
        el.set(DEFAULT_TEXT_ATTR, obj.default_text)
    elif isinstance(obj, ImagePlaceholder):
        el = etree.SubElement(parent, _tag("g"))
        el.set(FIELD_ID_ATTR, obj.field_id)
        el.set(FIELD_TYPE_ATTR, "image")
        el.set(FIT_MODE_ATTR, obj.fit_mode)
        _rect(el, obj, obj.fill, obj.stroke, obj.stroke_width, stroke_dasharray=obj.stroke_dasharray)
    elif isinstance(obj, BarcodeObject):
        el = etree.SubElement(parent, _tag("g"))
        el.set(FIELD_ID_ATTR, obj.field_id)
        el.set(FIELD_TYPE_ATTR, "barcode")
        el.set(BARCODE_TYPE_ATTR, obj.barcode_type)
        _rect(el, obj, "#ffffff", "#9ca3af", 1.0)
    else:
        raise TypeError(f"Unsupported design object: {type(obj).__name__}")

    el.set("id", object_id)
    if isinstance(obj, Shape):
        _common(el, obj)
    return el


def compile_design(graph: DesignGraph) -> str:
    """
    Serialize a design graph to canonical SVG.

    Raises:
        DuplicateId: If two dynamic objects share a field id.
        ParseFailure: If a static fragment is not well-formed.
        ValueError: If two objects declare the same object id.
    """
    check_unique_fields(graph)
    ids = _object_ids(graph)

    width_px = graph.width_mm * PX_PER_MM_CSS
    height_px = graph.height_mm * PX_PER_MM_CSS
    root = etree.Element(_tag("svg"), nsmap={None: SVG_NS, "xlink": XLINK_NS})
    root.set("version", "1.1")
    root.set("width", f"{_n(graph.width_mm)}mm")
    root.set("height", f"{_n(graph.height_mm)}mm")
    root.set("viewBox", f"0 0 {_n(width_px)} {_n(height_px)}")

    if graph.background:
        bg = etree.SubElement(root, _tag("rect"))
        bg.set("x", "0")
        bg.set("y", "0")
        bg.set("width", _n(width_px))
        bg.set("height", _n(height_px))
        bg.set("fill", graph.background)

    for obj, object_id in zip(graph.objects, ids):
        _emit(root, obj, object_id)

    logger.debug("Compiled design with %d object(s), %d binding(s)", len(graph.objects), len(graph.field_ids()))
    return serialize(root)


def extract_fields(document: Union[str, etree._Element]) -> List[FieldBinding]:
    """
    Field bindings carried by a compiled document, in document order.

    Raises:
        ParseFailure: If the document cannot be parsed.
    """
    root = parse_svg(document) if isinstance(document, str) else document
    bindings = []
    for el in root.iter():
        if not local_name(el):
            continue
        field_id = el.get(FIELD_ID_ATTR)
        if not field_id:
            continue
        kind = normalize_kind(el.get(FIELD_TYPE_ATTR))
        extra = {}
        if kind == "text":
            extra["default_text"] = el.get(DEFAULT_TEXT_ATTR)
        elif kind == "image":
            fit = (el.get(FIT_MODE_ATTR) or "cover").strip().lower()
            extra["fit_mode"] = fit if fit in FIT_MODES else "cover"
        else:
            extra["barcode_type"] = normalize_barcode_type(el.get(BARCODE_TYPE_ATTR))
        bindings.append(FieldBinding(field_id=field_id, kind=kind, **extra))
    return bindings


def compile_to_template(graph: DesignGraph, name: str = "design.svg", template_id: Optional[str] = None) -> TemplateImport:
    """Compile a design and import the result as a Template with its fields."""
    return parse_template(compile_design(graph), name=name, template_id=template_id)

"""
svg_utils.py

Shared helpers for reading SVG documents with lxml: parsing and serializing,
namespace-agnostic element iteration, numeric and style attribute readers,
font information (including CSS class font sizes) and the field annotation
convention.
"""

import re
from typing import Dict, Iterator, List, Optional, Tuple

from lxml import etree

from ..errors import ParseFailure

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"

# Canonical field annotation attributes.
FIELD_ID_ATTR = "data-field-id"
FIELD_TYPE_ATTR = "data-field-type"
BARCODE_TYPE_ATTR = "data-barcode-type"
FIT_MODE_ATTR = "data-fit-mode"
DEFAULT_TEXT_ATTR = "data-default-text"

# Legacy placeholder ids, e.g. id="{{field:first_name}}".
PLACEHOLDER_PATTERN = re.compile(r"\{\{(field|image|barcode|date):([a-zA-Z0-9_-]+)\}\}")

_NUMBER_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_TRANSLATE_RE = re.compile(r"translate\(([^)]+)\)", re.IGNORECASE)
_CSS_RULE_RE = re.compile(r"([^{]+)\{([^}]+)\}")
_CSS_CLASS_RE = re.compile(r"\.([a-zA-Z0-9_-]+)")
_CSS_FONT_SIZE_RE = re.compile(r"font-size\s*:\s*([0-9.]+)(?:px)?", re.IGNORECASE)
_CSS_FONT_FAMILY_RE = re.compile(r"font-family\s*:\s*([^;}\n]+)", re.IGNORECASE)


def parse_svg(document: str) -> etree._Element:
    """
    Parse an SVG string into an lxml element tree.

    Raises:
        ParseFailure: If the text is not well-formed XML or the root is not <svg>.
    """
    if not document or not document.strip():
        raise ParseFailure("Document is empty.")
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=False)
    try:
        root = etree.fromstring(document.encode("utf-8"), parser)
    except etree.XMLSyntaxError as e:
        raise ParseFailure(f"Document is not well-formed: {e}") from e
    if local_name(root) != "svg":
        raise ParseFailure("Document does not contain a valid <svg> root element.")
    return root


def serialize(root: etree._Element) -> str:
    return etree.tostring(root, encoding="unicode")


def local_name(element) -> str:
    """Tag name without namespace; empty for comments and processing instructions."""
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname


def svg_tag(root: etree._Element, name: str) -> str:
    """Qualified tag for a new element, matching the namespace the document uses."""
    ns = etree.QName(root).namespace
    return f"{{{ns}}}{name}" if ns else name


def iter_local(root: etree._Element, name: str) -> Iterator[etree._Element]:
    for el in root.iter():
        if local_name(el) == name:
            yield el


def first_child(element: etree._Element, name: str) -> Optional[etree._Element]:
    """First descendant with local name `name`."""
    return next(iter_local_descendants(element, name), None)


def iter_local_descendants(element: etree._Element, name: str) -> Iterator[etree._Element]:
    for el in element.iterdescendants():
        if local_name(el) == name:
            yield el


def in_defs(element: etree._Element) -> bool:
    return any(local_name(a) == "defs" for a in element.iterancestors())


def text_content(element: etree._Element) -> str:
    return "".join(element.itertext())


def read_numeric(value: Optional[str]) -> Optional[float]:
    """Leading number of an attribute value, ignoring any unit suffix."""
    if value is None:
        return None
    m = _NUMBER_RE.match(str(value))
    if not m:
        return None
    return float(m.group(1))


def format_number(value: float) -> str:
    """Shortest stable text for a coordinate, e.g. 12 -> "12", 1/3 -> "0.333333"."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def parse_view_box(value: Optional[str]) -> Optional[Tuple[float, float, float, float]]:
    if not value:
        return None
    parts = [p for p in re.split(r"[\s,]+", value.strip()) if p]
    if len(parts) != 4:
        return None
    try:
        return tuple(float(p) for p in parts)
    except ValueError:
        return None


def parse_translate(value: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
    if not value:
        return None, None
    m = _TRANSLATE_RE.search(value)
    if not m:
        return None, None
    parts = [read_numeric(p) for p in re.split(r"[\s,]+", m.group(1).strip()) if p]
    if not parts:
        return None, None
    return parts[0], parts[1] if len(parts) > 1 else None


def style_value(element: etree._Element, prop: str) -> Optional[str]:
    """Value of a declaration inside the element's `style` attribute."""
    style = element.get("style")
    if not style:
        return None
    m = re.search(rf"(?:^|;)\s*{re.escape(prop)}\s*:\s*([^;]+)", style, re.IGNORECASE)
    return m.group(1).strip() if m else None


def parse_font_family(value: Optional[str]) -> Optional[str]:
    """First family of a font-family list, without quotes."""
    if not value:
        return None
    for part in value.split(","):
        name = re.sub(r"['\";]", "", part).strip()
        if name:
            return name
    return None


def get_font_family(element: etree._Element) -> Optional[str]:
    return parse_font_family(element.get("font-family")) or parse_font_family(style_value(element, "font-family"))


def get_font_weight(element: etree._Element) -> Optional[int]:
    for raw in (element.get("font-weight"), style_value(element, "font-weight")):
        if not raw:
            continue
        if raw.strip().lower() == "bold":
            return 700
        if raw.strip().lower() == "normal":
            return 400
        number = read_numeric(raw)
        if number is not None:
            return int(number)
    return None


def get_fill_color(element: etree._Element) -> Optional[str]:
    for raw in (element.get("fill"), style_value(element, "fill")):
        if raw and raw.strip().lower() != "none":
            return raw.strip()
    return None


def anchor_to_align(anchor: Optional[str]) -> str:
    anchor = (anchor or "").strip().lower()
    if anchor == "middle":
        return "center"
    if anchor == "end":
        return "right"
    return "left"


def align_to_anchor(align: Optional[str]) -> str:
    if align == "center":
        return "middle"
    if align == "right":
        return "end"
    return "start"


def style_sheets(root: etree._Element) -> List[str]:
    return [text_content(el) for el in iter_local(root, "style")]


def parse_css_font_sizes(root: etree._Element) -> Dict[str, float]:
    """Map CSS class name -> font-size from every <style> block."""
    sizes: Dict[str, float] = {}
    for css in style_sheets(root):
        for selectors, declarations in _CSS_RULE_RE.findall(css):
            m = _CSS_FONT_SIZE_RE.search(declarations)
            if not m:
                continue
            try:
                size = float(m.group(1))
            except ValueError:
                continue
            for cls in _CSS_CLASS_RE.findall(selectors):
                sizes[cls] = size
    return sizes


def class_font_size(element: etree._Element, css_sizes: Dict[str, float]) -> Optional[float]:
    for cls in (element.get("class") or "").split():
        if cls in css_sizes:
            return css_sizes[cls]
    return None


def get_font_size(element: etree._Element, css_sizes: Dict[str, float]) -> Optional[float]:
    """
    Font size from, in order: the font-size attribute, the style attribute,
    the element's CSS classes, then its first <tspan>'s CSS classes.
    """
    size = read_numeric(element.get("font-size"))
    if size is not None:
        return size
    size = read_numeric(style_value(element, "font-size"))
    if size is not None:
        return size
    size = class_font_size(element, css_sizes)
    if size is not None:
        return size
    tspan = first_child(element, "tspan")
    if tspan is not None:
        return class_font_size(tspan, css_sizes)
    return None


def bake_css_font_sizes(root: etree._Element):
    """Copy CSS class font sizes onto <text> and <tspan> elements as inline attributes."""
    css_sizes = parse_css_font_sizes(root)
    if not css_sizes:
        return
    for text in iter_local(root, "text"):
        for el in [text, *iter_local_descendants(text, "tspan")]:
            if el.get("font-size") is None:
                size = class_font_size(el, css_sizes)
                if size is not None:
                    el.set("font-size", format_number(size))


def extract_font_families(root: etree._Element) -> List[str]:
    """Font families used by elements and <style> rules, in first-seen order."""
    fonts: List[str] = []
    for el in root.iter():
        if not local_name(el) or in_defs(el):
            continue
        if el.get("font-family") is None and local_name(el) != "text":
            continue
        family = get_font_family(el)
        if family and family not in fonts:
            fonts.append(family)
    for css in style_sheets(root):
        for raw in _CSS_FONT_FAMILY_RE.findall(css):
            family = parse_font_family(raw)
            if family and family not in fonts:
                fonts.append(family)
    return fonts


def text_position(element: etree._Element) -> Tuple[float, float]:
    """Anchor point of a <text>, combining its translate transform, x/y and first <tspan>."""
    tx, ty = parse_translate(element.get("transform"))
    x, y = tx or 0.0, ty or 0.0
    ax, ay = read_numeric(element.get("x")), read_numeric(element.get("y"))
    if ax is not None:
        x += ax
    if ay is not None:
        y += ay
    tspan = first_child(element, "tspan")
    if tspan is not None:
        sx, sy = read_numeric(tspan.get("x")), read_numeric(tspan.get("y"))
        if sx is not None:
            x = (tx or 0.0) + sx
        if sy is not None:
            y = (ty or 0.0) + sy
    return x, y


def element_box(element: etree._Element) -> Optional[Tuple[float, float, float, float]]:
    """
    Box (x, y, width, height) of a field element in user units.

    The element's own x/y/width/height are used when present; groups use
    their first <rect>. Returns None when no box can be found.
    """
    candidates = [element]
    rect = first_child(element, "rect")
    if rect is not None:
        candidates.append(rect)
    for el in candidates:
        w, h = read_numeric(el.get("width")), read_numeric(el.get("height"))
        if w is not None and h is not None:
            return read_numeric(el.get("x")) or 0.0, read_numeric(el.get("y")) or 0.0, w, h
    return None


def to_percent(value: Optional[float], total: Optional[float], fallback: float) -> float:
    if value is None or not total:
        return fallback
    return min(max(value / total * 100.0, 0.0), 100.0)


def to_label(value: str) -> str:
    """"first_name" -> "First Name"."""
    spaced = re.sub(r"[-_]+", " ", value)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), spaced)


def sanitize_identifier(value: Optional[str]) -> str:
    if not value:
        return ""
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


def slugify(value: str) -> str:
    return sanitize_identifier(value) or "text"


def ensure_node_id(element: etree._Element, prefix: str, index: int) -> str:
    existing = (element.get("id") or "").strip()
    if existing:
        return existing
    generated = f"{prefix}-{index}"
    element.set("id", generated)
    return generated


def write_text_lines(element: etree._Element, lines: List[str], x: str, y: str, line_height: float):
    """Replace an element's content with one line of text, or one <tspan> per line."""
    for child in list(element):
        element.remove(child)
    element.text = None
    if len(lines) <= 1:
        element.text = lines[0] if lines else ""
        return
    tag = svg_tag(element, "tspan")
    for i, line in enumerate(lines):
        tspan = etree.SubElement(element, tag)
        tspan.set("x", x)
        if i == 0:
            tspan.set("y", y)
        else:
            tspan.set("dy", format_number(line_height))
        tspan.text = line or " "

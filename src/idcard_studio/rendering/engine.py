"""
This module substitutes card data into a template's canonical SVG.

For each field the annotated element is located (by `data-field-id`, else
by the element id the field was detected from) and rewritten according to
the field kind:

    text     the element's content is replaced, one <tspan> per line
    image    an <image> is placed over the element's box, moved by the
             value's offsets (fractions of the box), scaled by its scale
             and fitted per fit mode
    barcode  a symbol raster (or an invalid-payload placeholder) fills the box

Each field is rewritten on a copy of its element which is swapped in only
on success, so a failing field leaves the element as it was. A document that
cannot be parsed, or any failure outside a single field, returns the
template's original document. Failures are logged, never raised.

Raster work (barcode symbols, embedded images) is prepared before any
substitution. `render_async` prepares it concurrently in an executor and
applies the results once everything is ready.
"""

import asyncio
import copy
import functools
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from lxml import etree

from ..config import GENERATED_ATTR, LINE_HEIGHT_RATIO, MIN_IMAGE_SCALE, PX_PER_MM_CSS
from ..config_models import RenderConfig
from ..errors import ParseFailure
from ..fields.models import CardData, FieldDefinition, Template, is_image_value
from ..fields.svg_utils import (
    FIELD_ID_ATTR,
    XLINK_NS,
    align_to_anchor,
    bake_css_font_sizes,
    element_box,
    first_child,
    format_number,
    get_font_family,
    get_font_size,
    local_name,
    parse_css_font_sizes,
    parse_svg,
    serialize,
    svg_tag,
    write_text_lines,
)
from .barcodes import render_barcode
from .fonts import FontResolver
from .images import embed_image

logger = logging.getLogger(__name__)

_n = format_number

INVALID_PAYLOAD_ATTR = "data-invalid-payload"

PRESERVE_ASPECT = {
    "cover": "xMidYMid slice",
    "contain": "xMidYMid meet",
    "fill": "none",
}

_CONTAINERS = ("g", "svg", "a", "switch")


@dataclass(frozen=True)
class Asset:
    """A raster prepared for one image or barcode field."""
    href: str
    preserve_aspect_ratio: str
    invalid: bool = False


# ==============================================================================
# Locating fields
# ==============================================================================


def _index(root: etree._Element):
    by_field_id: Dict[str, etree._Element] = {}
    by_id: Dict[str, etree._Element] = {}
    for el in root.iter():
        if not local_name(el):
            continue
        fid = el.get(FIELD_ID_ATTR)
        if fid and fid not in by_field_id:
            by_field_id[fid] = el
        eid = el.get("id")
        if eid and eid not in by_id:
            by_id[eid] = el
    return by_field_id, by_id


def _lookup(field: FieldDefinition, by_field_id, by_id) -> Optional[etree._Element]:
    el = by_field_id.get(field.id)
    if el is None and field.source_id:
        el = by_id.get(field.source_id, by_field_id.get(field.source_id))
    return el


def index_targets(root: etree._Element, fields: Sequence[FieldDefinition]) -> Dict[str, etree._Element]:
    """Map field id -> element to rewrite."""
    by_field_id, by_id = _index(root)
    targets = {}
    for field in fields:
        el = _lookup(field, by_field_id, by_id)
        if el is None:
            logger.debug("No element found for field '%s'", field.id)
            continue
        targets[field.id] = el
    return targets


def locate_target(root: etree._Element, field: FieldDefinition) -> Optional[etree._Element]:
    """
    Find the element for `field` in the document as it is now. Earlier
    substitutions swap elements out, so an element found before rendering
    started may no longer be attached when a nested field gets its turn.
    """
    return _lookup(field, *_index(root))


def field_box(element: etree._Element) -> Optional[Tuple[float, float, float, float]]:
    box = element_box(element)
    if box is None or box[2] <= 0 or box[3] <= 0:
        return None
    return box


# ==============================================================================
# Asset preparation
# ==============================================================================


def barcode_text(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def prepare_asset(field: FieldDefinition, value, box: Optional[Tuple[float, float, float, float]], config: RenderConfig) -> Optional[Asset]:
    """
    Build the raster for an image or barcode field. Returns None when the
    field keeps its default content (no value, or no box to draw in).
    """
    if box is None:
        return None
    _, _, w, h = box

    if field.kind == "image":
        if not is_image_value(value):
            return None
        href = value.src
        if config.embed_images:
            href = embed_image(value.src, (w, h), field.fit_mode, config.embed_long_edge_px)
        return Asset(href=href, preserve_aspect_ratio=PRESERVE_ASPECT[field.fit_mode])

    if field.kind == "barcode":
        text = barcode_text(value)
        if text is None:
            return None
        scale = config.barcode_dpi / 25.4 / PX_PER_MM_CSS
        result = render_barcode(field.barcode_type, text, (round(w * scale), round(h * scale)), dpi=config.barcode_dpi)
        return Asset(href=result.data_uri, preserve_aspect_ratio=result.preserve_aspect_ratio, invalid=not result.valid)

    return None


# ==============================================================================
# Substitution
# ==============================================================================


def _text_element(element: etree._Element) -> Optional[etree._Element]:
    if local_name(element) == "text":
        return element
    return first_child(element, "text")


def apply_text(element: etree._Element, field: FieldDefinition, value, css_sizes, font_resolver: Optional[FontResolver]):
    """Replace the text content; a blank or missing value keeps the default content."""
    if not isinstance(value, str) or not value.strip():
        return
    target = _text_element(element)
    if target is None:
        raise ValueError(f"Field '{field.id}' is bound to a <{local_name(element)}> without text.")

    font_size = get_font_size(target, css_sizes) or field.font_size or 16.0
    tspan = first_child(target, "tspan")
    base_x = target.get("x") or (tspan.get("x") if tspan is not None else None) or "0"
    base_y = target.get("y") or (tspan.get("y") if tspan is not None else None) or "0"

    lines = value.strip().splitlines()
    write_text_lines(target, lines, base_x, base_y, font_size * LINE_HEIGHT_RATIO)

    family = field.font_family or get_font_family(target)
    if family and font_resolver is not None and not font_resolver.resolve(family):
        logger.info("Font '%s' for field '%s' is not available; using the inherited font.", family, field.id)
        target.attrib.pop("font-family", None)
    elif field.font_family:
        target.set("font-family", field.font_family)

    target.set("font-size", _n(font_size))
    if field.font_weight:
        target.set("font-weight", str(field.font_weight))
    if field.color:
        target.set("fill", field.color)
    anchor = align_to_anchor(field.align)
    if anchor == "start":
        target.attrib.pop("text-anchor", None)
    else:
        target.set("text-anchor", anchor)


def _remove_generated(element: etree._Element):
    for el in list(element.iter()):
        if el is not element and local_name(el) and el.get(GENERATED_ATTR) == "true":
            el.getparent().remove(el)


def _as_container(element: etree._Element) -> etree._Element:
    """
    A group to hold generated images. Leaf elements (a bare <rect>) are
    wrapped in a new <g> that takes over their id and field annotations.
    """
    if local_name(element) in _CONTAINERS:
        return element
    group = etree.Element(svg_tag(element, "g"))
    for key in list(element.attrib):
        if key == "id" or key.startswith("data-"):
            group.set(key, element.attrib.pop(key))
    group.append(element)
    return group


def _place_image(container: etree._Element, asset: Asset, x: float, y: float, w: float, h: float) -> etree._Element:
    image = etree.SubElement(container, svg_tag(container, "image"), nsmap={"xlink": XLINK_NS})
    image.set("x", _n(x))
    image.set("y", _n(y))
    image.set("width", _n(w))
    image.set("height", _n(h))
    image.set("preserveAspectRatio", asset.preserve_aspect_ratio)
    image.set("href", asset.href)
    image.set(f"{{{XLINK_NS}}}href", asset.href)
    image.set(GENERATED_ATTR, "true")
    return image


def apply_image(element: etree._Element, field: FieldDefinition, value, asset: Optional[Asset]) -> etree._Element:
    """Place the image for `value` over the element's box. Returns the element to swap in."""
    _remove_generated(element)
    if not is_image_value(value) or asset is None:
        return element
    box = field_box(element)
    if box is None:
        raise ValueError(f"Image field '{field.id}' has no box to draw in.")
    x, y, w, h = box

    container = _as_container(element)
    rect = container if local_name(container) == "rect" else first_child(container, "rect")
    if rect is not None:
        rect.set("fill", "none")

    scale = max(MIN_IMAGE_SCALE, value.scale)
    draw_w, draw_h = w * scale, h * scale
    # offsets are fractions of the box
    cx = x + w / 2 + value.offset_x * w
    cy = y + h / 2 + value.offset_y * h
    _place_image(container, asset, cx - draw_w / 2, cy - draw_h / 2, draw_w, draw_h)
    return container


def apply_barcode(element: etree._Element, field: FieldDefinition, asset: Optional[Asset]) -> etree._Element:
    """Draw the symbol raster over the element's box. Returns the element to swap in."""
    if asset is None:
        return element
    _remove_generated(element)
    box = field_box(element)
    if box is None:
        raise ValueError(f"Barcode field '{field.id}' has no box to draw in.")
    x, y, w, h = box

    container = _as_container(element)
    rect = container if local_name(container) == "rect" else first_child(container, "rect")
    if rect is not None:
        rect.set("fill", "none")
        rect.attrib.pop("stroke", None)
    image = _place_image(container, asset, x, y, w, h)
    if asset.invalid:
        image.set(INVALID_PAYLOAD_ATTR, "true")
        container.set(INVALID_PAYLOAD_ATTR, "true")
    else:
        container.attrib.pop(INVALID_PAYLOAD_ATTR, None)
    return container


def _swap(original: etree._Element, replacement: etree._Element):
    parent = original.getparent()
    if parent is None:
        raise ValueError("The document root cannot be bound to a field.")
    parent.replace(original, replacement)


def apply_fields(
    root: etree._Element,
    fields: Sequence[FieldDefinition],
    data: CardData,
    targets: Dict[str, etree._Element],
    assets: Dict[str, Optional[Asset]],
    font_resolver: Optional[FontResolver] = None,
) -> str:
    css_sizes = parse_css_font_sizes(root)
    bake_css_font_sizes(root)
    for field in fields:
        if field.id not in targets:
            continue
        element = locate_target(root, field)
        if element is None:
            logger.warning("Element for field '%s' disappeared while rendering; field skipped.", field.id)
            continue
        value = data.get(field.id)
        try:
            work = copy.deepcopy(element)
            if field.kind == "text":
                apply_text(work, field, value, css_sizes, font_resolver)
            elif field.kind == "image":
                work = apply_image(work, field, value, assets.get(field.id))
            elif field.kind == "barcode":
                work = apply_barcode(work, field, assets.get(field.id))
            _swap(element, work)
        except Exception:
            logger.exception("Could not render field '%s'; leaving its element unchanged.", field.id)
    return serialize(root)


# ==============================================================================
# Entry points
# ==============================================================================


def _parse_or_none(template: Template) -> Optional[etree._Element]:
    try:
        return parse_svg(template.document)
    except ParseFailure as e:
        logger.warning("Template '%s' could not be parsed (%s); returning it unrendered.", template.name, e)
        return None


def _safe_prepare(field, value, box, config) -> Optional[Asset]:
    try:
        return prepare_asset(field, value, box, config)
    except Exception:
        logger.exception("Could not prepare the raster for field '%s'.", field.id)
        return None


def render(
    template: Template,
    fields: Sequence[FieldDefinition],
    data: CardData,
    config: Optional[RenderConfig] = None,
    font_resolver: Optional[FontResolver] = None,
) -> str:
    """
    Substitute `data` into the template. Always returns a displayable document;
    identical inputs produce identical output.
    """
    config = config or RenderConfig()
    root = _parse_or_none(template)
    if root is None:
        return template.document
    try:
        targets = index_targets(root, fields)
        assets = {
            f.id: _safe_prepare(f, data.get(f.id), field_box(targets[f.id]), config)
            for f in fields
            if f.kind in ("image", "barcode") and f.id in targets
        }
        return apply_fields(root, fields, data, targets, assets, font_resolver)
    except Exception:
        logger.exception("Rendering template '%s' failed; returning it unrendered.", template.name)
        return template.document


async def render_async(
    template: Template,
    fields: Sequence[FieldDefinition],
    data: CardData,
    config: Optional[RenderConfig] = None,
    font_resolver: Optional[FontResolver] = None,
    executor=None,
) -> str:
    """Like `render`, preparing every field's raster concurrently before substituting."""
    config = config or RenderConfig()
    root = _parse_or_none(template)
    if root is None:
        return template.document
    try:
        targets = index_targets(root, fields)
        loop = asyncio.get_running_loop()
        pending = [f for f in fields if f.kind in ("image", "barcode") and f.id in targets]
        results = await asyncio.gather(
            *(
                loop.run_in_executor(
                    executor,
                    functools.partial(_safe_prepare, f, data.get(f.id), field_box(targets[f.id]), config),
                )
                for f in pending
            )
        )
        assets = dict(zip((f.id for f in pending), results))
        return apply_fields(root, fields, data, targets, assets, font_resolver)
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Rendering template '%s' failed; returning it unrendered.", template.name)
        return template.document


class PreviewRenderer:
    """
    Renders previews for an editor. Every pass is stamped with a generation
    number; a result is only accepted when it is newer than the one currently
    shown, so slow superseded passes can never overwrite a newer preview.
    """

    def __init__(self, config: Optional[RenderConfig] = None, font_resolver: Optional[FontResolver] = None, executor=None):
        self.config = config or RenderConfig()
        self.font_resolver = font_resolver
        self.executor = executor
        self._generation = 0
        self.latest: Optional[str] = None
        self.latest_generation = 0

    def next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def accept(self, generation: int, document: str) -> bool:
        if generation <= self.latest_generation:
            logger.debug("Discarding stale preview %d (showing %d)", generation, self.latest_generation)
            return False
        self.latest = document
        self.latest_generation = generation
        return True

    async def submit(self, template: Template, fields: Sequence[FieldDefinition], data: CardData) -> Optional[str]:
        """Render a pass; returns the document if it became the shown preview, else None."""
        generation = self.next_generation()
        document = await render_async(template, fields, data, self.config, self.font_resolver, self.executor)
        return document if self.accept(generation, document) else None

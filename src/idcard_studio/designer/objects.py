"""
This module defines the design object graph produced by the visual card
designer.

Each object is a tagged variant discriminated by `kind`. Static kinds
(`static`, `rect`, `circle`, `line`, `text`) are plain artwork; the three
dynamic kinds (`dynamic-text`, `image-placeholder`, `barcode`) are bound to a
field id and become annotated elements in the compiled document.

Geometry is in document user units (96 per inch), measured from the card's
top-left corner, as the designer canvas reports it.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..fields.models import Align, BarcodeType, FieldKind, FitMode


class DesignObject(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: Optional[str] = None


class Shape(DesignObject):
    left: float = 0.0
    top: float = 0.0
    width: float = Field(default=0.0, ge=0)
    height: float = Field(default=0.0, ge=0)
    angle: float = 0.0
    opacity: float = Field(default=1.0, ge=0, le=1)


class StaticObject(DesignObject):
    """A verbatim SVG fragment, copied into the compiled document without its field annotations."""
    kind: Literal["static"] = "static"
    svg: str


class RectShape(Shape):
    kind: Literal["rect"] = "rect"
    fill: str = "#3b82f6"
    stroke: str = "#1e40af"
    stroke_width: float = 0.0
    rx: float = 0.0


class CircleShape(Shape):
    kind: Literal["circle"] = "circle"
    fill: str = "#3b82f6"
    stroke: str = "#1e40af"
    stroke_width: float = 0.0


class LineShape(Shape):
    """Runs from (left, top) to (left + width, top + height)."""
    kind: Literal["line"] = "line"
    stroke: str = "#000000"
    stroke_width: float = 1.0


class TextStyle(Shape):
    font_family: str = "Arial"
    font_size: float = Field(default=24.0, gt=0)
    font_weight: int = 400
    fill: str = "#000000"
    align: Align = "left"


class StaticText(TextStyle):
    kind: Literal["text"] = "text"
    text: str = ""


class DynamicText(TextStyle):
    kind: Literal["dynamic-text"] = "dynamic-text"
    field_id: str = Field(min_length=1)
    default_text: str = ""


class ImagePlaceholder(Shape):
    kind: Literal["image-placeholder"] = "image-placeholder"
    field_id: str = Field(min_length=1)
    fit_mode: FitMode = "cover"
    fill: str = "#f3f4f6"
    stroke: str = "#9ca3af"
    stroke_width: float = 2.0
    stroke_dasharray: Optional[str] = "5 5"


class BarcodeObject(Shape):
    kind: Literal["barcode"] = "barcode"
    field_id: str = Field(min_length=1)
    barcode_type: BarcodeType = "code128"


AnyDesignObject = Annotated[
    Union[StaticObject, RectShape, CircleShape, LineShape, StaticText, DynamicText, ImagePlaceholder, BarcodeObject],
    Field(discriminator="kind"),
]

DYNAMIC_KINDS = ("dynamic-text", "image-placeholder", "barcode")


class FieldBinding(BaseModel):
    """
    The binding a dynamic object contributes: its field id, field kind and the
    one kind-specific option (default text, fit mode or barcode type).
    """
    model_config = ConfigDict(frozen=True)

    field_id: str
    kind: FieldKind
    default_text: Optional[str] = None
    fit_mode: Optional[FitMode] = None
    barcode_type: Optional[BarcodeType] = None


def binding_of(obj) -> Optional[FieldBinding]:
    if isinstance(obj, DynamicText):
        return FieldBinding(field_id=obj.field_id, kind="text", default_text=obj.default_text)
    if isinstance(obj, ImagePlaceholder):
        return FieldBinding(field_id=obj.field_id, kind="image", fit_mode=obj.fit_mode)
    if isinstance(obj, BarcodeObject):
        return FieldBinding(field_id=obj.field_id, kind="barcode", barcode_type=obj.barcode_type)
    return None


class DesignGraph(BaseModel):
    """
    A card face: physical size in millimeters and objects in paint order.

    Attributes:
        width_mm (float): Card width.
        height_mm (float): Card height.
        background (Optional[str]): Fill drawn behind every object.
        objects (List[AnyDesignObject]): Objects, first painted first.
    """
    model_config = ConfigDict(frozen=True)

    width_mm: float = Field(default=86.0, gt=0)
    height_mm: float = Field(default=54.0, gt=0)
    background: Optional[str] = None
    objects: List[AnyDesignObject] = Field(default_factory=list)

    def bindings(self) -> List[FieldBinding]:
        return [b for b in (binding_of(o) for o in self.objects) if b is not None]

    def field_ids(self) -> List[str]:
        return [b.field_id for b in self.bindings()]
